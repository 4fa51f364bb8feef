"""
Storefront Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Provides reusable test infrastructure: an in-memory database, an app
       wired to it, an HTTP client and helpers for users and tokens.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy (all function-scoped, fresh for each test):
    test_settings ─┬─ database (in-memory SQLite, tables created)
                   ├─ upstream (MockTransport router for Printify/Stripe)
                   └─ app ─── client (HTTPX AsyncClient over ASGITransport)
                          └── services (app.state.services)
    make_user: factory inserting a user with a role
    login:     factory returning an Authorization header for a user
"""

import os

# Override settings for testing BEFORE any storefront imports
# Why: the module-level app and settings are built at import time
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["LOG_TO_FILES"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import Callable, Dict, List, Optional, Tuple  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from storefront.config import Settings  # noqa: E402
from storefront.database import Database  # noqa: E402
from storefront.main import create_app  # noqa: E402
from storefront.models.user import User  # noqa: E402
from storefront.security.passwords import hash_password  # noqa: E402

TEST_PASSWORD = "correct-horse-battery"
WEBHOOK_SECRET = "whsec_test_secret"


# ══════════════════════════════════════════════════════════════════════════
# Upstream Mock
# ══════════════════════════════════════════════════════════════════════════

class MockUpstream:
    """
    Routes httpx requests to canned responses.

    Usage:
        upstream.add("GET", "/shops.json", json=[{"id": 1}])
        upstream.add("GET", "/shops/s1/products.json", status=503)
    Unregistered routes answer 404. Every request is kept in `calls`.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[httpx.Response]] = {}
        self.calls: List[httpx.Request] = []

    def add(self, method: str, path: str, status: int = 200, json=None, repeat: int = 1) -> None:
        responses = self.routes.setdefault((method, path), [])
        for _ in range(repeat):
            responses.append(httpx.Response(status, json=json if json is not None else {}))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": "not found"})
        # The last registered response repeats once the queue is drained
        return queue.pop(0) if len(queue) > 1 else queue[0]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ══════════════════════════════════════════════════════════════════════════
# Core Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings() -> Settings:
    """Settings for a fast, isolated app: cheap bcrypt, no retry waits."""
    return Settings(
        environment="test",
        database_url="sqlite+aiosqlite:///:memory:",
        log_to_files=False,
        jwt_secret="test-secret-key-that-is-long-enough-for-hs256",
        bcrypt_rounds=4,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_api_base="https://stripe.test/v1",
        printify_api_token="printify-test-token",
        printify_api_base="https://printify.test/v1",
        printify_shop_id="shop-1",
        retry_max_attempts=3,
        retry_min_wait=0,
        retry_max_wait=0,
        cb_failure_threshold=2,
        cb_recovery_timeout=60,
    )


@pytest_asyncio.fixture
async def database(test_settings):
    """A fresh in-memory database with every table created."""
    db = Database(test_settings.database_url)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def upstream() -> MockUpstream:
    return MockUpstream()


@pytest_asyncio.fixture
async def app(test_settings, database, upstream):
    """
    The application wired to the test database and mock upstreams.

    ASGITransport does not run the lifespan, so the startup seeding is done
    here directly.
    """
    application = create_app(
        test_settings,
        database=database,
        printify_transport=upstream.transport,
        stripe_transport=upstream.transport,
    )
    services = application.state.services
    async with database.session() as session:
        await services.auth.ensure_default_roles(session)
    yield application
    await services.printify.aclose()
    await services.stripe.aclose()


@pytest.fixture
def services(app):
    return app.state.services


@pytest_asyncio.fixture
async def client(app):
    """
    HTTPX AsyncClient talking to the app in-process.

    Usage:
        async def test_health(client):
            response = await client.get("/api/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ══════════════════════════════════════════════════════════════════════════
# User Helpers
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def make_user(database) -> Callable:
    """
    Factory inserting an active user.

    Usage:
        admin = await make_user("admin@example.com", role="admin")
    """

    async def _make(
        email: str = "shopper@example.com",
        password: str = TEST_PASSWORD,
        role: str = "customer",
        is_active: bool = True,
    ) -> User:
        user = User(
            email=email,
            password_hash=hash_password(password, rounds=4),
            first_name="Test",
            last_name="User",
            role=role,
            is_active=is_active,
        )
        async with database.session() as session:
            session.add(user)
        return user

    return _make


@pytest.fixture
def login(client) -> Callable:
    """Factory returning {"Authorization": "Bearer ..."} for a user."""

    async def _login(email: str, password: str = TEST_PASSWORD) -> Dict[str, str]:
        response = await client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        token = response.json()["data"]["accessToken"]
        return {"Authorization": f"Bearer {token}"}

    return _login


@pytest.fixture
def audit_rows(database) -> Callable:
    """Fetch every audit record, oldest first (optionally one action only)."""
    from sqlalchemy import select

    from storefront.models.audit import AuditRecord

    async def _rows(action: Optional[str] = None) -> List[AuditRecord]:
        async with database.session() as session:
            query = select(AuditRecord).order_by(AuditRecord.created_at.asc())
            if action is not None:
                query = query.where(AuditRecord.action == action)
            return list((await session.execute(query)).scalars().all())

    return _rows
