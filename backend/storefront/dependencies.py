"""
Storefront Backend — Service Container and Request Dependencies
=================================================================

What:  The single object holding every long-lived component, plus the
       FastAPI dependencies that hand them to route handlers.
Why:   Components receive their configuration explicitly instead of
       reading module-level singletons, so tests can build an app around
       an in-memory database and mock HTTP transports.
How:   create_app() builds one AppServices and stores it on
       `app.state.services`; middleware and dependencies read it from there.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

import httpx
from fastapi import Request

from storefront.config import Settings
from storefront.context import RequestContext
from storefront.database import Database
from storefront.middleware.rate_limit import SlidingWindowLimiter
from storefront.responses import Responder, ResponseBuilder
from storefront.security.tokens import JWTHandler
from storefront.services.audit_service import AuditRecorder
from storefront.services.auth_service import AuthService
from storefront.services.featured_product_service import FeaturedProductService
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService
from storefront.services.printify_client import PrintifyClient
from storefront.services.session_service import SessionManager
from storefront.services.stripe_client import StripeClient
from storefront.services.user_service import UserService


@dataclass
class AppServices:
    settings: Settings
    database: Database
    responses: ResponseBuilder
    audit: AuditRecorder
    sessions: SessionManager
    jwt: JWTHandler
    login_attempts: SlidingWindowLimiter
    auth: AuthService
    printify: PrintifyClient
    stripe: StripeClient
    featured_products: FeaturedProductService
    orders: OrderService
    payments: PaymentService
    users: UserService
    started_at: float = field(default_factory=time.time)

    @classmethod
    def build(
        cls,
        settings: Settings,
        database: Optional[Database] = None,
        printify_transport: Optional[httpx.AsyncBaseTransport] = None,
        stripe_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "AppServices":
        database = database or Database.from_settings(settings)
        audit = AuditRecorder(database)
        sessions = SessionManager.from_settings(settings)
        jwt = JWTHandler.from_settings(settings)
        login_attempts = SlidingWindowLimiter(settings.login_max_attempts, settings.login_window)
        stripe = StripeClient.from_settings(settings, transport=stripe_transport)
        orders = OrderService(audit, default_currency=settings.default_currency)
        return cls(
            settings=settings,
            database=database,
            responses=ResponseBuilder(settings.environment),
            audit=audit,
            sessions=sessions,
            jwt=jwt,
            login_attempts=login_attempts,
            auth=AuthService(jwt, sessions, audit, login_attempts, settings.bcrypt_rounds),
            printify=PrintifyClient.from_settings(settings, transport=printify_transport),
            stripe=stripe,
            featured_products=FeaturedProductService(audit),
            orders=orders,
            payments=PaymentService(
                stripe,
                orders,
                database,
                webhook_secret=settings.stripe_webhook_secret,
                client_url=settings.client_url,
                currency=settings.default_currency,
                webhook_tolerance=settings.stripe_webhook_tolerance,
            ),
            users=UserService(audit, sessions),
        )

    @property
    def uptime_seconds(self) -> float:
        return round(time.time() - self.started_at, 1)

    async def aclose(self) -> None:
        await self.printify.aclose()
        await self.stripe.aclose()
        await self.database.dispose()


# ── Dependencies ──────────────────────────────────────────────────────────
def get_services(request: Request) -> AppServices:
    return request.app.state.services


def get_request_context(request: Request) -> RequestContext:
    """The context set by RequestContextMiddleware (or a fresh one)."""
    ctx = getattr(request.state, "context", None)
    if ctx is None:
        ctx = RequestContext(method=request.method, path=request.url.path)
        request.state.context = ctx
    return ctx


def get_responder(request: Request) -> Responder:
    return Responder(get_services(request).responses, get_request_context(request))
