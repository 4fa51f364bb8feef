"""
Storefront Backend — Authentication Service
=============================================

What:  Registration, login, logout and bearer-token authentication.
How:   Composes the JWT handler, the session manager, the audit recorder
       and a sliding-window limiter for failed logins.

Login Flow (POST /api/auth/login):
    ┌────────────┐   ┌────────────┐   ┌──────────┐   ┌───────────┐   ┌─────────┐
    │ IP under   │──▶│ user found │──▶│ bcrypt   │──▶│ session   │──▶│ token + │
    │ fail limit │   │ and active │   │ matches  │   │ limit     │   │ session │
    └────────────┘   └────────────┘   └──────────┘   └───────────┘   └─────────┘
         │ no              │ no             │ no
         ▼                 ▼                ▼
        429               401 ◀──────────── 401   (each 401 counts as a failure)

    The throttle check runs before the credential check, so a throttled IP
    gets 429 even with the right password.

Authentication (every protected request):
    no token → 401 "No token provided"
    session missing/invalid/expired → 401 "Invalid or expired session"
    JWT expired → 401 "Authentication token has expired"
    JWT invalid → 401 "Invalid authentication token"
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.context import RequestContext
from storefront.exceptions import AuthenticationError, AuthorizationError, ConflictError
from storefront.logger import get_logger
from storefront.middleware.rate_limit import SlidingWindowLimiter
from storefront.models.user import Role, User
from storefront.schemas.auth import LoginRequest, RegisterRequest
from storefront.security.passwords import hash_password, verify_password
from storefront.security.tokens import JWTHandler, TokenError, TokenExpiredError
from storefront.services.audit_service import AuditAction, AuditRecorder, EntityType
from storefront.services.session_service import SessionManager

log = get_logger(__name__)

LOGIN_THROTTLED_MESSAGE = "Too many login attempts. Please try again later."
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"

ALL_PERMISSIONS = [
    "read:products",
    "manage:products",
    "create:order",
    "read:own_orders",
    "read:orders",
    "manage:orders",
    "read:audit",
    "manage:users",
    "manage:roles",
]

DEFAULT_ROLES: Dict[str, Tuple[str, List[str]]] = {
    "customer": ("Storefront shopper", ["read:products", "create:order", "read:own_orders"]),
    "admin": ("Full administrative access", ALL_PERMISSIONS),
}


@dataclass
class CurrentUser:
    """The authenticated caller, as seen by route handlers."""

    id: UUID
    email: str
    role: str
    permissions: List[str] = field(default_factory=list)
    token: str = ""
    user: Optional[User] = None


class AuthService:
    def __init__(
        self,
        jwt: JWTHandler,
        sessions: SessionManager,
        audit: AuditRecorder,
        login_attempts: SlidingWindowLimiter,
        bcrypt_rounds: int = 12,
    ):
        self.jwt = jwt
        self.sessions = sessions
        self.audit = audit
        self.login_attempts = login_attempts
        self.bcrypt_rounds = bcrypt_rounds

    # ── Roles ─────────────────────────────────────────────────────────────
    async def ensure_default_roles(self, db: AsyncSession) -> None:
        """Insert any missing default role (run at startup)."""
        existing = set((await db.execute(select(Role.name))).scalars().all())
        for name, (description, permissions) in DEFAULT_ROLES.items():
            if name not in existing:
                db.add(Role(name=name, description=description, permissions=list(permissions)))
                log.info("Seeded role %s", name)
        await db.flush()

    async def get_permissions(self, db: AsyncSession, role_name: str) -> List[str]:
        result = await db.execute(select(Role.permissions).where(Role.name == role_name))
        permissions = result.scalar_one_or_none()
        return list(permissions or [])

    # ── Registration ──────────────────────────────────────────────────────
    async def register(
        self, db: AsyncSession, data: RegisterRequest, ctx: Optional[RequestContext] = None
    ) -> User:
        existing = await db.execute(select(User.id).where(User.email == data.email))
        if existing.scalar_one_or_none() is not None:
            raise ConflictError("An account with this email already exists")

        user = User(
            email=data.email,
            password_hash=hash_password(data.password, self.bcrypt_rounds),
            first_name=data.first_name,
            last_name=data.last_name,
            role="customer",
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError("An account with this email already exists")

        log.info("User registered", ctx=ctx, user_id=str(user.id))
        await self.audit.log_entity_action(
            AuditAction.CREATE,
            EntityType.USER,
            user.id,
            new_values={
                "email": user.email,
                "firstName": user.first_name,
                "lastName": user.last_name,
                "role": user.role,
            },
            ctx=ctx,
            user_id=user.id,
        )
        return user

    # ── Login / Logout ────────────────────────────────────────────────────
    async def _login_failed(self, email: str, reason: str, ctx: Optional[RequestContext]) -> None:
        key = ctx.ip_address if ctx and ctx.ip_address else "unknown"
        self.login_attempts.record(key)
        log.warning("Login failed: %s", reason, ctx=ctx, email=email)
        await self.audit.log_login_failed(email, reason, ctx=ctx)

    async def login(
        self, db: AsyncSession, data: LoginRequest, ctx: Optional[RequestContext] = None
    ) -> Tuple[User, str, List[str]]:
        """Returns (user, access_token, permissions)."""
        key = ctx.ip_address if ctx and ctx.ip_address else "unknown"
        self.login_attempts.check(key, LOGIN_THROTTLED_MESSAGE)

        result = await db.execute(select(User).where(User.email == data.email))
        user = result.scalar_one_or_none()
        if user is None:
            await self._login_failed(data.email, "unknown_email", ctx)
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)
        if not verify_password(data.password, user.password_hash):
            await self._login_failed(data.email, "invalid_password", ctx)
            raise AuthenticationError(INVALID_CREDENTIALS_MESSAGE)
        if not user.is_active:
            await self._login_failed(data.email, "account_disabled", ctx)
            raise AuthorizationError("Account is disabled")

        evicted = await self.sessions.enforce_session_limit(db, user.id, ctx)
        permissions = await self.get_permissions(db, user.role)
        token = self.jwt.create_token(
            str(user.id),
            {"email": user.email, "role": user.role, "permissions": permissions},
        )
        await self.sessions.create_session(db, user.id, token, ctx)
        await db.commit()

        self.login_attempts.reset(key)
        if ctx is not None:
            ctx.user_id = str(user.id)
            ctx.user_role = user.role
        await self.audit.log_login(user.id, ctx=ctx, metadata={"evictedSessions": evicted})
        return user, token, permissions

    async def logout(self, db: AsyncSession, current: CurrentUser, ctx: Optional[RequestContext] = None) -> None:
        await self.sessions.invalidate_session(db, current.token, ctx)
        await db.commit()
        await self.audit.log_logout(current.id, ctx=ctx)

    async def logout_everywhere(self, db: AsyncSession, current: CurrentUser,
                                ctx: Optional[RequestContext] = None) -> int:
        count = await self.sessions.invalidate_all_user_sessions(db, current.id, ctx)
        await db.commit()
        await self.audit.log_entity_action(
            AuditAction.LOGOUT, EntityType.SESSION, current.id,
            ctx=ctx, metadata={"invalidatedSessions": count},
        )
        return count

    # ── Bearer authentication ─────────────────────────────────────────────
    async def authenticate(
        self, db: AsyncSession, token: Optional[str], ctx: Optional[RequestContext] = None
    ) -> CurrentUser:
        if not token:
            raise AuthenticationError("No token provided")

        if not await self.sessions.validate_session(db, token, ctx):
            # Keep the expiry flip; the request session rolls back on the 401
            await db.commit()
            raise AuthenticationError("Invalid or expired session")

        try:
            claims = self.jwt.verify_token(token)
        except TokenExpiredError:
            raise AuthenticationError("Authentication token has expired")
        except TokenError:
            raise AuthenticationError("Invalid authentication token")

        try:
            user_id = UUID(str(claims.get("sub")))
        except ValueError:
            raise AuthenticationError("Invalid authentication token")

        user = await db.get(User, user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("Invalid authentication token")

        permissions = await self.get_permissions(db, user.role)
        if ctx is not None:
            ctx.user_id = str(user.id)
            ctx.user_role = user.role
            ctx.session_token = token
        return CurrentUser(
            id=user.id,
            email=user.email,
            role=user.role,
            permissions=permissions,
            token=token,
            user=user,
        )
