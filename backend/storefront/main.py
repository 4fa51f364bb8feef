"""
Storefront Backend — FastAPI Application Factory
==================================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes service construction, middleware registration, route
       mounting, error rendering and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn storefront.main:app)
       and by the test suite with test settings and mock transports.

Application Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                        FastAPI App                           │
    │                                                              │
    │  Middleware Chain:                                           │
    │  ┌─────────┐ ┌──────────┐ ┌─────────┐ ┌───────┐ ┌─────────┐  │
    │  │ Req Ctx │→│RateLimit │→│ Logging │→│ Audit │→│CORS/GZip│  │
    │  └─────────┘ └──────────┘ └─────────┘ └───────┘ └─────────┘  │
    │                                                              │
    │  Routes:                                                     │
    │  auth · users · featured-products · payment · printify ·    │
    │  audit · health                                              │
    │                                                              │
    │  Exception Handlers (all render the standard envelope):      │
    │  StorefrontError → own status │ request validation → 400     │
    │  HTTPException → its status   │ anything else → 500          │
    └──────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize structured logging
    2. Validate configuration (logged, not fatal)
    3. Create tables (outside production), seed default roles
    4. Soft-delete expired sessions

    Shutdown:
    1. Close upstream HTTP clients
    2. Dispose database engine (close all connections)
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront import __version__
from storefront.config import Settings, settings as default_settings
from storefront.context import RequestContext
from storefront.database import Database
from storefront.dependencies import AppServices, get_request_context
from storefront.exceptions import (
    CircuitBreakerOpenError,
    DatabaseError,
    RateLimitExceededError,
    StorefrontError,
)
from storefront.logger import get_logger, setup_logging
from storefront.middleware.audit import AuditMiddleware
from storefront.middleware.logging import RequestLoggingMiddleware
from storefront.middleware.rate_limit import RateLimitMiddleware
from storefront.middleware.request_context import RequestContextMiddleware
from storefront.routes import audit, auth, featured_products, health, payment, printify, users

log = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    services: AppServices = app.state.services
    settings = services.settings
    ctx = RequestContext.system("startup")

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(settings)
    log.info("=" * 60)
    log.info("Storefront API %s starting (%s)", __version__, settings.environment)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Not fatal: health checks still answer and report the problem
        log.error("Configuration error: %s", e)

    if not settings.is_production:
        await services.database.create_all()

    async with services.database.session() as db:
        await services.auth.ensure_default_roles(db)
        await services.sessions.cleanup_expired_sessions(db, ctx)

    log.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    log.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    log.info("Storefront API shutting down...")
    await services.aclose()
    log.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _retry_headers(exc: Exception) -> Optional[dict]:
    if isinstance(exc, RateLimitExceededError):
        return {"Retry-After": str(exc.retry_after)}
    if isinstance(exc, CircuitBreakerOpenError):
        return {"Retry-After": str(exc.recovery_time)}
    return None


def _field_errors(exc: RequestValidationError) -> dict:
    """[{"loc": ("body", "email"), "msg": ...}] → {"email": "..."}"""
    errors = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
        errors[".".join(loc) or "request"] = err.get("msg", "Invalid value")
    return errors


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register global exception handlers for consistent error responses.

    Every handler delegates to the ResponseBuilder, which logs the error at
    the level its class declares and returns the client-safe envelope.

    Handler hierarchy:
        StorefrontError          → its status_code (400–503)
        RequestValidationError   → 400 with data.validationErrors
        HTTPException            → its status (unknown route 404, 405, ...)
        SQLAlchemyError          → 500, generic message
        Exception (fallback)     → 500, message hidden in production
    """

    @app.exception_handler(StorefrontError)
    async def handle_storefront_error(request: Request, exc: StorefrontError):
        responses = request.app.state.services.responses
        return responses.error(get_request_context(request), exc, headers=_retry_headers(exc))

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        responses = request.app.state.services.responses
        return responses.validation_error(get_request_context(request), _field_errors(exc))

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        responses = request.app.state.services.responses
        return responses.error(
            get_request_context(request), exc, status_code=exc.status_code, headers=exc.headers
        )

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        responses = request.app.state.services.responses
        error = DatabaseError(
            f"Database error: {type(exc).__name__}", context={"detail": str(exc)[:500]}
        )
        return responses.error(get_request_context(request), error)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """
        Catch-all for truly unexpected errors.

        Runs outside the middleware chain, so the ID headers the request
        context middleware would add are set here.
        """
        ctx = get_request_context(request)
        responses = request.app.state.services.responses
        return responses.error(
            ctx, exc, status_code=500,
            headers={"X-Request-ID": ctx.request_id, "X-Correlation-ID": ctx.correlation_id},
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    printify_transport: Optional[httpx.AsyncBaseTransport] = None,
    stripe_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Tests pass their own settings and database, and httpx MockTransports
    for the upstream APIs. Production uses the defaults.
    """
    settings = settings or default_settings
    app = FastAPI(
        title="Storefront API",
        description="E-commerce storefront backend: catalog proxy, checkout, accounts and audit trail.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = AppServices.build(
        settings,
        database=database,
        printify_transport=printify_transport,
        stripe_transport=stripe_transport,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in REVERSE order of addition (last added = outermost).
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Correlation-ID", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(AuditMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        limit=settings.rate_limit_requests,
        window=settings.rate_limit_window,
        enabled=settings.rate_limit_enabled,
    )
    app.add_middleware(RequestContextMiddleware)

    # ── Register Exception Handlers ───────────────────────────────────────
    register_exception_handlers(app)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(featured_products.router)
    app.include_router(payment.router)
    app.include_router(printify.router)
    app.include_router(audit.router)

    return app


# uvicorn expects `storefront.main:app` to be importable
app = create_app()
