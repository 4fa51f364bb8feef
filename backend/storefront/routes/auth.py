"""
Storefront Backend — Auth Route Handlers
==========================================

What:  Registration, login, logout and the current user.
How:   Thin handlers: validate input (Pydantic), call AuthService, wrap the
       result in the standard envelope. Audit records are written by the
       service, so the audit middleware skips these requests.

Endpoints:
    POST /api/auth/register     → 201 user
    POST /api/auth/login        → 200 {user, accessToken, tokenType, permissions}
    POST /api/auth/logout       → 200 {}
    POST /api/auth/logout-all   → 200 {invalidatedSessions}
    GET  /api/auth/me           → 200 {user, permissions}
    GET  /api/auth/sessions     → 200 [session, ...]
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db_session
from storefront.dependencies import AppServices, get_responder, get_services
from storefront.responses import Responder
from storefront.schemas.auth import LoginRequest, LoginResponse, RegisterRequest, UserResponse
from storefront.security.dependencies import get_current_user
from storefront.services.auth_service import CurrentUser

router = APIRouter(prefix="/api/auth", tags=["Auth"])


def _user_payload(user) -> dict:
    return UserResponse.model_validate(user).model_dump(by_alias=True, mode="json")


@router.post("/register", status_code=201, summary="Create a customer account")
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    user = await services.auth.register(db, body, responder.ctx)
    return responder.created(_user_payload(user), "Registration successful")


@router.post(
    "/login",
    summary="Exchange credentials for an access token",
    description=(
        "Returns a bearer token backed by a server-side session. Repeated "
        "failures from one IP are throttled with 429."
    ),
)
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    user, token, permissions = await services.auth.login(db, body, responder.ctx)
    payload = LoginResponse(
        user=UserResponse.model_validate(user),
        access_token=token,
        permissions=permissions,
    )
    return responder.success(payload.model_dump(by_alias=True, mode="json"), "Login successful")


@router.post("/logout", summary="Invalidate the current session")
async def logout(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    await services.auth.logout(db, user, responder.ctx)
    return responder.success(None, "Logged out successfully")


@router.post("/logout-all", summary="Invalidate every session of the current user")
async def logout_all(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    count = await services.auth.logout_everywhere(db, user, responder.ctx)
    return responder.success({"invalidatedSessions": count}, "Logged out of all sessions")


@router.get("/me", summary="The authenticated user")
async def me(
    user: CurrentUser = Depends(get_current_user),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    return responder.success(
        {"user": _user_payload(user.user), "permissions": user.permissions},
        "User retrieved",
    )


@router.get("/sessions", summary="Active sessions of the authenticated user")
async def sessions(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    active = await services.sessions.get_active_sessions(db, user.id)
    return responder.success(
        [
            {
                "id": str(s.id),
                "ipAddress": s.ip_address,
                "userAgent": s.user_agent,
                "createdAt": s.created_at.isoformat() if s.created_at else None,
                "expiresAt": s.expires_at.isoformat() if s.expires_at else None,
                "current": s.token == user.token,
            }
            for s in active
        ],
        "Sessions retrieved",
    )
