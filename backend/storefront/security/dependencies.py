"""
Storefront Backend — Authentication and Authorization Dependencies
====================================================================

What:  FastAPI dependencies guarding protected routes.
How:   `get_current_user` resolves the bearer token to a CurrentUser (401
       on any failure). `authorize(...)` builds a dependency that
       additionally checks roles and/or permissions (403 on failure).

Usage:
    @router.get("/audit", dependencies=[Depends(authorize(permissions=["read:audit"]))])
    @router.post("/featured-products")
    async def create(user: CurrentUser = Depends(authorize(permissions=["manage:products"]))): ...

Rules:
    roles        caller's role must be one of them
    permissions  caller must hold at least one (default)
                 or all of them (require_all=True)
"""

from typing import Callable, Iterable, Optional, Sequence, Union

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db_session
from storefront.dependencies import get_request_context, get_services
from storefront.exceptions import AuthorizationError
from storefront.logger import get_logger
from storefront.services.auth_service import CurrentUser

log = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    token = credentials.credentials if credentials else None
    services = get_services(request)
    return await services.auth.authenticate(db, token, get_request_context(request))


def authorize(
    requirements: Optional[Union[str, Sequence[str]]] = None,
    *,
    roles: Optional[Iterable[str]] = None,
    permissions: Optional[Iterable[str]] = None,
    require_all: bool = False,
) -> Callable:
    """
    Build a dependency enforcing role and/or permission requirements.

    A bare string or list passed positionally is read as roles:
    `authorize("admin")` == `authorize(roles=["admin"])`.
    """
    if isinstance(requirements, str):
        requirements = [requirements]
    allowed_roles = set(roles or ()) | set(requirements or ())
    needed = list(permissions or ())

    async def dependency(
        request: Request,
        user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        ctx = get_request_context(request)
        if allowed_roles and user.role not in allowed_roles:
            log.warning(
                "Role check failed", ctx=ctx,
                user_role=user.role, required_roles=sorted(allowed_roles),
            )
            raise AuthorizationError("Insufficient role permissions")

        if needed:
            held = set(user.permissions)
            ok = all(p in held for p in needed) if require_all else any(p in held for p in needed)
            if not ok:
                log.warning(
                    "Permission check failed", ctx=ctx,
                    required_permissions=needed, require_all=require_all,
                )
                raise AuthorizationError("Insufficient permissions")
        return user

    return dependency
