"""
Storefront Backend — User Administration Route Handlers
=========================================================

Endpoints (all require manage:users):
    GET /api/users                  paginated list, optional ?role=
    GET /api/users/{id}             one user (404 with data {} when missing)
    PUT /api/users/{id}/role        {role}
    PUT /api/users/{id}/status      {isActive}
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db_session
from storefront.dependencies import AppServices, get_responder, get_services
from storefront.responses import Responder
from storefront.schemas.auth import UserResponse
from storefront.security.dependencies import authorize

router = APIRouter(
    prefix="/api/users",
    tags=["Users"],
    dependencies=[Depends(authorize(permissions=["manage:users"]))],
)


class RoleAssignment(BaseModel):
    role: str = Field(min_length=1, max_length=50)


class StatusChange(BaseModel):
    is_active: bool

    model_config = {"alias_generator": to_camel, "populate_by_name": True}


def _payload(user) -> dict:
    return UserResponse.model_validate(user).model_dump(by_alias=True, mode="json")


@router.get("", summary="List users")
async def list_users(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    role: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    users, total = await services.users.list_users(db, page, limit, role)
    return responder.paginated([_payload(u) for u in users], page, limit, total, "Users retrieved")


@router.get("/{user_id}", summary="Get one user")
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    user = await services.users.get_user(db, user_id)
    return responder.success(_payload(user), "User retrieved")


@router.put("/{user_id}/role", summary="Assign a role")
async def assign_role(
    user_id: UUID,
    body: RoleAssignment,
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    user = await services.users.assign_role(db, user_id, body.role, responder.ctx)
    return responder.success(_payload(user), "Role assigned")


@router.put("/{user_id}/status", summary="Activate or deactivate a user")
async def set_status(
    user_id: UUID,
    body: StatusChange,
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    user = await services.users.set_active(db, user_id, body.is_active, responder.ctx)
    return responder.success(_payload(user), "User status updated")
