"""
Storefront Backend — Audit Trail Route Handlers
=================================================

What:  Read access to the audit trail for administrators.
Who:   Requires the `read:audit` permission on every endpoint.

Endpoints:
    GET /api/audit                          filtered, paginated listing
    GET /api/audit/entity/{type}/{id}       history of one entity
    GET /api/audit/user/{user_id}           actions performed by one user
    GET /api/audit/stats                    record counts grouped by field
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db_session
from storefront.dependencies import AppServices, get_responder, get_services
from storefront.responses import ResourceType, Responder
from storefront.security.dependencies import authorize
from storefront.services.audit_service import AuditFilters, record_to_dict

router = APIRouter(
    prefix="/api/audit",
    tags=["Audit"],
    dependencies=[Depends(authorize(permissions=["read:audit"]))],
)


@router.get("", summary="Search audit records")
async def list_audit_records(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    action: Optional[str] = Query(default=None),
    entity_type: Optional[str] = Query(default=None, alias="entityType"),
    entity_id: Optional[str] = Query(default=None, alias="entityId"),
    user_id: Optional[str] = Query(default=None, alias="userId"),
    status: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    sort_order: str = Query(default="desc", alias="sortOrder", pattern="^(asc|desc)$"),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    filters = AuditFilters(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        status=status,
        severity=severity,
        start_date=start_date,
        end_date=end_date,
    )
    records, total = await services.audit.get_audit_records(db, filters, page, limit, sort_order)
    return responder.paginated(
        [record_to_dict(r) for r in records], page, limit, total, "Audit records retrieved"
    )


@router.get("/stats", summary="Audit statistics")
async def audit_stats(
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    stats = await services.audit.get_audit_stats(db, start_date, end_date)
    return responder.success(stats, "Audit statistics retrieved", resource_type=ResourceType.SINGLE)


@router.get("/entity/{entity_type}/{entity_id}", summary="Audit history of one entity")
async def entity_history(
    entity_type: str,
    entity_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    records = await services.audit.get_entity_history(db, entity_type, entity_id, limit)
    return responder.success([record_to_dict(r) for r in records], "Entity history retrieved")


@router.get("/user/{user_id}", summary="Actions performed by one user")
async def user_history(
    user_id: str,
    limit: int = Query(default=100, ge=1, le=500),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    records = await services.audit.get_user_action_history(db, user_id, limit)
    return responder.success([record_to_dict(r) for r in records], "User history retrieved")
