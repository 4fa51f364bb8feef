"""
Storefront Backend — Audit Recorder
=====================================

What:  Writes and queries the append-only audit trail.
Why:   Every state-changing request, every login and every payment must be
       traceable to a user, an IP and a request ID, without the audit
       system ever being the reason a request fails.
How:   Two entry points feed the same `create()`:

       1. AuditMiddleware records one entry per mutating HTTP request,
          deriving action and entity from method and path.
       2. Services call the recorder explicitly after a successful write,
          with before/after snapshots (featured products, orders, logins).
          An explicit record marks the request context so the middleware
          does not write a second, less detailed entry for it.

       `create()` runs in its own database session and transaction, so an
       audit failure never rolls back business data and vice versa. It
       returns None instead of raising.

Derivation rules (middleware path):
    Method → action:   POST→CREATE, PUT/PATCH→UPDATE, DELETE→DELETE, GET→READ
    Path → entity:     /api/featured-products/42 → ("FeaturedProduct", "42")
    Status → outcome:  <400 success/low, 4xx warning/medium, ≥500 failure/high
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import asc, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.context import RequestContext
from storefront.database import Database
from storefront.logger import get_logger
from storefront.models.audit import AuditRecord
from storefront.redaction import sanitize_values

log = get_logger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Vocabulary
# ══════════════════════════════════════════════════════════════════════════

class AuditAction(str, enum.Enum):
    # Authentication
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    PASSWORD_RESET = "PASSWORD_RESET"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    # Data
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    RESTORE = "RESTORE"
    # Access control
    PERMISSION_GRANTED = "PERMISSION_GRANTED"
    PERMISSION_REVOKED = "PERMISSION_REVOKED"
    ROLE_ASSIGNED = "ROLE_ASSIGNED"
    ROLE_REMOVED = "ROLE_REMOVED"
    # System
    SYSTEM_ERROR = "SYSTEM_ERROR"
    CONFIG_CHANGED = "CONFIG_CHANGED"
    MAINTENANCE = "MAINTENANCE"
    # Commerce
    ORDER_PLACED = "ORDER_PLACED"
    ORDER_UPDATED = "ORDER_UPDATED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    PAYMENT_PROCESSED = "PAYMENT_PROCESSED"
    EMAIL_SENT = "EMAIL_SENT"


class EntityType(str, enum.Enum):
    USER = "User"
    ROLE = "Role"
    PERMISSION = "Permission"
    ORDER = "Order"
    ORDER_ITEM = "OrderItem"
    SESSION = "Session"
    SYSTEM = "System"
    EMAIL = "Email"
    PAYMENT = "Payment"
    FEATURED_PRODUCT = "FeaturedProduct"


class AuditStatus(str, enum.Enum):
    SUCCESS = "success"
    WARNING = "warning"
    FAILURE = "failure"


class AuditSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


METHOD_ACTIONS = {
    "POST": AuditAction.CREATE,
    "PUT": AuditAction.UPDATE,
    "PATCH": AuditAction.UPDATE,
    "DELETE": AuditAction.DELETE,
    "GET": AuditAction.READ,
}

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


# ══════════════════════════════════════════════════════════════════════════
# Derivation Helpers (pure)
# ══════════════════════════════════════════════════════════════════════════

def singularize(word: str) -> str:
    """categories → category, products → product, address → address"""
    lower = word.lower()
    if lower.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if lower.endswith("ss"):
        return word
    if lower.endswith("s") and len(word) > 1:
        return word[:-1]
    return word


def entity_name(segment: str) -> str:
    """featured-products → FeaturedProduct"""
    parts = [p for p in segment.replace("_", "-").split("-") if p]
    if not parts:
        return "Unknown"
    parts[-1] = singularize(parts[-1])
    return "".join(p[:1].upper() + p[1:] for p in parts)


def extract_entity_info(path: str) -> Tuple[str, Optional[str]]:
    """
    Derive (entity_type, entity_id) from a request path.

    The leading "api" segment is skipped; the first remaining segment names
    the entity and the next one, if present, is taken as its ID.
    """
    segments = [s for s in path.split("?")[0].split("/") if s]
    if segments and segments[0].lower() == "api":
        segments = segments[1:]
    if not segments:
        return "Unknown", None
    entity_id = segments[1] if len(segments) > 1 else None
    return entity_name(segments[0]), entity_id


def action_for_method(method: str) -> Optional[AuditAction]:
    return METHOD_ACTIONS.get(method.upper())


def outcome_for_status(status_code: int) -> Tuple[AuditStatus, AuditSeverity]:
    if status_code >= 500:
        return AuditStatus.FAILURE, AuditSeverity.HIGH
    if status_code >= 400:
        return AuditStatus.WARNING, AuditSeverity.MEDIUM
    return AuditStatus.SUCCESS, AuditSeverity.LOW


def should_audit(
    method: str,
    path: str,
    exclude_paths: Iterable[str] = (),
    audit_get_requests: bool = False,
) -> bool:
    method = method.upper()
    if any(path == p or path.startswith(p.rstrip("/") + "/") for p in exclude_paths):
        return False
    if method in MUTATING_METHODS:
        return True
    return method == "GET" and audit_get_requests


def _value(v: Any) -> Any:
    return v.value if isinstance(v, enum.Enum) else v


# ══════════════════════════════════════════════════════════════════════════
# Query Filters
# ══════════════════════════════════════════════════════════════════════════

@dataclass
class AuditFilters:
    action: Optional[str] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    status: Optional[str] = None
    severity: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


def record_to_dict(record: AuditRecord) -> Dict[str, Any]:
    return {
        "id": str(record.id),
        "userId": record.user_id,
        "action": record.action,
        "entityType": record.entity_type,
        "entityId": record.entity_id,
        "oldValues": record.old_values,
        "newValues": record.new_values,
        "ipAddress": record.ip_address,
        "userAgent": record.user_agent,
        "requestId": record.request_id,
        "status": record.status,
        "severity": record.severity,
        "metadata": record.meta,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
    }


# ══════════════════════════════════════════════════════════════════════════
# Recorder
# ══════════════════════════════════════════════════════════════════════════

class AuditRecorder:
    """
    Persists audit records and answers audit queries.

    Writes go through `database.session()` (own transaction); reads use the
    caller's request session like every other service query.
    """

    def __init__(self, database: Database):
        self.database = database

    async def create(
        self,
        action: Any,
        entity_type: Any,
        entity_id: Optional[Any] = None,
        *,
        user_id: Optional[Any] = None,
        old_values: Optional[Any] = None,
        new_values: Optional[Any] = None,
        status: Any = AuditStatus.SUCCESS,
        severity: Any = AuditSeverity.LOW,
        metadata: Optional[Dict[str, Any]] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Optional[AuditRecord]:
        """
        Persist one audit record. Returns it, or None if anything failed.

        Values are sanitized before storage. Request details (IP, user
        agent, request ID, user) default from `ctx`.
        """
        try:
            if user_id is None and ctx is not None:
                user_id = ctx.user_id
            record = AuditRecord(
                action=AuditAction(_value(action)).value,
                entity_type=str(_value(entity_type)),
                entity_id=str(entity_id) if entity_id is not None else None,
                user_id=str(user_id) if user_id is not None else None,
                old_values=sanitize_values(old_values),
                new_values=sanitize_values(new_values),
                status=AuditStatus(_value(status)).value,
                severity=AuditSeverity(_value(severity)).value,
                meta=sanitize_values(metadata),
                ip_address=ctx.ip_address if ctx else None,
                user_agent=ctx.user_agent if ctx else None,
                request_id=ctx.request_id if ctx else None,
            )
            async with self.database.session() as session:
                session.add(record)

            if ctx is not None:
                ctx.audit_recorded = True
            log.debug(
                "Audit %s %s:%s recorded", record.action, record.entity_type, record.entity_id,
                ctx=ctx,
            )
            return record
        except Exception as e:  # noqa: BLE001
            log.error(
                "Failed to create audit record: %s", e,
                ctx=ctx, action=str(_value(action)), entity_type=str(_value(entity_type)),
                error_type=type(e).__name__,
            )
            return None

    # ── Convenience helpers ───────────────────────────────────────────────
    async def log_entity_action(
        self,
        action: Any,
        entity_type: Any,
        entity_id: Optional[Any] = None,
        old_values: Optional[Any] = None,
        new_values: Optional[Any] = None,
        ctx: Optional[RequestContext] = None,
        **options: Any,
    ) -> Optional[AuditRecord]:
        return await self.create(
            action, entity_type, entity_id,
            old_values=old_values, new_values=new_values, ctx=ctx, **options,
        )

    async def log_login(self, user_id: Any, ctx: Optional[RequestContext] = None,
                        metadata: Optional[Dict[str, Any]] = None) -> Optional[AuditRecord]:
        return await self.create(
            AuditAction.LOGIN, EntityType.USER, user_id,
            user_id=user_id, metadata=metadata, ctx=ctx,
        )

    async def log_login_failed(self, email: str, reason: str,
                               ctx: Optional[RequestContext] = None) -> Optional[AuditRecord]:
        return await self.create(
            AuditAction.LOGIN_FAILED, EntityType.USER,
            status=AuditStatus.FAILURE, severity=AuditSeverity.MEDIUM,
            metadata={"email": email, "reason": reason}, ctx=ctx,
        )

    async def log_logout(self, user_id: Any, ctx: Optional[RequestContext] = None) -> Optional[AuditRecord]:
        return await self.create(
            AuditAction.LOGOUT, EntityType.USER, user_id, user_id=user_id, ctx=ctx,
        )

    async def log_system_error(self, error: BaseException, ctx: Optional[RequestContext] = None,
                               metadata: Optional[Dict[str, Any]] = None) -> Optional[AuditRecord]:
        details = {"error": str(error), "errorType": type(error).__name__}
        if metadata:
            details.update(metadata)
        return await self.create(
            AuditAction.SYSTEM_ERROR, EntityType.SYSTEM,
            status=AuditStatus.FAILURE, severity=AuditSeverity.HIGH,
            metadata=details, ctx=ctx,
        )

    async def log_email_sent(self, recipient: str, template: str,
                             ctx: Optional[RequestContext] = None) -> Optional[AuditRecord]:
        return await self.create(
            AuditAction.EMAIL_SENT, EntityType.EMAIL,
            metadata={"recipient": recipient, "template": template}, ctx=ctx,
        )

    # ── Queries ───────────────────────────────────────────────────────────
    async def get_audit_records(
        self,
        db: AsyncSession,
        filters: Optional[AuditFilters] = None,
        page: int = 1,
        limit: int = 20,
        sort_order: str = "desc",
    ) -> Tuple[List[AuditRecord], int]:
        """Filtered, paginated listing. Returns (records, total)."""
        filters = filters or AuditFilters()
        conditions = []
        for column, value in (
            (AuditRecord.action, filters.action),
            (AuditRecord.entity_type, filters.entity_type),
            (AuditRecord.entity_id, filters.entity_id),
            (AuditRecord.user_id, filters.user_id),
            (AuditRecord.status, filters.status),
            (AuditRecord.severity, filters.severity),
        ):
            if value is not None:
                conditions.append(column == value)
        if filters.start_date is not None:
            conditions.append(AuditRecord.created_at >= filters.start_date)
        if filters.end_date is not None:
            conditions.append(AuditRecord.created_at <= filters.end_date)

        total = (
            await db.execute(select(func.count()).select_from(AuditRecord).where(*conditions))
        ).scalar() or 0

        order = desc if sort_order.lower() == "desc" else asc
        result = await db.execute(
            select(AuditRecord)
            .where(*conditions)
            .order_by(order(AuditRecord.created_at))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_entity_history(
        self, db: AsyncSession, entity_type: str, entity_id: str, limit: int = 100
    ) -> List[AuditRecord]:
        result = await db.execute(
            select(AuditRecord)
            .where(AuditRecord.entity_type == entity_type, AuditRecord.entity_id == str(entity_id))
            .order_by(desc(AuditRecord.created_at))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_user_action_history(
        self, db: AsyncSession, user_id: str, limit: int = 100
    ) -> List[AuditRecord]:
        result = await db.execute(
            select(AuditRecord)
            .where(AuditRecord.user_id == str(user_id))
            .order_by(desc(AuditRecord.created_at))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_audit_stats(
        self,
        db: AsyncSession,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Record counts over an optional date range.

        Returns {"total", "byAction", "byStatus", "bySeverity",
        "byEntityType", "failedLogins"}.
        """
        conditions = []
        if start_date is not None:
            conditions.append(AuditRecord.created_at >= start_date)
        if end_date is not None:
            conditions.append(AuditRecord.created_at <= end_date)

        async def counts_by(column) -> Dict[str, int]:
            result = await db.execute(
                select(column, func.count()).where(*conditions).group_by(column)
            )
            return {key: count for key, count in result.all() if key is not None}

        by_action = await counts_by(AuditRecord.action)
        return {
            "total": sum(by_action.values()),
            "byAction": by_action,
            "byStatus": await counts_by(AuditRecord.status),
            "bySeverity": await counts_by(AuditRecord.severity),
            "byEntityType": await counts_by(AuditRecord.entity_type),
            "failedLogins": by_action.get(AuditAction.LOGIN_FAILED.value, 0),
        }
