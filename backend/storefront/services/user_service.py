"""
Storefront Backend — User Administration Service
==================================================

What:  Listing users, role assignment and account activation.
How:   Role changes and deactivation are audited explicitly with the
       before/after values. Deactivating a user also revokes every one of
       their sessions, so the change takes effect on the next request.
"""

from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.context import RequestContext
from storefront.exceptions import NotFoundError, ValidationError
from storefront.logger import get_logger
from storefront.models.user import Role, User
from storefront.services.audit_service import AuditAction, AuditRecorder, EntityType
from storefront.services.session_service import SessionManager

log = get_logger(__name__)


class UserService:
    def __init__(self, audit: AuditRecorder, sessions: SessionManager):
        self.audit = audit
        self.sessions = sessions

    async def list_users(
        self, db: AsyncSession, page: int = 1, limit: int = 20, role: Optional[str] = None
    ) -> Tuple[List[User], int]:
        conditions = [User.role == role] if role else []
        total = (
            await db.execute(select(func.count()).select_from(User).where(*conditions))
        ).scalar() or 0
        result = await db.execute(
            select(User)
            .where(*conditions)
            .order_by(User.created_at.asc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_user(self, db: AsyncSession, user_id: UUID) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError("user", str(user_id))
        return user

    async def assign_role(
        self, db: AsyncSession, user_id: UUID, role_name: str, ctx: Optional[RequestContext] = None
    ) -> User:
        role = (await db.execute(select(Role).where(Role.name == role_name))).scalar_one_or_none()
        if role is None:
            raise ValidationError(f"Unknown role: {role_name}", field="role")

        user = await self.get_user(db, user_id)
        previous = user.role
        if previous == role_name:
            return user
        user.role = role_name
        await db.commit()

        log.notice("Role changed", ctx=ctx, target_user_id=str(user_id), old_role=previous, new_role=role_name)
        await self.audit.log_entity_action(
            AuditAction.ROLE_ASSIGNED, EntityType.USER, user_id,
            old_values={"role": previous}, new_values={"role": role_name}, ctx=ctx,
        )
        return user

    async def set_active(
        self, db: AsyncSession, user_id: UUID, is_active: bool, ctx: Optional[RequestContext] = None
    ) -> User:
        user = await self.get_user(db, user_id)
        previous = user.is_active
        user.is_active = is_active
        revoked = 0
        if not is_active:
            revoked = await self.sessions.invalidate_all_user_sessions(db, user_id, ctx)
        await db.commit()

        log.notice(
            "User %s", "activated" if is_active else "deactivated",
            ctx=ctx, target_user_id=str(user_id), revoked_sessions=revoked,
        )
        await self.audit.log_entity_action(
            AuditAction.UPDATE, EntityType.USER, user_id,
            old_values={"isActive": previous}, new_values={"isActive": is_active},
            ctx=ctx, metadata={"revokedSessions": revoked},
        )
        return user
