"""
Storefront Backend — Session Manager
======================================

What:  Creates, validates and revokes the server-side sessions that back
       every issued access token.
Why:   Lets logout and "log out everywhere" take effect immediately even
       though the JWT itself stays cryptographically valid until `exp`.
How:   Stateless service; the caller passes the database session, exactly
       like the other services. All invalidation is soft (is_valid=False),
       so the rows remain available for investigation.

Invariants:
    - A token maps to at most one session row, owned by one user
    - validate_session() never raises; storage failures read as "invalid"
    - invalidate_session() is idempotent
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.context import RequestContext
from storefront.logger import get_logger
from storefront.models.base import as_utc
from storefront.models.session import Session

log = get_logger(__name__)


class SessionManager:
    def __init__(self, ttl_hours: int = 24, max_concurrent_sessions: int = 5):
        self.ttl = timedelta(hours=ttl_hours)
        self.max_concurrent_sessions = max_concurrent_sessions

    @classmethod
    def from_settings(cls, settings) -> "SessionManager":
        return cls(settings.session_ttl_hours, settings.max_concurrent_sessions)

    async def create_session(
        self,
        db: AsyncSession,
        user_id: UUID,
        token: str,
        ctx: Optional[RequestContext] = None,
    ) -> Session:
        """Record a new session for `token`, valid for the configured TTL."""
        session = Session(
            user_id=user_id,
            token=token,
            ip_address=ctx.ip_address if ctx else None,
            user_agent=ctx.user_agent if ctx else None,
            expires_at=datetime.now(timezone.utc) + self.ttl,
            is_valid=True,
        )
        db.add(session)
        await db.flush()
        log.info("Session created", ctx=ctx, user_id=str(user_id), session_id=str(session.id))
        return session

    async def get_session(self, db: AsyncSession, token: str) -> Optional[Session]:
        result = await db.execute(select(Session).where(Session.token == token))
        return result.scalar_one_or_none()

    async def validate_session(
        self, db: AsyncSession, token: str, ctx: Optional[RequestContext] = None
    ) -> bool:
        """
        True only for a known, still-valid, unexpired session.

        An expired session found here is flipped to is_valid=False so later
        checks (and the cleanup job) see it as dead without recomputing.
        """
        try:
            session = await self.get_session(db, token)
            if session is None:
                return False
            if not session.is_valid or session.deleted_at is not None:
                return False
            if as_utc(session.expires_at) <= datetime.now(timezone.utc):
                session.is_valid = False
                await db.flush()
                log.info("Session expired", ctx=ctx, session_id=str(session.id))
                return False
            return True
        except SQLAlchemyError as e:
            log.error("Session validation failed: %s", e, ctx=ctx)
            return False

    async def invalidate_session(
        self, db: AsyncSession, token: str, ctx: Optional[RequestContext] = None
    ) -> bool:
        """Mark the session invalid. Returns False when there was nothing to do."""
        session = await self.get_session(db, token)
        if session is None or not session.is_valid:
            return False
        session.is_valid = False
        await db.flush()
        log.info("Session invalidated", ctx=ctx, session_id=str(session.id))
        return True

    async def invalidate_all_user_sessions(
        self, db: AsyncSession, user_id: UUID, ctx: Optional[RequestContext] = None
    ) -> int:
        result = await db.execute(
            update(Session)
            .where(Session.user_id == user_id, Session.is_valid.is_(True))
            .values(is_valid=False, updated_at=datetime.now(timezone.utc))
        )
        count = result.rowcount or 0
        log.info("Invalidated %d sessions", count, ctx=ctx, user_id=str(user_id))
        return count

    async def get_active_sessions(self, db: AsyncSession, user_id: UUID) -> List[Session]:
        now = datetime.now(timezone.utc)
        result = await db.execute(
            select(Session)
            .where(
                Session.user_id == user_id,
                Session.is_valid.is_(True),
                Session.deleted_at.is_(None),
                Session.expires_at > now,
            )
            .order_by(Session.created_at.asc())
        )
        return list(result.scalars().all())

    async def enforce_session_limit(
        self, db: AsyncSession, user_id: UUID, ctx: Optional[RequestContext] = None
    ) -> int:
        """
        Make room for one more session: while the user is at the limit,
        invalidate the oldest active session. Returns how many were evicted.
        """
        active = await self.get_active_sessions(db, user_id)
        evicted = 0
        while len(active) - evicted >= self.max_concurrent_sessions:
            oldest = active[evicted]
            oldest.is_valid = False
            evicted += 1
            log.info(
                "Evicted oldest session over concurrent limit",
                ctx=ctx, user_id=str(user_id), session_id=str(oldest.id),
            )
        if evicted:
            await db.flush()
        return evicted

    async def cleanup_expired_sessions(
        self, db: AsyncSession, ctx: Optional[RequestContext] = None
    ) -> int:
        """Soft-delete every expired session not already cleaned up."""
        now = datetime.now(timezone.utc)
        result = await db.execute(
            update(Session)
            .where(Session.expires_at <= now, Session.deleted_at.is_(None))
            .values(is_valid=False, deleted_at=now, updated_at=now)
        )
        count = result.rowcount or 0
        if count:
            log.info("Cleaned up %d expired sessions", count, ctx=ctx)
        return count

