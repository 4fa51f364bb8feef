"""
Storefront Backend — Session Model
====================================

What:  Server-side record of an issued access token.
Why:   A signed JWT alone cannot be revoked. Every authenticated request
       also checks that the token's session row is still valid, so logout,
       "log out everywhere" and concurrent-session limits take effect
       immediately.

Lifecycle:
    login            → row created (is_valid=True, expires_at = now + TTL)
    logout           → is_valid=False
    expiry observed  → is_valid=False (flipped on the next validation)
    cleanup job      → is_valid=False, deleted_at set (soft delete)
    newer login over the concurrent limit → oldest row is_valid=False
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database import Base
from storefront.models.base import TimestampMixin, UUIDPrimaryKeyMixin


class Session(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "sessions"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    token: Mapped[str] = mapped_column(
        String(1024), nullable=False, unique=True, comment="The issued access token"
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="Soft-delete marker set by cleanup"
    )

    __table_args__ = (
        Index("idx_sessions_user_valid", "user_id", "is_valid"),
        Index("idx_sessions_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Session(id={self.id}, user_id={self.user_id}, is_valid={self.is_valid})>"
