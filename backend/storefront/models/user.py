"""
Storefront Backend — User and Role Models
===========================================

What:  Accounts and the roles that grant them permissions.
How:   A user references its role by name. Roles carry a JSON list of
       permission strings such as "manage:products" or "read:audit".

Seeded roles (see services.auth_service.DEFAULT_ROLES):
    customer  → place and read own orders
    admin     → every permission
"""

from typing import List, Optional

from sqlalchemy import JSON, Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database import Base
from storefront.models.base import TimestampMixin, UUIDPrimaryKeyMixin


class Role(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, comment="Role name referenced by users.role"
    )
    description: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    permissions: Mapped[List[str]] = mapped_column(
        JSON, nullable=False, default=list, comment="Permission strings, e.g. 'read:audit'"
    )

    def __repr__(self) -> str:
        return f"<Role(name='{self.name}', permissions={len(self.permissions or [])})>"


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    # Stored lower-cased; uniqueness is therefore case-insensitive
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="bcrypt hash, never returned by the API"
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="customer")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_users_role", "role"),)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
