"""Initial storefront schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Creates roles, users, sessions, featured_products, orders,
       order_items and audit_records.
How:   Portable column types (sa.Uuid, TIMESTAMP WITH TIME ZONE, JSON),
       matching the ORM models so autogenerate reports no drift.

Rollback: downgrade() drops every table (destructive, all data lost).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP"), comment="Creation time (UTC)"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP"), comment="Last modification time (UTC)"),
    ]


def upgrade() -> None:
    op.create_table(
        "roles",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, comment="Unique identifier"),
        sa.Column("name", sa.String(50), nullable=False, comment="Role name referenced by users.role"),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("permissions", sa.JSON(), nullable=False, comment="Permission strings, e.g. 'read:audit'"),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, comment="Unique identifier"),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False,
                  comment="bcrypt hash, never returned by the API"),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("role", sa.String(50), nullable=False, server_default="customer"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("idx_users_role", "users", ["role"])

    op.create_table(
        "sessions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, comment="Unique identifier"),
        sa.Column("user_id", sa.Uuid(as_uuid=True),
                  sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("token", sa.String(1024), nullable=False, comment="The issued access token"),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True,
                  comment="Soft-delete marker set by cleanup"),
        *_timestamps(),
        sa.UniqueConstraint("token", name="uq_sessions_token"),
    )
    op.create_index("idx_sessions_user_valid", "sessions", ["user_id", "is_valid"])
    op.create_index("idx_sessions_expires_at", "sessions", ["expires_at"])

    op.create_table(
        "featured_products",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, comment="Unique identifier"),
        sa.Column("printify_product_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(1024), nullable=True),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0", comment="Price in cents"),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint("printify_product_id", name="uq_featured_products_printify_id"),
    )
    op.create_index("idx_featured_active_position", "featured_products", ["is_active", "position"])

    op.create_table(
        "orders",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, comment="Unique identifier"),
        sa.Column("user_id", sa.Uuid(as_uuid=True),
                  sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("stripe_session_id", sa.String(255), nullable=False),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("total_amount", sa.Integer(), nullable=False, server_default="0", comment="Cents"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="usd"),
        *_timestamps(),
        sa.UniqueConstraint("stripe_session_id", name="uq_orders_stripe_session_id"),
    )
    op.create_index("idx_orders_user", "orders", ["user_id"])

    op.create_table(
        "order_items",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, comment="Unique identifier"),
        sa.Column("order_id", sa.Uuid(as_uuid=True),
                  sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.String(64), nullable=False),
        sa.Column("variant_id", sa.String(64), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("unit_price", sa.Integer(), nullable=False, server_default="0", comment="Cents"),
    )

    # Append-only: no foreign key on user_id, the trail outlives the user
    op.create_table(
        "audit_records",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="success"),
        sa.Column("severity", sa.String(20), nullable=False, server_default="low"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("idx_audit_entity", "audit_records", ["entity_type", "entity_id"])
    op.create_index("idx_audit_user", "audit_records", ["user_id"])
    op.create_index("idx_audit_action", "audit_records", ["action"])
    op.create_index("idx_audit_created_at", "audit_records", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_records")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("featured_products")
    op.drop_table("sessions")
    op.drop_table("users")
    op.drop_table("roles")
