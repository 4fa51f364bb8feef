"""Order refund tracking

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Adds refunded_amount, refund_reason and refunded_at to orders, plus
       the (status, created_at) index used by the admin order listing and
       sales statistics.

Rollback: downgrade() drops the index and the refund columns (refund
history is lost; order status stays "refunded").
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "orders",
        sa.Column("refunded_amount", sa.Integer(), nullable=False, server_default="0", comment="Cents"),
    )
    op.add_column("orders", sa.Column("refund_reason", sa.String(50), nullable=True))
    op.add_column("orders", sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True))
    op.create_index("idx_orders_status_created", "orders", ["status", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_orders_status_created", table_name="orders")
    op.drop_column("orders", "refunded_at")
    op.drop_column("orders", "refund_reason")
    op.drop_column("orders", "refunded_amount")
