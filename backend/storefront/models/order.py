"""
Storefront Backend — Order Models
===================================

What:  Orders created from completed Stripe checkout sessions.
How:   An Order and its OrderItems are inserted in one transaction, so a
       partially written order can never be observed.

Status flow:
    pending → paid | failed
    paid    → cancelled | refunded (full or partial, once)
"""

import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database import Base
from storefront.models.base import TimestampMixin, UUIDPrimaryKeyMixin

ORDER_STATUSES = ("pending", "paid", "failed", "cancelled", "refunded")


class Order(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "orders"

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    stripe_session_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="Cents")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    refunded_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="Cents")
    refund_reason: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[List["OrderItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        Index("idx_orders_user", "user_id"),
        Index("idx_orders_status_created", "status", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "userId": str(self.user_id) if self.user_id else None,
            "stripeSessionId": self.stripe_session_id,
            "customerEmail": self.customer_email,
            "status": self.status,
            "totalAmount": self.total_amount,
            "currency": self.currency,
            "refundedAmount": self.refunded_amount,
            "refundReason": self.refund_reason,
            "refundedAt": self.refunded_at.isoformat() if self.refunded_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "items": [item.to_dict() for item in self.items],
        }

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status='{self.status}', total={self.total_amount})>"


class OrderItem(UUIDPrimaryKeyMixin, Base):
    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    variant_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="Cents")

    order: Mapped[Order] = relationship(back_populates="items")

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "variantId": self.variant_id,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
        }
