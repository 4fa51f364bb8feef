"""
Storefront Backend — Order Service
====================================

What:  Turns completed checkout sessions into orders, lists them, reports
       sales statistics and records refunds.
How:   The order and all of its items are added to one session and
       committed once. Either the whole order exists or none of it does.

Idempotency:
    Stripe retries webhooks until it sees a 2xx, so the same
    `checkout.session.completed` event can arrive more than once. The
    unique `stripe_session_id` column is the dedupe key: a second delivery
    returns the existing order and writes nothing.
"""

import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.context import RequestContext
from storefront.exceptions import NotFoundError
from storefront.logger import get_logger
from storefront.models.base import as_utc, utcnow
from storefront.models.order import Order, OrderItem
from storefront.services.audit_service import (
    AuditAction,
    AuditRecorder,
    AuditSeverity,
    AuditStatus,
    EntityType,
)

log = get_logger(__name__)

ORDER_SORTS = {
    "newest": Order.created_at.desc(),
    "oldest": Order.created_at.asc(),
    "highest": Order.total_amount.desc(),
    "lowest": Order.total_amount.asc(),
}

STATS_RANGES = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}

NON_SALE_STATUSES = ("cancelled", "failed")


def parse_cart_items(metadata: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Decode the `cartItems` JSON stored in checkout session metadata."""
    raw = (metadata or {}).get("cartItems")
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        log.warning("Checkout session carries malformed cartItems metadata")
        return []
    return [item for item in items if isinstance(item, dict) and item.get("id")]


def _user_id(metadata: Dict[str, Any]) -> Optional[UUID]:
    try:
        return UUID(str((metadata or {}).get("userId")))
    except ValueError:
        return None


class OrderService:
    def __init__(self, audit: AuditRecorder, default_currency: str = "usd"):
        self.audit = audit
        self.default_currency = default_currency

    async def get_by_checkout_session(self, db: AsyncSession, session_id: str) -> Optional[Order]:
        result = await db.execute(select(Order).where(Order.stripe_session_id == session_id))
        return result.scalar_one_or_none()

    async def create_order_from_checkout(
        self, db: AsyncSession, checkout: Dict[str, Any], ctx: Optional[RequestContext] = None
    ) -> Order:
        """
        Create the order for a completed checkout session.

        Returns the existing order when this session was already processed.
        """
        session_id = checkout["id"]
        existing = await self.get_by_checkout_session(db, session_id)
        if existing is not None:
            log.info("Checkout session already processed", ctx=ctx, stripe_session_id=session_id)
            return existing

        metadata = checkout.get("metadata") or {}
        cart = parse_cart_items(metadata)
        customer = checkout.get("customer_details") or {}

        order = Order(
            user_id=_user_id(metadata),
            stripe_session_id=session_id,
            payment_intent_id=checkout.get("payment_intent"),
            customer_email=customer.get("email") or checkout.get("customer_email"),
            status="paid" if checkout.get("payment_status") == "paid" else "pending",
            currency=(checkout.get("currency") or self.default_currency).lower(),
        )
        order.items = [
            OrderItem(
                product_id=str(item["id"]),
                variant_id=str(item["variantId"]) if item.get("variantId") else None,
                quantity=int(item.get("quantity", 1)),
                unit_price=int(item.get("price", 0)),
            )
            for item in cart
        ]
        computed = sum(i.quantity * i.unit_price for i in order.items)
        order.total_amount = int(checkout.get("amount_total") or computed)

        db.add(order)
        try:
            await db.commit()
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            await db.rollback()
            existing = await self.get_by_checkout_session(db, session_id)
            if existing is None:
                raise
            return existing
        await db.refresh(order)

        log.info(
            "Order created from checkout session",
            ctx=ctx, order_id=str(order.id), stripe_session_id=session_id,
            item_count=len(order.items), total_amount=order.total_amount,
        )
        await self.audit.log_entity_action(
            AuditAction.ORDER_PLACED, EntityType.ORDER, order.id,
            new_values=order.to_dict(), ctx=ctx, user_id=order.user_id,
        )
        await self.audit.log_entity_action(
            AuditAction.PAYMENT_PROCESSED, EntityType.PAYMENT, order.payment_intent_id or session_id,
            ctx=ctx, user_id=order.user_id,
            metadata={
                "orderId": str(order.id),
                "amount": order.total_amount,
                "currency": order.currency,
                "paymentStatus": checkout.get("payment_status"),
            },
        )
        return order

    async def mark_payment_failed(
        self, db: AsyncSession, payment_intent: Dict[str, Any], ctx: Optional[RequestContext] = None
    ) -> Optional[Order]:
        """Flag the order behind a failed payment intent, if one exists."""
        intent_id = payment_intent.get("id")
        failure = (payment_intent.get("last_payment_error") or {}).get("message")

        result = await db.execute(select(Order).where(Order.payment_intent_id == intent_id))
        order = result.scalar_one_or_none()
        if order is not None:
            order.status = "failed"
            await db.commit()

        log.warning(
            "Payment failed",
            ctx=ctx, payment_intent_id=intent_id, order_id=str(order.id) if order else None,
            reason=failure,
        )
        await self.audit.log_entity_action(
            AuditAction.PAYMENT_PROCESSED, EntityType.PAYMENT, intent_id,
            ctx=ctx, user_id=order.user_id if order else None,
            status=AuditStatus.FAILURE, severity=AuditSeverity.MEDIUM,
            metadata={
                "orderId": str(order.id) if order else None,
                "amount": payment_intent.get("amount"),
                "reason": failure,
            },
        )
        return order

    async def list_user_orders(
        self, db: AsyncSession, user_id: UUID, page: int = 1, limit: int = 20
    ) -> Tuple[List[Order], int]:
        total = (
            await db.execute(select(func.count()).select_from(Order).where(Order.user_id == user_id))
        ).scalar() or 0
        result = await db.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    # ── Administration ────────────────────────────────────────────────────
    async def get_order(self, db: AsyncSession, order_id: UUID) -> Order:
        order = await db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order", str(order_id))
        return order

    async def list_orders(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        sort: str = "newest",
    ) -> Tuple[List[Order], int]:
        """Every order, filtered by status and creation date."""
        conditions = []
        if status is not None:
            conditions.append(Order.status == status)
        if from_date is not None:
            conditions.append(Order.created_at >= from_date)
        if to_date is not None:
            conditions.append(Order.created_at <= to_date)

        total = (
            await db.execute(select(func.count()).select_from(Order).where(*conditions))
        ).scalar() or 0
        result = await db.execute(
            select(Order)
            .where(*conditions)
            .order_by(ORDER_SORTS.get(sort, ORDER_SORTS["newest"]))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def order_statistics(
        self, db: AsyncSession, time_range: str = "week", now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Sales summary for the admin dashboard.

        Cancelled and failed orders are not sales. `byStatus` counts every
        order regardless of the time range.
        """
        now = now or utcnow()
        start = now - STATS_RANGES.get(time_range, STATS_RANGES["week"])
        in_range = (
            Order.created_at >= start,
            Order.created_at <= now,
            Order.status.not_in(NON_SALE_STATUSES),
        )

        rows = (await db.execute(select(Order.created_at, Order.total_amount).where(*in_range))).all()
        daily: Dict[str, Dict[str, int]] = {}
        for created_at, amount in rows:
            day = daily.setdefault(as_utc(created_at).date().isoformat(), {"amount": 0, "count": 0})
            day["amount"] += amount
            day["count"] += 1

        by_status = await db.execute(select(Order.status, func.count()).group_by(Order.status))
        return {
            "timeRange": time_range,
            "startDate": start.isoformat(),
            "endDate": now.isoformat(),
            "summary": {
                "totalSales": sum(day["amount"] for day in daily.values()),
                "totalOrders": len(rows),
            },
            "dailySales": [{"date": date, **daily[date]} for date in sorted(daily)],
            "byStatus": [{"status": s, "count": c} for s, c in by_status.all()],
        }

    async def apply_refund(
        self,
        db: AsyncSession,
        order: Order,
        amount: int,
        reason: str,
        refund_id: Optional[str],
        ctx: Optional[RequestContext] = None,
    ) -> Order:
        """Record a refund Stripe has accepted, then audit it."""
        before = order.to_dict()
        order.status = "refunded"
        order.refunded_amount = amount
        order.refund_reason = reason
        order.refunded_at = utcnow()
        await db.commit()

        log.notice(
            "Order refunded",
            ctx=ctx, order_id=str(order.id), refund_id=refund_id,
            amount=amount, total_amount=order.total_amount,
        )
        await self.audit.log_entity_action(
            AuditAction.ORDER_UPDATED, EntityType.ORDER, order.id,
            old_values=before, new_values=order.to_dict(), ctx=ctx,
            metadata={"refundId": refund_id, "amount": amount, "reason": reason},
        )
        return order
