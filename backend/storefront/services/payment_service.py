"""
Storefront Backend — Payment Service
======================================

What:  Starts Stripe checkout for a cart, handles Stripe's webhooks, looks
       orders up by checkout session and refunds paid orders.
How:   Webhooks are verified synchronously (a bad signature is a 400), then
       acknowledged immediately; the verified event is processed afterwards
       in a background task with its own database session.

Webhook Handling:
    ┌─────────────┐  bad sig   ┌──────────────────────────────┐
    │ verify HMAC │──────────▶│ 400 envelope, nothing stored  │
    └─────────────┘            └──────────────────────────────┘
          │ ok
          ▼
    200 {received: true}  ──▶  process_webhook_event() in background
                                 checkout.session.completed     → create order
                                 payment_intent.payment_failed  → mark failed
                                 anything else                  → logged, ignored

    Processing failures are logged and never surface to Stripe: the
    acknowledgement has already been sent.
"""

import json
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.context import RequestContext
from storefront.database import Database
from storefront.exceptions import NotFoundError, ValidationError
from storefront.logger import get_logger
from storefront.schemas.payment import CheckoutItem
from storefront.services.order_service import OrderService, parse_cart_items
from storefront.services.stripe_client import StripeClient, construct_event

log = get_logger(__name__)


class PaymentService:
    def __init__(
        self,
        stripe: StripeClient,
        orders: OrderService,
        database: Database,
        webhook_secret: str,
        client_url: str,
        currency: str = "usd",
        webhook_tolerance: int = 300,
    ):
        self.stripe = stripe
        self.orders = orders
        self.database = database
        self.webhook_secret = webhook_secret
        self.client_url = client_url.rstrip("/")
        self.currency = currency
        self.webhook_tolerance = webhook_tolerance

    # ── Checkout ──────────────────────────────────────────────────────────
    def build_line_items(self, items: List[CheckoutItem]) -> List[Dict[str, Any]]:
        line_items = []
        for item in items:
            product_data: Dict[str, Any] = {
                "name": item.title,
                "metadata": {"product_id": item.id, "variant_id": item.variant_id or ""},
            }
            if item.image_url:
                product_data["images"] = [item.image_url]
            line_items.append({
                "price_data": {
                    "currency": self.currency,
                    "product_data": product_data,
                    "unit_amount": item.price,
                },
                "quantity": item.quantity,
            })
        return line_items

    async def create_checkout_session(
        self,
        items: List[CheckoutItem],
        user_id: Optional[str] = None,
        customer_email: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """Returns {"url", "sessionId"} for the client to redirect to."""
        cart = [
            {"id": i.id, "variantId": i.variant_id, "quantity": i.quantity, "price": i.price}
            for i in items
        ]
        total = sum(i.price * i.quantity for i in items)
        log.info(
            "Creating checkout session", ctx=ctx,
            item_count=len(items), total_amount=total,
        )
        session = await self.stripe.create_checkout_session(
            line_items=self.build_line_items(items),
            success_url=f"{self.client_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{self.client_url}/checkout/cancel",
            metadata={"userId": user_id or "", "cartItems": json.dumps(cart, separators=(",", ":"))},
            customer_email=customer_email,
            ctx=ctx,
        )
        return {"url": session.get("url"), "sessionId": session.get("id")}

    # ── Webhooks ──────────────────────────────────────────────────────────
    def verify_webhook(self, payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
        """Raises WebhookSignatureError; the caller's error handler logs it."""
        return construct_event(payload, sig_header, self.webhook_secret, self.webhook_tolerance)

    async def process_webhook_event(self, event: Dict[str, Any], ctx: Optional[RequestContext] = None) -> None:
        """Apply a verified event. Never raises."""
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        try:
            async with self.database.session() as db:
                if event_type == "checkout.session.completed":
                    await self.orders.create_order_from_checkout(db, obj, ctx)
                elif event_type == "payment_intent.payment_failed":
                    await self.orders.mark_payment_failed(db, obj, ctx)
                else:
                    log.info("Unhandled webhook event: %s", event_type, ctx=ctx, event_id=event.get("id"))
        except Exception as e:  # noqa: BLE001
            log.error(
                "Error processing webhook event: %s", event_type,
                ctx=ctx, exc_info=e, event_id=event.get("id"), error_type=type(e).__name__,
            )

    # ── Order lookup ──────────────────────────────────────────────────────
    async def get_order_by_session(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: UUID,
        can_view_all: bool = False,
        ctx: Optional[RequestContext] = None,
    ) -> Tuple[str, Dict[str, Any]]:
        """
        The order behind a checkout session, for the checkout success page.

        Returns ("db", order) once the webhook has created the order, and
        ("stripe", summary) built from the live session before that. Other
        users' orders are reported as missing.
        """
        order = await self.orders.get_by_checkout_session(db, session_id)
        if order is not None:
            if order.user_id != user_id and not can_view_all:
                raise NotFoundError("Order", session_id)
            return "db", order.to_dict()

        try:
            session = await self.stripe.retrieve_checkout_session(session_id, ctx)
        except NotFoundError:
            raise NotFoundError("Order", session_id) from None
        metadata = session.get("metadata") or {}
        if metadata.get("userId") != str(user_id) and not can_view_all:
            raise NotFoundError("Order", session_id)
        return "stripe", checkout_summary(session)

    # ── Refunds ───────────────────────────────────────────────────────────
    async def refund_order(
        self,
        db: AsyncSession,
        order_id: UUID,
        amount: Optional[int] = None,
        reason: str = "requested_by_customer",
        ctx: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """
        Refund a paid order through Stripe (the whole order when `amount`
        is None). An order is refunded at most once.
        """
        order = await self.orders.get_order(db, order_id)
        if order.status == "refunded":
            raise ValidationError("Order has already been refunded", field="orderId")
        if order.status != "paid":
            raise ValidationError(f"Only paid orders can be refunded (status: {order.status})", field="orderId")
        if amount is not None and amount > order.total_amount:
            raise ValidationError("Refund amount exceeds the order total", field="amount")

        payment_intent = order.payment_intent_id
        if not payment_intent:
            session = await self.stripe.retrieve_checkout_session(order.stripe_session_id, ctx)
            payment_intent = session.get("payment_intent")
        if not payment_intent:
            raise NotFoundError("Payment intent", order.stripe_session_id)

        refund_amount = amount if amount is not None else order.total_amount
        refund = await self.stripe.create_refund(
            payment_intent,
            amount=amount,
            reason=reason,
            idempotency_key=f"refund-{order.id}",
            ctx=ctx,
        )
        order = await self.orders.apply_refund(db, order, refund_amount, reason, refund.get("id"), ctx)
        return {
            "refund": {
                "id": refund.get("id"),
                "amount": refund.get("amount", refund_amount),
                "status": refund.get("status"),
            },
            "order": order.to_dict(),
        }


def checkout_summary(session: Dict[str, Any]) -> Dict[str, Any]:
    """Order-shaped view of a checkout session the webhook has not processed yet."""
    customer = session.get("customer_details") or {}
    return {
        "stripeSessionId": session.get("id"),
        "status": "paid" if session.get("payment_status") == "paid" else "pending",
        "paymentStatus": session.get("payment_status"),
        "totalAmount": session.get("amount_total"),
        "currency": session.get("currency"),
        "customerEmail": customer.get("email") or session.get("customer_email"),
        "items": [
            {
                "productId": str(item["id"]),
                "variantId": item.get("variantId"),
                "quantity": int(item.get("quantity", 1)),
                "unitPrice": int(item.get("price", 0)),
            }
            for item in parse_cart_items(session.get("metadata") or {})
        ],
    }
