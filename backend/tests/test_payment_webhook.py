"""
Storefront Backend — Checkout and Webhook Tests
=================================================

What we test:
    ✅ Webhook signature verification (valid, tampered, stale, missing)
    ✅ A bad signature is a 400, stores nothing and logs exactly one ERROR
    ✅ checkout.session.completed creates the order, items and audit trail
    ✅ Duplicate webhook deliveries are idempotent
    ✅ payment_intent.payment_failed marks the order failed
    ✅ Checkout session creation through the Stripe API
    ❌ Real Stripe calls (MockTransport answers instead)
"""

import json
import logging
import time
from urllib.parse import parse_qs

import pytest
from sqlalchemy import func, select

from storefront.exceptions import WebhookSignatureError
from storefront.models.order import Order, OrderItem
from storefront.services.stripe_client import compute_signature, construct_event, flatten_form

from conftest import WEBHOOK_SECRET


def signed(event: dict, secret: str = WEBHOOK_SECRET, timestamp: int = None):
    payload = json.dumps(event).encode()
    timestamp = int(time.time()) if timestamp is None else timestamp
    header = f"t={timestamp},v1={compute_signature(payload, secret, timestamp)}"
    return payload, {"stripe-signature": header, "content-type": "application/json"}


def completed_event(session_id: str = "cs_test_1", user_id: str = "") -> dict:
    cart = [{"id": "prod-1", "variantId": "v-1", "quantity": 2, "price": 1500}]
    return {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "payment_intent": "pi_1",
                "payment_status": "paid",
                "amount_total": 3000,
                "currency": "usd",
                "customer_details": {"email": "buyer@example.com"},
                "metadata": {"userId": user_id, "cartItems": json.dumps(cart)},
            }
        },
    }


async def count(database, model) -> int:
    async with database.session() as db:
        return (await db.execute(select(func.count()).select_from(model))).scalar()


class TestConstructEvent:
    def test_valid_signature(self):
        payload, headers = signed({"type": "ping"})
        event = construct_event(payload, headers["stripe-signature"], WEBHOOK_SECRET)
        assert event["type"] == "ping"

    def test_tampered_payload(self):
        payload, headers = signed({"type": "ping"})
        with pytest.raises(WebhookSignatureError):
            construct_event(payload + b" ", headers["stripe-signature"], WEBHOOK_SECRET)

    def test_stale_timestamp(self):
        payload, headers = signed({"type": "ping"}, timestamp=int(time.time()) - 3600)
        with pytest.raises(WebhookSignatureError, match="tolerance"):
            construct_event(payload, headers["stripe-signature"], WEBHOOK_SECRET, tolerance=300)

    def test_any_matching_v1_accepted(self):
        payload, headers = signed({"type": "ping"})
        header = headers["stripe-signature"].replace("v1=", "v1=deadbeef,v1=")
        assert construct_event(payload, header, WEBHOOK_SECRET)["type"] == "ping"

    @pytest.mark.parametrize("header", [None, "", "v1=abc", "t=notanumber,v1=abc"])
    def test_malformed_header(self, header):
        with pytest.raises(WebhookSignatureError):
            construct_event(b"{}", header, WEBHOOK_SECRET)

    def test_flatten_form(self):
        assert flatten_form({"line_items": [{"quantity": 2}], "ok": True}) == {
            "line_items[0][quantity]": "2",
            "ok": "true",
        }


class TestWebhookEndpoint:
    @pytest.mark.asyncio
    async def test_invalid_signature_rejected(self, client, database, caplog):
        payload, _ = signed(completed_event())
        with caplog.at_level(logging.INFO):
            response = await client.post(
                "/api/payment/webhook",
                content=payload,
                headers={"stripe-signature": "t=1,v1=bogus", "content-type": "application/json"},
            )

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"].startswith("Webhook Error:")
        assert await count(database, Order) == 0
        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_completed_checkout_creates_order(self, client, database, make_user, audit_rows):
        buyer = await make_user("buyer@example.com")
        payload, headers = signed(completed_event(user_id=str(buyer.id)))

        response = await client.post("/api/payment/webhook", content=payload, headers=headers)
        assert response.status_code == 200
        assert response.json() == {"received": True}

        async with database.session() as db:
            order = (await db.execute(select(Order))).scalar_one()
        assert order.status == "paid"
        assert order.total_amount == 3000
        assert order.user_id == buyer.id
        assert [(i.product_id, i.quantity, i.unit_price) for i in order.items] == [("prod-1", 2, 1500)]

        placed = await audit_rows("ORDER_PLACED")
        assert len(placed) == 1
        assert placed[0].entity_id == str(order.id)
        assert len(await audit_rows("PAYMENT_PROCESSED")) == 1

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_idempotent(self, client, database, audit_rows):
        payload, headers = signed(completed_event())
        await client.post("/api/payment/webhook", content=payload, headers=headers)
        response = await client.post("/api/payment/webhook", content=payload, headers=headers)

        assert response.status_code == 200
        assert await count(database, Order) == 1
        assert await count(database, OrderItem) == 1
        assert len(await audit_rows("ORDER_PLACED")) == 1

    @pytest.mark.asyncio
    async def test_payment_failed_marks_order(self, client, database, audit_rows):
        payload, headers = signed(completed_event())
        await client.post("/api/payment/webhook", content=payload, headers=headers)

        failed = {
            "id": "evt_2",
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_1", "amount": 3000, "last_payment_error": {"message": "Card declined"}}},
        }
        payload, headers = signed(failed)
        response = await client.post("/api/payment/webhook", content=payload, headers=headers)
        assert response.status_code == 200

        async with database.session() as db:
            order = (await db.execute(select(Order))).scalar_one()
        assert order.status == "failed"
        failures = [r for r in await audit_rows("PAYMENT_PROCESSED") if r.status == "failure"]
        assert len(failures) == 1
        assert failures[0].meta["reason"] == "Card declined"

    @pytest.mark.asyncio
    async def test_unhandled_event_acknowledged(self, client, database):
        payload, headers = signed({"id": "evt_3", "type": "customer.created", "data": {"object": {}}})
        response = await client.post("/api/payment/webhook", content=payload, headers=headers)
        assert response.status_code == 200
        assert await count(database, Order) == 0

    @pytest.mark.asyncio
    async def test_webhook_not_audited_by_middleware(self, client, audit_rows):
        payload, headers = signed({"id": "evt_4", "type": "customer.created", "data": {"object": {}}})
        await client.post("/api/payment/webhook", content=payload, headers=headers)
        assert await audit_rows() == []


class TestCheckoutSession:
    CART = {"items": [{"id": "prod-1", "variantId": "v-1", "title": "Tee", "quantity": 2, "price": 1500}]}

    @pytest.mark.asyncio
    async def test_creates_stripe_session(self, client, upstream, make_user, login):
        upstream.add(
            "POST", "/v1/checkout/sessions",
            json={"id": "cs_test_9", "url": "https://checkout.stripe.test/cs_test_9"},
        )
        await make_user()
        headers = await login("shopper@example.com")

        response = await client.post("/api/payment/create-checkout-session", headers=headers, json=self.CART)
        assert response.status_code == 200
        assert response.json()["data"] == {"url": "https://checkout.stripe.test/cs_test_9", "sessionId": "cs_test_9"}

        request = upstream.calls[-1]
        form = parse_qs(request.content.decode())
        assert form["mode"] == ["payment"]
        assert form["line_items[0][price_data][unit_amount]"] == ["1500"]
        assert form["line_items[0][quantity]"] == ["2"]
        assert form["customer_email"] == ["shopper@example.com"]
        assert json.loads(form["metadata[cartItems]"][0])[0]["id"] == "prod-1"
        assert request.headers["authorization"] == "Bearer sk_test_123"
        assert "idempotency-key" in request.headers

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client):
        response = await client.post("/api/payment/create-checkout-session", json=self.CART)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_empty_cart_rejected(self, client, make_user, login):
        await make_user()
        headers = await login("shopper@example.com")
        response = await client.post("/api/payment/create-checkout-session", headers=headers, json={"items": []})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_orders_listed_for_owner(self, client, make_user, login):
        buyer = await make_user()
        payload, headers = signed(completed_event(user_id=str(buyer.id)))
        await client.post("/api/payment/webhook", content=payload, headers=headers)

        auth = await login("shopper@example.com")
        response = await client.get("/api/payment/orders", headers=auth)
        body = response.json()
        assert body["pagination"]["total"] == 1
        assert body["data"][0]["stripeSessionId"] == "cs_test_1"
        assert body["data"][0]["items"][0]["productId"] == "prod-1"
