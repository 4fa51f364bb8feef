"""
Storefront Backend — Stripe Client and Webhook Verification
=============================================================

What:  Creates and retrieves Checkout Sessions, issues refunds and
       verifies signed webhook payloads.
Why:   Only a handful of Stripe operations are needed, so the REST API is
       called directly through the shared UpstreamClient instead of a
       full SDK.

Webhook Signature Scheme:
    Header:   Stripe-Signature: t=1700000000,v1=5257a869...,v1=...
    Signed:   f"{t}.{raw_body}"
    Digest:   hex(HMAC-SHA256(webhook_secret, signed))
    Accepted when any v1 matches (constant-time compare) and t is within
    `tolerance` seconds of now. The raw body must be used as received;
    re-serialized JSON would not match.
"""

import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional

import httpx

from storefront.context import RequestContext
from storefront.exceptions import WebhookSignatureError
from storefront.services.upstream import UpstreamClient


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def construct_event(
    payload: bytes,
    sig_header: Optional[str],
    secret: str,
    tolerance: int = 300,
    now: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Verify a webhook payload and return the decoded event.

    Raises:
        WebhookSignatureError: missing/malformed header, no matching
            signature, timestamp outside tolerance, or invalid JSON.
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret is not configured")
    if not sig_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")

    timestamp: Optional[int] = None
    signatures: List[str] = []
    for part in sig_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookSignatureError("Malformed signature timestamp")
        elif key == "v1" and value:
            signatures.append(value)

    if timestamp is None or not signatures:
        raise WebhookSignatureError("Unable to extract timestamp and signatures from header")

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError("No signatures found matching the expected signature for payload")

    current = time.time() if now is None else now
    if tolerance > 0 and abs(current - timestamp) > tolerance:
        raise WebhookSignatureError("Timestamp outside the tolerance zone")

    try:
        event = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise WebhookSignatureError("Webhook payload is not valid JSON")
    if not isinstance(event, dict) or "type" not in event:
        raise WebhookSignatureError("Webhook payload is not an event")
    return event


def flatten_form(data: Any, prefix: str = "") -> Dict[str, str]:
    """
    Encode nested dicts/lists the way Stripe's form API expects:
    {"line_items": [{"quantity": 2}]} → {"line_items[0][quantity]": "2"}
    """
    items: Dict[str, str] = {}
    if isinstance(data, dict):
        for key, value in data.items():
            items.update(flatten_form(value, f"{prefix}[{key}]" if prefix else str(key)))
    elif isinstance(data, (list, tuple)):
        for index, value in enumerate(data):
            items.update(flatten_form(value, f"{prefix}[{index}]"))
    elif data is not None:
        if isinstance(data, bool):
            data = "true" if data else "false"
        items[prefix] = str(data)
    return items


class StripeClient(UpstreamClient):
    service_name = "stripe"

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.stripe.com/v1",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        super().__init__(
            base_url=base_url,
            headers={"Authorization": f"Bearer {secret_key}"},
            transport=transport,
            **kwargs,
        )

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "StripeClient":
        return cls(
            secret_key=settings.stripe_secret_key,
            base_url=settings.stripe_api_base,
            transport=transport,
            **cls.retry_kwargs(settings),
        )

    async def create_checkout_session(
        self,
        line_items: List[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        customer_email: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        if customer_email:
            params["customer_email"] = customer_email
        headers = {"Idempotency-Key": ctx.request_id} if ctx else None
        return await self.request(
            "POST", "/checkout/sessions", ctx=ctx, data=flatten_form(params), headers=headers
        )

    async def retrieve_checkout_session(
        self, session_id: str, ctx: Optional[RequestContext] = None
    ) -> Dict[str, Any]:
        """Raises NotFoundError when Stripe does not know the session."""
        return await self.request("GET", f"/checkout/sessions/{session_id}", ctx=ctx)

    async def create_refund(
        self,
        payment_intent: str,
        amount: Optional[int] = None,
        reason: str = "requested_by_customer",
        idempotency_key: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Dict[str, Any]:
        """Refund `amount` cents of a payment intent (all of it when None)."""
        params: Dict[str, Any] = {"payment_intent": payment_intent, "reason": reason}
        if amount is not None:
            params["amount"] = amount
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        return await self.request(
            "POST", "/refunds", ctx=ctx, data=flatten_form(params), headers=headers
        )
