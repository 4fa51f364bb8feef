"""
Storefront Backend — Payment Route Handlers
=============================================

Endpoints:
    POST /api/payment/create-checkout-session   authenticated, create:order
    POST /api/payment/webhook                   Stripe, signature-verified
    GET  /api/payment/orders                    authenticated, own orders
    GET  /api/payment/order/{session_id}        authenticated, owner or read:orders
    POST /api/payment/orders/{id}/refund        manage:orders
    GET  /api/payment/admin/orders              read:orders, every order
    GET  /api/payment/admin/stats               read:orders, sales statistics

The webhook handler reads the raw request body: the signature covers the
exact bytes Stripe sent, so the body must not be parsed first.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db_session
from storefront.dependencies import AppServices, get_request_context, get_responder, get_services
from storefront.models.order import ORDER_STATUSES
from storefront.responses import ResourceType, Responder
from storefront.schemas.payment import CheckoutRequest, RefundRequest
from storefront.security.dependencies import authorize, get_current_user
from storefront.services.auth_service import CurrentUser

router = APIRouter(prefix="/api/payment", tags=["Payment"])


@router.post("/create-checkout-session", summary="Start a Stripe checkout for the cart")
async def create_checkout_session(
    body: CheckoutRequest,
    user: CurrentUser = Depends(authorize(permissions=["create:order"])),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    session = await services.payments.create_checkout_session(
        body.items, user_id=str(user.id), customer_email=user.email, ctx=responder.ctx
    )
    return responder.success(session, "Checkout session created")


@router.post(
    "/webhook",
    summary="Stripe webhook receiver",
    description=(
        "Verifies the Stripe-Signature header and acknowledges with "
        "{received: true}. Events are processed after the response is sent."
    ),
)
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    services: AppServices = Depends(get_services),
) -> JSONResponse:
    payload = await request.body()
    event = services.payments.verify_webhook(payload, request.headers.get("stripe-signature"))
    background_tasks.add_task(
        services.payments.process_webhook_event, event, get_request_context(request)
    )
    return JSONResponse(status_code=200, content={"received": True})


@router.get("/orders", summary="Orders of the authenticated user")
async def list_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    orders, total = await services.orders.list_user_orders(db, user.id, page, limit)
    return responder.paginated([o.to_dict() for o in orders], page, limit, total, "Orders retrieved")


@router.get("/order/{session_id}", summary="Order behind a checkout session")
async def get_order_by_session(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    source, order = await services.payments.get_order_by_session(
        db, session_id, user.id, can_view_all="read:orders" in user.permissions, ctx=responder.ctx
    )
    return responder.success(order, f"Order details retrieved from {source}")


@router.post("/orders/{order_id}/refund", summary="Refund a paid order")
async def refund_order(
    order_id: UUID,
    body: RefundRequest,
    user: CurrentUser = Depends(authorize(permissions=["manage:orders"])),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    result = await services.payments.refund_order(
        db, order_id, amount=body.amount, reason=body.reason, ctx=responder.ctx
    )
    return responder.success(result, "Refund processed")


# ══════════════════════════════════════════════════════════════════════════
# Administration
# ══════════════════════════════════════════════════════════════════════════

@router.get("/admin/orders", summary="All orders (filtered, paginated)")
async def list_all_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[str] = Query(default=None, pattern=f"^({'|'.join(ORDER_STATUSES)})$"),
    from_date: Optional[datetime] = Query(default=None, alias="fromDate"),
    to_date: Optional[datetime] = Query(default=None, alias="toDate"),
    sort: str = Query(default="newest", pattern="^(newest|oldest|highest|lowest)$"),
    user: CurrentUser = Depends(authorize(permissions=["read:orders"])),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    orders, total = await services.orders.list_orders(
        db, page, limit, status=status, from_date=from_date, to_date=to_date, sort=sort
    )
    return responder.paginated([o.to_dict() for o in orders], page, limit, total, "Orders retrieved")


@router.get("/admin/stats", summary="Sales statistics for the dashboard")
async def order_statistics(
    time_range: str = Query(default="week", alias="timeRange", pattern="^(day|week|month|year)$"),
    user: CurrentUser = Depends(authorize(permissions=["read:orders"])),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    stats = await services.orders.order_statistics(db, time_range)
    return responder.success(stats, "Order statistics retrieved", resource_type=ResourceType.SINGLE)
