"""
Storefront Backend — Printify Catalog Route Handlers
======================================================

What:  Public, read-only proxy to the Printify catalog.
Why:   The API token must stay server-side; the storefront client only
       talks to this API.

Failure mapping (done by PrintifyClient and the global handlers):
    upstream 5xx/timeout after retries → 502
    circuit breaker open               → 503 + Retry-After
    upstream 404                       → 404
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from storefront.dependencies import AppServices, get_responder, get_services
from storefront.responses import Responder

router = APIRouter(prefix="/api/printify", tags=["Printify"])


@router.get("/shops", summary="List Printify shops")
async def get_shops(
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    shops = await services.printify.get_shops(responder.ctx)
    return responder.success(shops, "Shops retrieved")


@router.get("/products", summary="List products of a shop")
async def get_products(
    shop_id: Optional[str] = Query(default=None, alias="shopId"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=50),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    result = await services.printify.get_products(shop_id, page, limit, responder.ctx)
    if isinstance(result, dict) and "data" in result:
        return responder.paginated(
            result.get("data") or [], page, limit, int(result.get("total") or 0), "Products retrieved"
        )
    return responder.success(result, "Products retrieved")


@router.get("/products/{product_id}", summary="Get one product")
async def get_product(
    product_id: str,
    shop_id: Optional[str] = Query(default=None, alias="shopId"),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    product = await services.printify.get_product(product_id, shop_id, responder.ctx)
    return responder.success(product, "Product retrieved")
