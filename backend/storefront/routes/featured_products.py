"""
Storefront Backend — Featured Product Route Handlers
======================================================

Endpoints:
    GET    /api/featured-products          public, active products by position
    GET    /api/featured-products/{id}     public
    POST   /api/featured-products          manage:products
    PUT    /api/featured-products/{id}     manage:products (partial update)
    DELETE /api/featured-products/{id}     manage:products
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db_session
from storefront.dependencies import AppServices, get_responder, get_services
from storefront.responses import Responder
from storefront.schemas.product import FeaturedProductCreate, FeaturedProductUpdate
from storefront.security.dependencies import authorize
from storefront.services.auth_service import CurrentUser

router = APIRouter(prefix="/api/featured-products", tags=["Featured Products"])

can_manage = authorize(permissions=["manage:products"])


@router.get("", summary="List featured products")
async def list_featured_products(
    include_inactive: bool = Query(default=False, alias="includeInactive"),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    products = await services.featured_products.list_products(db, include_inactive)
    return responder.success([p.to_dict() for p in products], "Featured products retrieved")


@router.get("/{product_id}", summary="Get one featured product")
async def get_featured_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    product = await services.featured_products.get_product(db, product_id)
    return responder.success(product.to_dict(), "Featured product retrieved")


@router.post("", status_code=201, summary="Feature a product")
async def create_featured_product(
    body: FeaturedProductCreate,
    _: CurrentUser = Depends(can_manage),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    product = await services.featured_products.create_product(db, body, responder.ctx)
    return responder.created(product.to_dict(), "Featured product created")


@router.put("/{product_id}", summary="Update a featured product")
async def update_featured_product(
    product_id: UUID,
    body: FeaturedProductUpdate,
    _: CurrentUser = Depends(can_manage),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    product = await services.featured_products.update_product(db, product_id, body, responder.ctx)
    return responder.success(product.to_dict(), "Featured product updated")


@router.delete("/{product_id}", summary="Remove a featured product")
async def delete_featured_product(
    product_id: UUID,
    _: CurrentUser = Depends(can_manage),
    db: AsyncSession = Depends(get_db_session),
    services: AppServices = Depends(get_services),
    responder: Responder = Depends(get_responder),
) -> JSONResponse:
    await services.featured_products.delete_product(db, product_id, responder.ctx)
    return responder.success(None, "Featured product deleted")
