"""
Storefront Backend — Featured Product Service
===============================================

What:  CRUD for the curated featured products shown on the home page.
How:   Each mutation commits its own change first, then writes an explicit
       audit record carrying the before/after snapshot. The explicit record
       replaces the generic one the audit middleware would otherwise write.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.context import RequestContext
from storefront.exceptions import ConflictError, NotFoundError
from storefront.logger import get_logger
from storefront.models.product import FeaturedProduct
from storefront.schemas.product import FeaturedProductCreate, FeaturedProductUpdate
from storefront.services.audit_service import AuditAction, AuditRecorder, EntityType

log = get_logger(__name__)


class FeaturedProductService:
    def __init__(self, audit: AuditRecorder):
        self.audit = audit

    async def list_products(self, db: AsyncSession, include_inactive: bool = False) -> List[FeaturedProduct]:
        query = select(FeaturedProduct).order_by(FeaturedProduct.position.asc(), FeaturedProduct.created_at.asc())
        if not include_inactive:
            query = query.where(FeaturedProduct.is_active.is_(True))
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_product(self, db: AsyncSession, product_id: UUID) -> FeaturedProduct:
        product = await db.get(FeaturedProduct, product_id)
        if product is None:
            raise NotFoundError("Featured product", str(product_id))
        return product

    async def create_product(
        self, db: AsyncSession, data: FeaturedProductCreate, ctx: Optional[RequestContext] = None
    ) -> FeaturedProduct:
        product = FeaturedProduct(**data.model_dump())
        db.add(product)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(
                f"Product {data.printify_product_id} is already featured",
                context={"printify_product_id": data.printify_product_id},
            )
        await db.refresh(product)

        log.info("Featured product created", ctx=ctx, product_id=str(product.id))
        await self.audit.log_entity_action(
            AuditAction.CREATE, EntityType.FEATURED_PRODUCT, product.id,
            new_values=product.to_dict(), ctx=ctx,
        )
        return product

    async def update_product(
        self,
        db: AsyncSession,
        product_id: UUID,
        data: FeaturedProductUpdate,
        ctx: Optional[RequestContext] = None,
    ) -> FeaturedProduct:
        product = await self.get_product(db, product_id)
        before = product.to_dict()

        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            setattr(product, field, value)
        await db.commit()
        await db.refresh(product)

        log.info("Featured product updated", ctx=ctx, product_id=str(product.id), fields=sorted(changes))
        await self.audit.log_entity_action(
            AuditAction.UPDATE, EntityType.FEATURED_PRODUCT, product.id,
            old_values=before, new_values=product.to_dict(), ctx=ctx,
        )
        return product

    async def delete_product(
        self, db: AsyncSession, product_id: UUID, ctx: Optional[RequestContext] = None
    ) -> None:
        product = await self.get_product(db, product_id)
        before = product.to_dict()
        await db.delete(product)
        await db.commit()

        log.info("Featured product deleted", ctx=ctx, product_id=str(product_id))
        await self.audit.log_entity_action(
            AuditAction.DELETE, EntityType.FEATURED_PRODUCT, product_id,
            old_values=before, ctx=ctx,
        )
