"""
Storefront Backend — Featured Product Model
=============================================

What:  Products curated for the storefront home page.
Why:   The catalog itself lives at Printify; this table only records which
       Printify products are featured, in what order, with display overrides.
"""

from typing import Optional

from sqlalchemy import Boolean, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database import Base
from storefront.models.base import TimestampMixin, UUIDPrimaryKeyMixin


class FeaturedProduct(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "featured_products"

    printify_product_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="Price in cents")
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_featured_active_position", "is_active", "position"),)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "printifyProductId": self.printify_product_id,
            "title": self.title,
            "description": self.description,
            "imageUrl": self.image_url,
            "price": self.price,
            "position": self.position,
            "isActive": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<FeaturedProduct(id={self.id}, title='{self.title}')>"
