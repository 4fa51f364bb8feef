"""Featured product request schemas."""

from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

CAMEL = {"alias_generator": to_camel, "populate_by_name": True}


class FeaturedProductCreate(BaseModel):
    printify_product_id: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    image_url: Optional[str] = Field(default=None, max_length=1024)
    price: int = Field(ge=0, description="Price in cents")
    position: int = Field(default=0, ge=0)
    is_active: bool = True

    model_config = CAMEL


class FeaturedProductUpdate(BaseModel):
    """Partial update: only the fields sent are changed."""

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    image_url: Optional[str] = Field(default=None, max_length=1024)
    price: Optional[int] = Field(default=None, ge=0)
    position: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None

    model_config = CAMEL
