"""Checkout and refund request schemas."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

CAMEL = {"alias_generator": to_camel, "populate_by_name": True}


class CheckoutItem(BaseModel):
    id: str = Field(min_length=1, max_length=64, description="Printify product ID")
    variant_id: Optional[str] = Field(default=None, max_length=64)
    title: str = Field(min_length=1, max_length=255)
    quantity: int = Field(ge=1, le=100)
    price: int = Field(ge=1, description="Unit price in cents")
    image_url: Optional[str] = Field(default=None, max_length=1024)

    model_config = CAMEL


class CheckoutRequest(BaseModel):
    items: List[CheckoutItem] = Field(min_length=1, max_length=50)

    model_config = CAMEL


class RefundRequest(BaseModel):
    """`amount` in cents; omit it to refund the whole order."""

    amount: Optional[int] = Field(default=None, ge=1)
    reason: Literal["duplicate", "fraudulent", "requested_by_customer"] = "requested_by_customer"

    model_config = CAMEL
