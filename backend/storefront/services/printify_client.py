"""
Storefront Backend — Printify API Client
==========================================

What:  Read-only access to the Printify catalog (shops, products).
How:   UpstreamClient subclass; the bearer token comes from PRINTIFY_API_TOKEN.
"""

from typing import Any, Optional

import httpx

from storefront.context import RequestContext
from storefront.exceptions import ValidationError
from storefront.services.upstream import UpstreamClient


class PrintifyClient(UpstreamClient):
    service_name = "printify"

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.printify.com/v1",
        default_shop_id: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        super().__init__(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_token}",
                "User-Agent": "storefront-api",
            },
            transport=transport,
            **kwargs,
        )
        self.default_shop_id = default_shop_id

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "PrintifyClient":
        return cls(
            api_token=settings.printify_api_token,
            base_url=settings.printify_api_base,
            default_shop_id=settings.printify_shop_id,
            transport=transport,
            **cls.retry_kwargs(settings),
        )

    def _shop(self, shop_id: Optional[str]) -> str:
        shop = shop_id or self.default_shop_id
        if not shop:
            raise ValidationError("No Printify shop configured", field="shopId")
        return shop

    async def get_shops(self, ctx: Optional[RequestContext] = None) -> Any:
        return await self.request("GET", "/shops.json", ctx=ctx)

    async def get_products(
        self,
        shop_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        ctx: Optional[RequestContext] = None,
    ) -> Any:
        return await self.request(
            "GET",
            f"/shops/{self._shop(shop_id)}/products.json",
            ctx=ctx,
            params={"page": page, "limit": limit},
        )

    async def get_product(
        self,
        product_id: str,
        shop_id: Optional[str] = None,
        ctx: Optional[RequestContext] = None,
    ) -> Any:
        return await self.request(
            "GET", f"/shops/{self._shop(shop_id)}/products/{product_id}.json", ctx=ctx
        )
