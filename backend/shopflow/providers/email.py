"""Klaviyo catalog sync and "New Product" events for email flows."""

import logging

import httpx

from shopflow.config import settings
from shopflow.providers.base import ProductSnapshot

logger = logging.getLogger(__name__)

KLAVIYO_API = "https://a.klaviyo.com/api"
KLAVIYO_REVISION = "2024-10-15"


class KlaviyoSync:
    def __init__(self, api_key: str | None = None, catalog_enabled: bool | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.api_key = api_key if api_key is not None else settings.klaviyo_api_key
        self.catalog_enabled = settings.klaviyo_catalog_enabled if catalog_enabled is None else catalog_enabled
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Klaviyo-API-Key {self.api_key}",
            "revision": KLAVIYO_REVISION,
            "accept": "application/json",
        }

    def _product_url(self, product: ProductSnapshot) -> str:
        return f"https://{settings.store_domain}/?p={product.id}"

    async def _post(self, path: str, payload: dict) -> None:
        async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
            resp = await client.post(f"{KLAVIYO_API}/{path}", headers=self._headers(), json=payload)
            resp.raise_for_status()

    async def sync_product(self, product: ProductSnapshot) -> None:
        if not self.enabled or not self.catalog_enabled:
            return
        await self._post("catalog-items/", {
            "data": {
                "type": "catalog-item",
                "attributes": {
                    "external_id": str(product.id),
                    "integration_type": "$custom",
                    "catalog_type": "$default",
                    "title": product.title,
                    "description": product.description[:1000] or product.title,
                    "url": self._product_url(product),
                    "image_full_url": product.image_url,
                    "price": product.price or 0,
                    "published": True,
                },
            },
        })

    async def track_new_product(self, product: ProductSnapshot) -> None:
        if not self.enabled:
            return
        await self._post("events/", {
            "data": {
                "type": "event",
                "attributes": {
                    "properties": {
                        "ProductID": product.id,
                        "ProductName": product.title,
                        "Price": product.price,
                        "ComparePrice": product.compare_price,
                        "Category": product.category,
                        "ImageURL": product.image_url,
                        "URL": self._product_url(product),
                    },
                    "metric": {"data": {"type": "metric", "attributes": {"name": "New Product"}}},
                    "profile": {"data": {"type": "profile", "attributes": {"email": f"catalog@{settings.store_domain}"}}},
                },
            },
        })
        logger.info("Klaviyo: New Product event for %s", product.title)
