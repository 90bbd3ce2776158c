"""WooCommerce storefront listing via the wc/v3 REST API."""

import logging

import httpx

from shopflow.config import settings
from shopflow.models import CatalogItem
from shopflow.providers.base import ListingResult

logger = logging.getLogger(__name__)


class WooCommerceListing:
    def __init__(self, base_url: str | None = None, key: str | None = None, secret: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = (base_url if base_url is not None else settings.woocommerce_url).rstrip("/")
        self.key = key if key is not None else settings.woocommerce_key
        self.secret = secret if secret is not None else settings.woocommerce_secret
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.key and self.secret)

    @staticmethod
    def product_payload(item: CatalogItem, run_id: str) -> dict:
        price = item.selling_price or 0
        return {
            "name": item.title,
            "description": item.description or "",
            "short_description": item.short_description or item.title,
            "regular_price": f"{item.compare_price or price:.2f}",
            "sale_price": f"{price:.2f}",
            "images": [{"src": item.image_url, "alt": item.title}] if item.image_url else [],
            "categories": [{"name": item.category}] if item.category else [],
            "tags": [{"name": t} for t in (item.tags or [])],
            "status": "publish",
            "meta_data": [{"key": "pipeline_run_id", "value": run_id}],
        }

    async def create_listing(self, item: CatalogItem, run_id: str) -> ListingResult:
        if not self.enabled:
            raise RuntimeError("WooCommerce not configured")

        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0), transport=self._transport) as client:
            resp = await client.post(
                f"{self.base_url}/wp-json/wc/v3/products",
                auth=(self.key, self.secret),
                json=self.product_payload(item, run_id),
            )
            resp.raise_for_status()
            data = resp.json()

        logger.info("Listed %s as WooCommerce product %s", item.title, data.get("id"))
        return ListingResult(listing_id=str(data["id"]), slug=data.get("slug", ""))
