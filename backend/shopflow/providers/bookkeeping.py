"""Airtable catalog sync. Listed items are upserted by catalog id, 10 per request."""

import logging

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopflow.config import settings
from shopflow.models import CatalogItem

logger = logging.getLogger(__name__)

AIRTABLE_API = "https://api.airtable.com/v0"
AIRTABLE_BATCH = 10


class AirtableCatalogSync:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], api_key: str | None = None,
                 base_id: str | None = None, table: str | None = None,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.session_factory = session_factory
        self.api_key = api_key if api_key is not None else settings.airtable_api_key
        self.base_id = base_id if base_id is not None else settings.airtable_base_id
        self.table = table or settings.airtable_table
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.base_id)

    @staticmethod
    def record(item: CatalogItem) -> dict:
        return {
            "fields": {
                "Catalog ID": item.id,
                "Title": item.title,
                "Category": item.category or "",
                "Cost": item.cost or 0,
                "Price": item.selling_price,
                "Margin %": item.margin_percent,
                "Status": item.status or "",
                "Listing ID": item.listing_id or "",
                "Supplier": item.supplier_url,
            }
        }

    async def sync_catalog(self, limit: int) -> int:
        if not self.enabled:
            logger.info("Airtable not configured, catalog sync skipped")
            return 0

        async with self.session_factory() as session:
            result = await session.execute(
                select(CatalogItem)
                .where(CatalogItem.is_active.is_(True), CatalogItem.status == "listed")
                .order_by(CatalogItem.updated_at.desc(), CatalogItem.id.desc())
                .limit(limit)
            )
            records = [self.record(item) for item in result.scalars()]

        synced = 0
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0), transport=self._transport) as client:
            for i in range(0, len(records), AIRTABLE_BATCH):
                batch = records[i:i + AIRTABLE_BATCH]
                resp = await client.patch(
                    f"{AIRTABLE_API}/{self.base_id}/{self.table}",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"performUpsert": {"fieldsToMergeOn": ["Catalog ID"]}, "records": batch},
                )
                resp.raise_for_status()
                synced += len(batch)

        logger.info("Synced %d catalog records to Airtable", synced)
        return synced
