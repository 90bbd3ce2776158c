"""AI enrichment: description, short description, SEO fields and tags for catalog items."""

import json
import logging
import re

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopflow.config import settings
from shopflow.models import CatalogItem
from shopflow.providers.base import EnrichmentResult
from shopflow.providers.llm import FallbackTextGenerator

logger = logging.getLogger(__name__)

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def _prompt(item: CatalogItem) -> str:
    return f"""Write product copy for {settings.store_name}, an online store.

Product: {item.title}
Category: {item.category or "General"}
Price: ${item.selling_price:.2f}

Return ONLY valid JSON:
{{
  "description": "2-3 short paragraphs of benefit-led product copy",
  "short_description": "one sentence, max 160 chars",
  "seo_title": "max 60 chars",
  "seo_description": "max 155 chars",
  "tags": ["5", "to", "8", "tags"]
}}"""


def parse_enrichment(text: str) -> dict | None:
    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not data.get("description"):
        return None
    return data


class AIEnricher:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], text: FallbackTextGenerator):
        self.session_factory = session_factory
        self.text = text

    async def bulk_enrich(self, max_items: int) -> EnrichmentResult:
        if not self.text.enabled:
            logger.warning("No text provider configured, enrichment skipped")
            return EnrichmentResult(enriched=0)

        enriched = 0
        async with self.session_factory() as session:
            q = (
                select(CatalogItem)
                .where(CatalogItem.is_active.is_(True), CatalogItem.description == "")
                .order_by(CatalogItem.research_score.desc(), CatalogItem.id.asc())
                .limit(max_items)
            )
            for item in (await session.execute(q)).scalars():
                data = parse_enrichment(await self.text.generate(_prompt(item), max_tokens=900) or "")
                if data is None:
                    logger.warning("Enrichment produced no usable copy for %s", item.title)
                    continue
                item.description = data["description"]
                item.short_description = (data.get("short_description") or "")[:500]
                item.seo_title = (data.get("seo_title") or item.title)[:120]
                item.seo_description = (data.get("seo_description") or "")[:300]
                item.tags = [str(t) for t in data.get("tags") or []]
                enriched += 1
                await session.commit()

        logger.info("Enriched %d items", enriched)
        return EnrichmentResult(enriched=enriched)
