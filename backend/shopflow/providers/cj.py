"""
CJ Dropshipping adapters.

CJTrendScanner   discovery: best-selling products per trend keyword
CJSupplierSourcer sourcing: attach a CJ supplier (url, ref, cost) to catalog
                  items that have none yet
"""

import logging

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopflow.config import settings
from shopflow.models import CatalogItem
from shopflow.providers.base import DiscoveredItem, SourcingResult
from shopflow.services.validation import compute_margin

logger = logging.getLogger(__name__)

CJ_API_URL = "https://developers.cjdropshipping.com/api2.0/v1"
CJ_PRODUCT_URL = "https://cjdropshipping.com/product"

# Rejections that a newly attached supplier can fix
SOURCEABLE_REJECTIONS = ("", "No supplier found", "No cost data")


class CJClient:
    def __init__(self, access_token: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.access_token = access_token if access_token is not None else settings.cj_access_token
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.access_token)

    async def search(self, keyword: str, page_size: int = 20) -> list[dict]:
        """One page of CJ products for a keyword, best sellers first."""
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0), transport=self._transport) as client:
            resp = await client.get(
                f"{CJ_API_URL}/product/listV2",
                headers={"CJ-Access-Token": self.access_token},
                params={
                    "keyWord": keyword,
                    "pageNum": 1,
                    "pageSize": page_size,
                    "sort": "listedNum",
                    "orderBy": "DESC",
                },
            )
            resp.raise_for_status()
            body = resp.json()

        if body.get("code") != 200:
            raise RuntimeError(f"CJ API error: {body.get('message', 'unknown')}")
        data = body.get("data") or {}
        return data.get("list") or []


def _pid(raw: dict) -> str:
    return str(raw.get("pid") or raw.get("id") or "")


def _float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class CJTrendScanner:
    def __init__(self, client: CJClient | None = None, categories: list[str] | None = None, page_size: int = 20):
        self.client = client or CJClient()
        self.categories = categories or [c.strip() for c in settings.trend_categories.split(",") if c.strip()]
        self.page_size = page_size

    async def scan(self) -> list[DiscoveredItem]:
        if not self.client.enabled:
            logger.warning("CJ access token not configured, discovery returns nothing")
            return []

        found: list[DiscoveredItem] = []
        for keyword in self.categories:
            try:
                results = await self.client.search(keyword, self.page_size)
            except Exception as exc:
                logger.warning("CJ search for %r failed: %s", keyword, exc)
                continue
            for raw in results:
                pid = _pid(raw)
                if not pid:
                    continue
                found.append(DiscoveredItem(
                    name=raw.get("nameEn") or raw.get("productNameEn") or "Unknown Product",
                    cost_estimate=_float(raw.get("sellPrice")),
                    source_id=pid,
                    sales_proxy=int(_float(raw.get("listedNum")) or 0),
                    category=raw.get("threeCategoryName") or raw.get("categoryName") or keyword,
                    image=raw.get("bigImage") or raw.get("productImage") or None,
                    source="cj_dropshipping",
                ))
        logger.info("Trend scan found %d products across %d keywords", len(found), len(self.categories))
        return found


class CJSupplierSourcer:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], client: CJClient | None = None, markup: float | None = None):
        self.session_factory = session_factory
        self.client = client or CJClient()
        self.markup = markup or settings.default_markup

    async def auto_source(self, max_items: int) -> SourcingResult:
        if not self.client.enabled:
            logger.warning("CJ access token not configured, sourcing skipped")
            return SourcingResult(sourced=0)

        sourced = 0
        async with self.session_factory() as session:
            q = (
                select(CatalogItem)
                .where(
                    CatalogItem.is_active.is_(True),
                    CatalogItem.approved.is_(False),
                    CatalogItem.supplier_url == "",
                    CatalogItem.rejection_reason.in_(SOURCEABLE_REJECTIONS),
                )
                .order_by(CatalogItem.research_score.desc(), CatalogItem.id.asc())
                .limit(max_items)
            )
            for item in (await session.execute(q)).scalars().all():
                if item.source == "cj_dropshipping" and item.source_id:
                    pid, cost = item.source_id, item.cost
                else:
                    try:
                        matches = await self.client.search(item.title, page_size=5)
                    except Exception as exc:
                        logger.warning("CJ supplier lookup failed for %s: %s", item.title, exc)
                        continue
                    if not matches:
                        continue
                    pid, cost = _pid(matches[0]), _float(matches[0].get("sellPrice"))

                item.supplier_url = f"{CJ_PRODUCT_URL}/{pid}"
                item.supplier_ref = pid
                if not item.cost and cost:
                    item.cost = cost
                if item.cost and not item.selling_price:
                    item.selling_price = round(item.cost * self.markup, 2)
                item.margin_percent = compute_margin(item.cost, item.selling_price, item.margin_percent)
                item.rejection_reason = ""
                sourced += 1
                await session.commit()

        logger.info("Sourced %d items", sourced)
        return SourcingResult(sourced=sourced)
