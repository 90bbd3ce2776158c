"""
Content Queue

Persistence and state machine for MarketingContent items:

  generating       -> pending_approval | failed
  pending_approval -> approved | rejected
  approved         -> posted
  rejected, posted, failed  (terminal)

Regeneration is the one exception: any item not currently generating can be
superseded, which forces it to `rejected` with reason "Regenerated".
"""

from datetime import timedelta

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from shopflow.errors import ContentNotFoundError, ContentStateError
from shopflow.models import MarketingContent
from shopflow.models.marketing_content import CONTENT_STATUSES, OPEN_CONTENT_STATUSES
from shopflow.models.pipeline_run import utcnow
from shopflow.providers.base import ProductSnapshot

VALID_TRANSITIONS: dict[str, set[str]] = {
    "generating": {"pending_approval", "failed"},
    "pending_approval": {"approved", "rejected"},
    "approved": {"posted"},
    "rejected": set(),  # terminal
    "posted": set(),  # terminal
    "failed": set(),  # terminal
}

REGENERATED_REASON = "Regenerated"


class ContentQueue:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_or_raise(self, content_id: int) -> MarketingContent:
        content = await self.session.get(MarketingContent, content_id)
        if content is None:
            raise ContentNotFoundError(content_id)
        return content

    async def find_open(self, catalog_item_id: int) -> MarketingContent | None:
        result = await self.session.execute(
            select(MarketingContent)
            .where(
                MarketingContent.catalog_item_id == catalog_item_id,
                MarketingContent.status.in_(OPEN_CONTENT_STATUSES),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def open_items(self, catalog_item_id: int) -> list[MarketingContent]:
        result = await self.session.execute(
            select(MarketingContent)
            .where(
                MarketingContent.catalog_item_id == catalog_item_id,
                MarketingContent.status.in_(OPEN_CONTENT_STATUSES),
            )
            .order_by(MarketingContent.id)
        )
        return list(result.scalars())

    async def create(
        self,
        product: ProductSnapshot,
        *,
        pipeline_run_id: str | None = None,
        regenerated_from: MarketingContent | None = None,
    ) -> MarketingContent:
        content = MarketingContent(
            catalog_item_id=product.id,
            product_title=product.title,
            product_image=product.image_url,
            product_price=product.price,
            product_category=product.category,
            status="generating",
            image={"status": "pending"},
            generation_cost=0.0,
            pipeline_run_id=pipeline_run_id,
        )
        if regenerated_from is not None:
            content.regenerated_from = regenerated_from.id
            content.regeneration_count = (regenerated_from.regeneration_count or 0) + 1
        self.session.add(content)
        await self.session.flush()
        return content

    def ensure_transition(self, content: MarketingContent, new_status: str, action: str) -> None:
        allowed = VALID_TRANSITIONS.get(content.status, set())
        if new_status not in allowed:
            raise ContentStateError(content.id, content.status, action)

    def transition(self, content: MarketingContent, new_status: str, action: str, **fields) -> MarketingContent:
        """Validate and apply a status change plus any accompanying field updates."""
        self.ensure_transition(content, new_status, action)
        content.status = new_status
        for name, value in fields.items():
            setattr(content, name, value)
        return content

    def supersede(self, content: MarketingContent) -> MarketingContent:
        if content.status == "generating":
            raise ContentStateError(content.id, content.status, "regenerate")
        content.status = "rejected"
        content.rejection_reason = REGENERATED_REASON
        content.rejected_at = utcnow()
        return content

    async def list_items(self, status: str | None = None, limit: int = 50, offset: int = 0) -> list[MarketingContent]:
        q = select(MarketingContent)
        if status:
            q = q.where(MarketingContent.status == status)
        q = q.order_by(MarketingContent.id.desc()).offset(offset).limit(limit)
        return list((await self.session.execute(q)).scalars())

    async def stale_generating(self, max_age: timedelta) -> list[MarketingContent]:
        cutoff = utcnow() - max_age
        result = await self.session.execute(
            select(MarketingContent).where(
                MarketingContent.status == "generating",
                MarketingContent.created_at < cutoff,
            )
        )
        return list(result.scalars())

    async def stats(self) -> dict:
        result = await self.session.execute(
            select(MarketingContent.status, func.count(), func.coalesce(func.sum(MarketingContent.generation_cost), 0.0))
            .group_by(MarketingContent.status)
        )
        counts = {status: 0 for status in CONTENT_STATUSES}
        total_cost = 0.0
        for status, count, cost in result.all():
            counts[status] = count
            total_cost += float(cost or 0)
        return {
            **counts,
            "total": sum(counts.values()),
            "total_cost": round(total_cost, 2),
        }
