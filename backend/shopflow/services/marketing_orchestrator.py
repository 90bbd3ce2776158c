"""
Marketing Orchestrator

Reacts to products going live and manages the content approval queue:

  on_product_live(product)   email sync + "New Product" event, enqueue a social
                             post, record activity, alert
  post queue worker          one asyncio task; pops a product, posts it to all
                             channels (cooldowns respected), then sleeps
                             post_delay_seconds before the next pop
  generate_content_for(...)  captions + image per product → pending_approval
  approve / reject / regenerate content items

One instance is built by the composition root and shared through app.state.
The queue, history ring buffers and counters live on that instance only.
"""

import asyncio
import logging
from collections import deque
from datetime import timedelta

from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopflow.config import settings
from shopflow.errors import ContentStateError
from shopflow.middleware.metrics import marketing_content_total, social_queue_depth
from shopflow.models import CatalogItem, MarketingContent
from shopflow.models.pipeline_run import utcnow
from shopflow.providers.base import (
    AlertNotifier, ContentGenerator, EmailSync, ProductSnapshot, SocialCopywriter, SocialPost,
)
from shopflow.providers.content import CAPTION_COST, fallback_caption
from shopflow.services.content_queue import ContentQueue
from shopflow.services.social_dispatcher import ChannelResult, SocialDispatcher

logger = logging.getLogger(__name__)

SOCIAL_HISTORY_SIZE = 100
ACTIVITY_FEED_SIZE = 200


def _results_dict(results: dict[str, ChannelResult]) -> dict:
    return {name: r.to_dict() for name, r in results.items()}


class MarketingOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        dispatcher: SocialDispatcher,
        content_generator: ContentGenerator,
        copywriter: SocialCopywriter,
        email: EmailSync,
        alerts: AlertNotifier,
        post_delay_seconds: float | None = None,
        generation_delay_seconds: float | None = None,
    ):
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.content_generator = content_generator
        self.copywriter = copywriter
        self.email = email
        self.alerts = alerts
        self.post_delay_seconds = settings.post_delay_seconds if post_delay_seconds is None else post_delay_seconds
        self.generation_delay_seconds = (
            settings.content_generation_delay_seconds if generation_delay_seconds is None else generation_delay_seconds
        )

        self._queue: asyncio.Queue[ProductSnapshot] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._currently_posting: str | None = None
        self._social_history: deque[dict] = deque(maxlen=SOCIAL_HISTORY_SIZE)
        self._activity: deque[dict] = deque(maxlen=ACTIVITY_FEED_SIZE)
        self._alert_tasks: set[asyncio.Task] = set()
        self.stats = {
            "products_live": 0,
            "posts_attempted": 0,
            "posts_succeeded": 0,
            "emails_synced": 0,
            "content_generated": 0,
            "content_failed": 0,
        }

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def worker_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.worker_running:
            self._worker = asyncio.create_task(self._run_worker(), name="social-post-worker")
            logger.info("Social post worker started")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Social post worker stopped")

    # ── Product live hook ────────────────────────────────────────────────

    async def on_product_live(self, product: ProductSnapshot) -> None:
        self.stats["products_live"] += 1

        try:
            await self.email.sync_product(product)
            await self.email.track_new_product(product)
            self.stats["emails_synced"] += 1
        except Exception as exc:
            logger.warning("Email sync failed for %s: %s", product.title, exc)

        self.queue_social_post(product)
        self._log_activity("product_live", f"{product.title} is live", product_id=product.id)

        task = asyncio.create_task(self.alerts.notify("marketing_product_live", {
            "product": product.title,
            "price": product.price,
            "queue_length": self._queue.qsize(),
        }))
        self._alert_tasks.add(task)
        task.add_done_callback(self._alert_tasks.discard)

    # ── Post queue ───────────────────────────────────────────────────────

    def queue_social_post(self, product: ProductSnapshot) -> int:
        """Append to the post queue and return its length. Never waits for posting."""
        self._queue.put_nowait(product)
        social_queue_depth.set(self._queue.qsize())
        self.start()
        return self._queue.qsize()

    async def queue_all_listed(self, limit: int = 50) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CatalogItem)
                .where(CatalogItem.is_active.is_(True), CatalogItem.status == "listed")
                .order_by(CatalogItem.id.asc())
                .limit(limit)
            )
            products = [ProductSnapshot.from_item(item) for item in result.scalars()]
        for product in products:
            self.queue_social_post(product)
        self._log_activity("queue_all", f"Queued {len(products)} products for posting")
        return len(products)

    async def _run_worker(self) -> None:
        while True:
            product = await self._queue.get()
            social_queue_depth.set(self._queue.qsize())
            try:
                await self.post_product(product)
            except Exception:
                logger.exception("Queued post failed for %s", product.title)
            finally:
                self._queue.task_done()
            await asyncio.sleep(self.post_delay_seconds)

    # ── Posting ──────────────────────────────────────────────────────────

    async def _build_post(self, product: ProductSnapshot) -> SocialPost:
        captions = {}
        for channel in self.dispatcher.channels:
            if not channel.enabled:
                continue
            try:
                captions[channel.name] = await self.copywriter.write(product, channel.name)
            except Exception as exc:
                logger.warning("Copy generation failed for %s on %s: %s", product.title, channel.name, exc)
                captions[channel.name] = fallback_caption(product)
        return SocialPost(
            item_id=product.id,
            title=product.title,
            image_url=product.image_url,
            price=product.price,
            category=product.category,
            captions=captions,
        )

    async def post_product(self, product: ProductSnapshot, force: bool = False) -> dict[str, ChannelResult]:
        self._currently_posting = product.title
        try:
            post = await self._build_post(product)
            if force:
                results = await self.dispatcher.force_publish_all(post)
            else:
                results = await self.dispatcher.publish_all(post)
        finally:
            self._currently_posting = None
        self._record_post(product.id, product.title, results)
        return results

    async def force_post_product(self, product: ProductSnapshot) -> dict[str, ChannelResult]:
        return await self.post_product(product, force=True)

    async def load_product(self, product_id: int) -> ProductSnapshot | None:
        async with self.session_factory() as session:
            item = await session.get(CatalogItem, product_id)
            return ProductSnapshot.from_item(item) if item else None

    def _record_post(self, product_id: int, title: str, results: dict[str, ChannelResult]) -> None:
        succeeded = sum(1 for r in results.values() if r.success)
        self.stats["posts_attempted"] += 1
        if succeeded:
            self.stats["posts_succeeded"] += 1
        self._social_history.appendleft({
            "product_id": product_id,
            "title": title,
            "results": _results_dict(results),
            "success_count": succeeded,
            "posted_at": utcnow().isoformat(),
        })
        self._log_activity(
            "social_post", f"{title} posted to {succeeded}/{len(results)} channels", product_id=product_id,
        )

    # ── Content generation ───────────────────────────────────────────────

    async def generate_content_for(self, products: list[ProductSnapshot], pipeline_run_id: str | None = None) -> dict:
        generated = failed = skipped = 0

        for i, product in enumerate(products):
            async with self.session_factory() as session:
                queue = ContentQueue(session)
                if await queue.find_open(product.id) is not None:
                    skipped += 1
                    continue
                content = await queue.create(product, pipeline_run_id=pipeline_run_id)
                await session.commit()
                ok = await self._fill_content(session, queue, content, product)

            if ok:
                generated += 1
            else:
                failed += 1
            if self.generation_delay_seconds and i < len(products) - 1:
                await asyncio.sleep(self.generation_delay_seconds)

        summary = {"generated": generated, "failed": failed, "skipped": skipped, "total": len(products)}
        self._log_activity("content_generated", f"Generated content for {generated}/{len(products)} products")
        logger.info("Content generation: %s", summary)
        return summary

    async def _fill_content(self, session: AsyncSession, queue: ContentQueue, content: MarketingContent, product: ProductSnapshot) -> bool:
        """Generate captions and image for a `generating` item. Returns False if it ended `failed`."""
        try:
            bundle = await self.content_generator.generate_captions_and_image_prompt(product)
        except Exception as exc:
            logger.error("Caption generation failed for %s: %s", product.title, exc)
            queue.transition(content, "failed", "fail", image={"status": "failed", "error": str(exc)})
            await session.commit()
            self.stats["content_failed"] += 1
            marketing_content_total.labels(status="failed").inc()
            return False

        cost = CAPTION_COST
        try:
            img = await self.content_generator.generate_image(bundle.image_prompt)
            image = {
                "url": img.url,
                "prompt": bundle.image_prompt,
                "status": "ready",
                "generated_at": utcnow().isoformat(),
            }
            cost += img.cost
        except Exception as exc:
            logger.error("Image generation failed for %s: %s", product.title, exc)
            image = {"status": "failed", "error": str(exc), "prompt": bundle.image_prompt}

        queue.transition(
            content, "pending_approval", "generate",
            caption=bundle.captions(), image=image, generation_cost=round(cost, 2),
        )
        await session.commit()
        self.stats["content_generated"] += 1
        marketing_content_total.labels(status="pending_approval").inc()
        return True

    async def generate_pending_content(self, limit: int | None = None) -> dict:
        """Feed listed items that have never had content into generate_content_for."""
        limit = limit or settings.content_sweep_limit
        async with self.session_factory() as session:
            has_content = exists().where(MarketingContent.catalog_item_id == CatalogItem.id)
            result = await session.execute(
                select(CatalogItem)
                .where(CatalogItem.is_active.is_(True), CatalogItem.status == "listed", ~has_content)
                .order_by(CatalogItem.id.asc())
                .limit(limit)
            )
            products = [ProductSnapshot.from_item(item) for item in result.scalars()]
        if not products:
            return {"generated": 0, "failed": 0, "skipped": 0, "total": 0}
        return await self.generate_content_for(products)

    async def expire_stale_generating(self, max_age: timedelta | None = None) -> int:
        max_age = max_age or timedelta(minutes=settings.stale_content_minutes)
        async with self.session_factory() as session:
            queue = ContentQueue(session)
            stale = await queue.stale_generating(max_age)
            for content in stale:
                queue.transition(
                    content, "failed", "expire",
                    image={**(content.image or {}), "status": "failed", "error": "Generation did not finish"},
                )
            await session.commit()
        if stale:
            logger.warning("Expired %d content items stuck in generating", len(stale))
            marketing_content_total.labels(status="failed").inc(len(stale))
        return len(stale)

    # ── Approval workflow ────────────────────────────────────────────────

    @staticmethod
    def _post_from_content(content: MarketingContent) -> SocialPost:
        caption = content.caption or {}
        image = content.image or {}
        return SocialPost(
            item_id=content.catalog_item_id,
            title=content.product_title,
            image_url=image.get("url") if image.get("status") == "ready" else content.product_image,
            price=content.product_price,
            category=content.product_category,
            captions={k: caption[k] for k in ("instagram", "facebook", "pinterest") if caption.get(k)},
            hashtags=list(caption.get("hashtags") or []),
        )

    async def approve_content(self, content_id: int) -> dict:
        """Approve and immediately post to every channel, bypassing cooldowns."""
        async with self.session_factory() as session:
            queue = ContentQueue(session)
            content = await queue.get_or_raise(content_id)
            queue.transition(content, "approved", "approve", approved_at=utcnow())
            await session.commit()
            self._log_activity("content_approved", f"Approved content for {content.product_title}", content_id=content.id)

            try:
                results = await self.dispatcher.force_publish_all(self._post_from_content(content))
            except Exception as exc:
                logger.error("Posting approved content %s failed: %s", content_id, exc, exc_info=True)
                return {"success": False, "error": str(exc), "content": content.to_dict()}

            queue.transition(content, "posted", "post", posted_at=utcnow(), post_results=_results_dict(results))
            await session.commit()

        marketing_content_total.labels(status="posted").inc()
        self._record_post(content.catalog_item_id, content.product_title, results)
        return {"success": True, "content": content.to_dict(), "results": _results_dict(results)}

    async def reject_content(self, content_id: int, reason: str = "") -> dict:
        async with self.session_factory() as session:
            queue = ContentQueue(session)
            content = await queue.get_or_raise(content_id)
            queue.transition(
                content, "rejected", "reject",
                rejected_at=utcnow(), rejection_reason=reason or "Rejected by reviewer",
            )
            await session.commit()
        marketing_content_total.labels(status="rejected").inc()
        self._log_activity("content_rejected", f"Rejected content for {content.product_title}", content_id=content.id)
        return content.to_dict()

    async def regenerate_content(self, content_id: int) -> dict:
        """Supersede an item and generate a fresh one for the same product.

        Any other open item for the product is superseded too, so the product
        ends up with exactly one open item. Refused while any of them is still
        generating.
        """
        async with self.session_factory() as session:
            queue = ContentQueue(session)
            old = await queue.get_or_raise(content_id)
            others = [c for c in await queue.open_items(old.catalog_item_id) if c.id != old.id]
            for content in others:
                if content.status == "generating":
                    raise ContentStateError(content.id, content.status, "regenerate")
            queue.supersede(old)
            for content in others:
                queue.supersede(content)

            item = await session.get(CatalogItem, old.catalog_item_id)
            if item is not None:
                product = ProductSnapshot.from_item(item)
            else:
                product = ProductSnapshot(
                    id=old.catalog_item_id,
                    title=old.product_title,
                    price=old.product_price,
                    category=old.product_category,
                    image_url=old.product_image,
                )

            new = await queue.create(product, pipeline_run_id=old.pipeline_run_id, regenerated_from=old)
            await session.commit()
            await self._fill_content(session, queue, new, product)

        self._log_activity(
            "content_regenerated", f"Regenerated content for {product.title}",
            content_id=new.id, previous_id=old.id,
        )
        return new.to_dict()

    # ── Queries ──────────────────────────────────────────────────────────

    async def get_content_queue(self, status: str | None = None, limit: int = 50) -> list[dict]:
        async with self.session_factory() as session:
            items = await ContentQueue(session).list_items(status=status, limit=limit)
            return [c.to_dict() for c in items]

    async def get_content_queue_stats(self) -> dict:
        async with self.session_factory() as session:
            return await ContentQueue(session).stats()

    def get_social_history(self, limit: int = 20) -> list[dict]:
        return list(self._social_history)[:limit]

    def get_activity_feed(self, limit: int = 50) -> list[dict]:
        return list(self._activity)[:limit]

    def get_status(self) -> dict:
        return {
            "worker_running": self.worker_running,
            "queue_length": self._queue.qsize(),
            "currently_posting": self._currently_posting,
            "post_delay_seconds": self.post_delay_seconds,
            "stats": dict(self.stats),
            "channels": self.dispatcher.get_status(),
        }

    def _log_activity(self, kind: str, message: str, **extra) -> None:
        self._activity.appendleft({
            "type": kind,
            "message": message,
            "timestamp": utcnow().isoformat(),
            **extra,
        })
