"""Tests for the marketing orchestrator: post queue, content generation and approval workflow."""

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from shopflow.errors import ContentNotFoundError, ContentStateError
from shopflow.models import MarketingContent
from shopflow.models.pipeline_run import utcnow
from shopflow.providers.base import ProductSnapshot
from shopflow.services.marketing_orchestrator import MarketingOrchestrator
from shopflow.services.social_dispatcher import SocialDispatcher
from tests.fakes import (
    CrashingDispatcher, FakeChannel, FakeContentGenerator, FakeCopywriter, FakeEmail, RecordingAlerts, add_item,
)


async def snapshot(session_factory, **fields) -> ProductSnapshot:
    item = await add_item(session_factory, image_url="https://img.example/stand.jpg", **fields)
    return ProductSnapshot.from_item(item)


async def contents_for(session_factory, item_id: int) -> list[MarketingContent]:
    async with session_factory() as session:
        result = await session.execute(
            select(MarketingContent).where(MarketingContent.catalog_item_id == item_id).order_by(MarketingContent.id)
        )
        return list(result.scalars())


async def pending_content(marketing, session_factory, **fields) -> dict:
    product = await snapshot(session_factory, **fields)
    await marketing.generate_content_for([product])
    [content] = await contents_for(session_factory, product.id)
    return {"id": content.id, "product": product}


class TimedChannel(FakeChannel):
    """Records the loop time of every publish."""

    def __init__(self, name):
        super().__init__(name)
        self.times: list[float] = []

    async def publish(self, post, caption):
        self.times.append(asyncio.get_running_loop().time())
        return await super().publish(post, caption)


class SlowAlerts:
    def __init__(self):
        self.delivered: list[str] = []

    async def notify(self, event_type, payload):
        await asyncio.sleep(10)
        self.delivered.append(event_type)


def throttled_marketing(session_factory, channel, *, post_delay: float, alerts=None) -> MarketingOrchestrator:
    alerts = alerts or RecordingAlerts()
    return MarketingOrchestrator(
        session_factory,
        dispatcher=SocialDispatcher([channel], alerts, cooldown_seconds=0),
        content_generator=FakeContentGenerator(),
        copywriter=FakeCopywriter(),
        email=FakeEmail(),
        alerts=alerts,
        post_delay_seconds=post_delay,
        generation_delay_seconds=0,
    )


# ── Product live / post queue ────────────────────────────────────────────────

@pytest.mark.asyncio
class TestPostQueue:
    async def test_product_live_syncs_email_and_posts(self, marketing, session_factory, channels, alerts):
        product = await snapshot(session_factory)

        await marketing.on_product_live(product)
        await asyncio.wait_for(marketing._queue.join(), timeout=2)

        assert marketing.email.synced == [product.id]
        assert marketing.email.tracked == [product.id]
        assert all(len(c.published) == 1 for c in channels)
        assert channels[1].published[0][1] == f"facebook copy for {product.title}"
        assert "marketing_product_live" in alerts.types()

        [entry] = marketing.get_social_history()
        assert entry["product_id"] == product.id
        assert entry["success_count"] == 3
        assert marketing.get_activity_feed()[0]["type"] == "social_post"

    async def test_email_failure_still_enqueues(self, marketing, session_factory):
        marketing.email = FakeEmail(error=RuntimeError("klaviyo 503"))
        product = await snapshot(session_factory)

        await marketing.on_product_live(product)
        await asyncio.wait_for(marketing._queue.join(), timeout=2)

        assert marketing.stats["posts_attempted"] == 1
        assert marketing.stats["emails_synced"] == 0

    async def test_queue_is_fifo(self, marketing, session_factory):
        first = await snapshot(session_factory, title="First Product")
        second = await snapshot(session_factory, title="Second Product")

        marketing.queue_social_post(first)
        marketing.queue_social_post(second)
        await asyncio.wait_for(marketing._queue.join(), timeout=2)

        # History is newest first
        assert [h["title"] for h in marketing.get_social_history()] == ["Second Product", "First Product"]

    async def test_queued_posts_respect_cooldown(self, marketing, session_factory):
        product = await snapshot(session_factory)

        marketing.queue_social_post(product)
        marketing.queue_social_post(product)
        await asyncio.wait_for(marketing._queue.join(), timeout=2)

        latest = marketing.get_social_history()[0]
        assert latest["success_count"] == 0
        assert latest["results"]["instagram"] == {"success": False, "reason": "rate_limited"}

    async def test_force_post_ignores_cooldown(self, marketing, session_factory):
        product = await snapshot(session_factory)

        await marketing.post_product(product)
        results = await marketing.force_post_product(product)

        assert all(r.success for r in results.values())

    async def test_queue_all_listed(self, marketing, session_factory):
        await add_item(session_factory, title="Listed", status="listed")
        await add_item(session_factory, title="Draft", status="draft")

        assert await marketing.queue_all_listed() == 1

    async def test_worker_waits_between_posts(self, session_factory):
        channel = TimedChannel("facebook")
        marketing = throttled_marketing(session_factory, channel, post_delay=0.2)
        try:
            marketing.queue_social_post(await snapshot(session_factory, title="First Product"))
            marketing.queue_social_post(await snapshot(session_factory, title="Second Product"))
            await asyncio.wait_for(marketing._queue.join(), timeout=2)
        finally:
            await marketing.stop()

        assert len(channel.times) == 2
        assert channel.times[1] - channel.times[0] >= 0.18

    async def test_enqueue_while_running_keeps_single_worker(self, session_factory):
        marketing = throttled_marketing(session_factory, TimedChannel("facebook"), post_delay=5)
        try:
            marketing.queue_social_post(await snapshot(session_factory))
            worker = marketing._worker
            await asyncio.sleep(0.05)

            queued = marketing.queue_social_post(await snapshot(session_factory, title="Second Product"))

            assert marketing._worker is worker
            assert marketing.worker_running
            assert queued == 1
        finally:
            await marketing.stop()

    async def test_slow_alert_does_not_block_product_live(self, session_factory):
        alerts = SlowAlerts()
        marketing = throttled_marketing(session_factory, TimedChannel("facebook"), post_delay=0, alerts=alerts)
        try:
            await asyncio.wait_for(marketing.on_product_live(await snapshot(session_factory)), timeout=0.5)
            assert alerts.delivered == []
        finally:
            for task in [*marketing._alert_tasks, *marketing.dispatcher._alert_tasks]:
                task.cancel()
            await marketing.stop()


# ── Content generation ───────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestContentGeneration:
    async def test_generates_pending_content(self, marketing, session_factory):
        product = await snapshot(session_factory)

        summary = await marketing.generate_content_for([product], pipeline_run_id="run-1")

        assert summary == {"generated": 1, "failed": 0, "skipped": 0, "total": 1}
        [content] = await contents_for(session_factory, product.id)
        assert content.status == "pending_approval"
        assert content.caption["instagram"] == f"IG: {product.title}"
        assert content.image["status"] == "ready"
        assert content.generation_cost == 0.05
        assert content.pipeline_run_id == "run-1"

    async def test_open_content_is_skipped(self, marketing, session_factory):
        product = await snapshot(session_factory)

        await marketing.generate_content_for([product])
        summary = await marketing.generate_content_for([product])

        assert summary["skipped"] == 1
        assert len(await contents_for(session_factory, product.id)) == 1

    async def test_caption_failure_marks_failed_and_continues(self, marketing, session_factory):
        marketing.content_generator = FakeContentGenerator(fail_captions=True)
        first = await snapshot(session_factory, title="First Product")
        second = await snapshot(session_factory, title="Second Product")

        summary = await marketing.generate_content_for([first, second])

        assert summary == {"generated": 0, "failed": 2, "skipped": 0, "total": 2}
        [content] = await contents_for(session_factory, first.id)
        assert content.status == "failed"

    async def test_image_failure_keeps_item(self, marketing, session_factory):
        marketing.content_generator = FakeContentGenerator(fail_image=True)
        product = await snapshot(session_factory)

        await marketing.generate_content_for([product])

        [content] = await contents_for(session_factory, product.id)
        assert content.status == "pending_approval"
        assert content.image["status"] == "failed"
        assert "timed out" in content.image["error"]
        assert content.generation_cost == 0.01

    async def test_generate_pending_content_picks_listed_items_without_content(self, marketing, session_factory):
        listed = await add_item(session_factory, title="Listed", status="listed")
        await add_item(session_factory, title="Draft", status="draft")

        summary = await marketing.generate_pending_content(limit=10)
        again = await marketing.generate_pending_content(limit=10)

        assert summary["generated"] == 1
        assert again["total"] == 0
        assert len(await contents_for(session_factory, listed.id)) == 1

    async def test_expire_stale_generating(self, marketing, session_factory):
        item = await add_item(session_factory)
        async with session_factory() as session:
            session.add(MarketingContent(
                catalog_item_id=item.id, product_title=item.title, status="generating",
                created_at=utcnow() - timedelta(hours=3),
            ))
            session.add(MarketingContent(catalog_item_id=item.id, product_title=item.title, status="generating"))
            await session.commit()

        expired = await marketing.expire_stale_generating(timedelta(minutes=60))

        assert expired == 1
        statuses = sorted(c.status for c in await contents_for(session_factory, item.id))
        assert statuses == ["failed", "generating"]


# ── Approval workflow ────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestApprovalWorkflow:
    async def test_approve_posts_to_all_channels(self, marketing, session_factory, channels):
        pending = await pending_content(marketing, session_factory)

        result = await marketing.approve_content(pending["id"])

        assert result["success"] is True
        assert result["content"]["status"] == "posted"
        assert set(result["results"]) == {"instagram", "facebook", "pinterest"}
        post, caption = channels[0].published[0]
        assert post.image_url == "https://fal.example/image.jpg"
        assert caption.startswith("IG: ")
        assert "#shopflow" in caption

    async def test_approve_twice_is_rejected_without_mutation(self, marketing, session_factory):
        pending = await pending_content(marketing, session_factory)
        await marketing.approve_content(pending["id"])

        with pytest.raises(ContentStateError) as exc_info:
            await marketing.approve_content(pending["id"])

        assert str(exc_info.value) == f"Cannot approve content {pending['id']} with status: posted"
        [content] = await contents_for(session_factory, pending["product"].id)
        assert content.status == "posted"

    async def test_approve_with_crashing_dispatcher_stays_approved(self, marketing, session_factory):
        pending = await pending_content(marketing, session_factory)
        marketing.dispatcher = CrashingDispatcher()

        result = await marketing.approve_content(pending["id"])

        assert result["success"] is False
        assert result["error"] == "dispatcher offline"
        [content] = await contents_for(session_factory, pending["product"].id)
        assert content.status == "approved"

    async def test_reject_only_from_pending(self, marketing, session_factory):
        pending = await pending_content(marketing, session_factory)

        rejected = await marketing.reject_content(pending["id"], "Off brand")
        assert rejected["status"] == "rejected"
        assert rejected["rejection_reason"] == "Off brand"

        with pytest.raises(ContentStateError):
            await marketing.reject_content(pending["id"])

    async def test_unknown_content_raises_not_found(self, marketing):
        with pytest.raises(ContentNotFoundError):
            await marketing.approve_content(999)

    async def test_regenerate_supersedes_original(self, marketing, session_factory):
        pending = await pending_content(marketing, session_factory)

        new = await marketing.regenerate_content(pending["id"])

        items = await contents_for(session_factory, pending["product"].id)
        assert len(items) == 2
        old = items[0]
        assert old.status == "rejected"
        assert old.rejection_reason == "Regenerated"
        assert new["regenerated_from"] == old.id
        assert new["regeneration_count"] == 1
        assert new["status"] == "pending_approval"
        assert [c.status for c in items].count("pending_approval") == 1

    async def test_regenerate_allowed_after_posting(self, marketing, session_factory):
        pending = await pending_content(marketing, session_factory)
        await marketing.approve_content(pending["id"])

        new = await marketing.regenerate_content(pending["id"])

        assert new["status"] == "pending_approval"

    async def test_regenerating_old_item_supersedes_other_open_item(self, marketing, session_factory):
        marketing.content_generator = FakeContentGenerator(fail_captions=True)
        product = await snapshot(session_factory)
        await marketing.generate_content_for([product])
        [failed] = await contents_for(session_factory, product.id)
        marketing.content_generator = FakeContentGenerator()

        await marketing.regenerate_content(failed.id)
        newest = await marketing.regenerate_content(failed.id)

        statuses = [c.status for c in await contents_for(session_factory, product.id)]
        assert statuses == ["rejected", "rejected", "pending_approval"]
        assert newest["status"] == "pending_approval"

    async def test_regenerate_refused_while_sibling_is_generating(self, marketing, session_factory):
        item = await add_item(session_factory)
        async with session_factory() as session:
            done = MarketingContent(catalog_item_id=item.id, product_title=item.title, status="posted")
            busy = MarketingContent(catalog_item_id=item.id, product_title=item.title, status="generating")
            session.add_all([done, busy])
            await session.commit()

        with pytest.raises(ContentStateError):
            await marketing.regenerate_content(done.id)

        statuses = [c.status for c in await contents_for(session_factory, item.id)]
        assert statuses == ["posted", "generating"]

    async def test_regenerate_refused_while_generating(self, marketing, session_factory):
        item = await add_item(session_factory)
        async with session_factory() as session:
            content = MarketingContent(catalog_item_id=item.id, product_title=item.title, status="generating")
            session.add(content)
            await session.commit()

        with pytest.raises(ContentStateError):
            await marketing.regenerate_content(content.id)

    async def test_queue_listing_and_stats(self, marketing, session_factory):
        first = await pending_content(marketing, session_factory, title="First Product")
        await pending_content(marketing, session_factory, title="Second Product")
        await marketing.reject_content(first["id"])

        pending = await marketing.get_content_queue(status="pending_approval")
        stats = await marketing.get_content_queue_stats()

        assert [c["product_title"] for c in pending] == ["Second Product"]
        assert stats["pending_approval"] == 1
        assert stats["rejected"] == 1
        assert stats["total"] == 2
        assert stats["total_cost"] == 0.1
