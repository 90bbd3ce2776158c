"""
Social Posting Dispatcher

Publishes one SocialPost to every configured channel concurrently. Each
channel is gated by a cooldown (default 2h since its last successful post);
a gated channel reports `rate_limited` without calling the platform. Channels
are independent: one failing never affects the others.

Result shape per channel:
  {"success": true,  "post_id": "..."}
  {"success": false, "reason": "not_configured" | "rate_limited" | <platform error>}
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from shopflow.config import settings
from shopflow.errors import PublishError, RateLimitedError
from shopflow.middleware.metrics import social_posts_total
from shopflow.providers.base import AlertNotifier, SocialChannel, SocialPost

logger = logging.getLogger(__name__)


@dataclass
class ChannelResult:
    success: bool
    post_id: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "post_id": self.post_id}
        return {"success": False, "reason": self.reason}


class SocialDispatcher:
    def __init__(
        self,
        channels: list[SocialChannel],
        alerts: AlertNotifier,
        cooldown_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.channels = channels
        self.alerts = alerts
        self.cooldown_seconds = settings.social_cooldown_seconds if cooldown_seconds is None else cooldown_seconds
        self._clock = clock
        self._last_post: dict[str, float] = {}
        self._alert_tasks: set[asyncio.Task] = set()

    # ── Cooldown ─────────────────────────────────────────────────────────

    def check_cooldown(self, channel: str) -> None:
        last = self._last_post.get(channel)
        if last is None:
            return
        remaining = self.cooldown_seconds - (self._clock() - last)
        if remaining > 0:
            raise RateLimitedError(channel, remaining)

    def can_post(self, channel: str) -> bool:
        try:
            self.check_cooldown(channel)
        except RateLimitedError:
            return False
        return True

    def clear_cooldowns(self) -> None:
        self._last_post.clear()

    # ── Publishing ───────────────────────────────────────────────────────

    async def _publish_one(self, channel: SocialChannel, post: SocialPost, respect_cooldown: bool) -> ChannelResult:
        if not channel.enabled:
            return ChannelResult(success=False, reason="not_configured")

        try:
            if respect_cooldown:
                self.check_cooldown(channel.name)
            post_id = await channel.publish(post, post.caption_for(channel.name))
        except RateLimitedError as exc:
            logger.info("%s", exc)
            social_posts_total.labels(channel=channel.name, outcome="rate_limited").inc()
            return ChannelResult(success=False, reason=exc.reason)
        except PublishError as exc:
            logger.error("%s publish failed for %s: %s", channel.name, post.title, exc.reason)
            social_posts_total.labels(channel=channel.name, outcome="failed").inc()
            return ChannelResult(success=False, reason=exc.reason)
        except Exception as exc:
            logger.error("%s publish crashed for %s: %s", channel.name, post.title, exc, exc_info=True)
            social_posts_total.labels(channel=channel.name, outcome="failed").inc()
            return ChannelResult(success=False, reason=str(exc) or type(exc).__name__)

        self._last_post[channel.name] = self._clock()
        social_posts_total.labels(channel=channel.name, outcome="posted").inc()
        return ChannelResult(success=True, post_id=post_id)

    async def publish_all(self, post: SocialPost, respect_cooldown: bool = True) -> dict[str, ChannelResult]:
        logger.info("Broadcasting %s to %d channels", post.title, len(self.channels))
        outcomes = await asyncio.gather(
            *(self._publish_one(c, post, respect_cooldown) for c in self.channels)
        )
        results = {c.name: r for c, r in zip(self.channels, outcomes)}

        succeeded = sum(1 for r in outcomes if r.success)
        self._report(post, results, succeeded)
        return results

    async def force_publish_all(self, post: SocialPost) -> dict[str, ChannelResult]:
        """Publish now, ignoring and resetting every channel cooldown."""
        self.clear_cooldowns()
        return await self.publish_all(post, respect_cooldown=False)

    def _report(self, post: SocialPost, results: dict[str, ChannelResult], succeeded: int) -> None:
        payload = {
            "product": post.title,
            "posted": succeeded,
            "channels": {name: r.success for name, r in results.items()},
        }
        task = asyncio.create_task(self.alerts.notify("social_posted", payload))
        self._alert_tasks.add(task)
        task.add_done_callback(self._alert_tasks.discard)

    # ── Status ───────────────────────────────────────────────────────────

    def get_status(self) -> dict:
        now = self._clock()
        status = {}
        for channel in self.channels:
            last = self._last_post.get(channel.name)
            remaining = max(0.0, self.cooldown_seconds - (now - last)) if last is not None else 0.0
            status[channel.name] = {
                "configured": channel.enabled,
                "cooldown_remaining_seconds": round(remaining),
            }
        return status
