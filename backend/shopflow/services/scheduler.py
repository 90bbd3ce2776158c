"""
Cron jobs (APScheduler, UTC):

  pipeline_cron       full pipeline run, triggered_by=cron
  content_sweep_cron  generate content for listed items that have none
  cleanup_cron        fail stale `generating` content, re-run the auto-list sweep

Jobs log their failures and never raise into the scheduler.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from shopflow.config import settings
from shopflow.errors import ConflictError, RunFatalError
from shopflow.services.marketing_orchestrator import MarketingOrchestrator
from shopflow.services.pipeline_orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)


class JobRunner:
    def __init__(self, pipeline: PipelineOrchestrator, marketing: MarketingOrchestrator):
        self.pipeline = pipeline
        self.marketing = marketing

    async def run_pipeline(self) -> None:
        try:
            run = await self.pipeline.run_now(run_type="full", triggered_by="cron")
            logger.info("Scheduled pipeline run %s finished: %s", run.run_id, run.status)
        except ConflictError as exc:
            logger.info("Scheduled pipeline skipped: %s", exc)
        except RunFatalError as exc:
            logger.error("Scheduled pipeline failed: %s", exc)
        except Exception:
            logger.exception("Scheduled pipeline crashed")

    async def sweep_content(self) -> None:
        try:
            summary = await self.marketing.generate_pending_content()
            logger.info("Content sweep: %s", summary)
        except Exception:
            logger.exception("Content sweep failed")

    async def cleanup(self) -> None:
        try:
            expired = await self.marketing.expire_stale_generating()
            auto_listed = await self.pipeline.auto_list_sweep()
            logger.info("Cleanup: %d stale content items failed, %d items auto-listed", expired, auto_listed)
        except Exception:
            logger.exception("Cleanup job failed")


def build_scheduler(pipeline: PipelineOrchestrator, marketing: MarketingOrchestrator) -> AsyncIOScheduler:
    runner = JobRunner(pipeline, marketing)
    scheduler = AsyncIOScheduler(timezone="UTC")
    jobs = (
        ("pipeline", runner.run_pipeline, settings.pipeline_cron),
        ("content_sweep", runner.sweep_content, settings.content_sweep_cron),
        ("cleanup", runner.cleanup, settings.cleanup_cron),
    )
    for job_id, func, cron in jobs:
        scheduler.add_job(
            func,
            CronTrigger.from_crontab(cron, timezone="UTC"),
            id=job_id,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        logger.info("Scheduled %s: %s", job_id, cron)
    return scheduler
