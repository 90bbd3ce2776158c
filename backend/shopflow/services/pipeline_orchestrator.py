"""
Pipeline Run Orchestrator

Drives one PipelineRun through the fixed stage sequence:

  1. discovery   trend scan → score → persist new catalog items
  2. sourcing    attach supplier/cost data
  3. enrichment  AI description / SEO / tags
  4. validation  approve or reject pending candidates
  5. listing     push approved items to the storefront channel
  6. sync        push catalog data to the bookkeeping store

Each stage is isolated: a failure is appended to `results.errors` and the run
moves on. Only an error outside the stage boundaries (e.g. failing to save
the run itself) marks the run failed and is re-raised as RunFatalError.

Admission is at-most-one-active-run: a second start while a run is queued or
running raises ConflictError. The unique `active_slot` column makes the insert
itself the guard, so two near-simultaneous triggers cannot both succeed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from uuid import uuid4

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopflow.config import settings
from shopflow.errors import ConflictError, RunFatalError, StageError
from shopflow.middleware.metrics import (
    pipeline_runs_total, pipeline_duration_seconds, pipeline_stage_errors_total,
    catalog_decisions_total,
)
from shopflow.middleware.request_context import bind_run_id, reset_run_id
from shopflow.models import CatalogItem, PipelineRun
from shopflow.models.catalog_item import UNLISTED_STATUSES
from shopflow.models.pipeline_run import (
    ACTIVE_SLOT, ACTIVE_STATUSES, RUN_TYPES, TRIGGERS, empty_results, utcnow,
)
from shopflow.providers.base import (
    AlertNotifier, BookkeepingClient, DiscoveredItem, DiscoveryClient,
    EnrichmentClient, ListingClient, ProductSnapshot, SourcingClient,
)
from shopflow.services.validation import compute_margin, evaluate_batch, score_trend

logger = logging.getLogger(__name__)

STAGES = ("discovery", "sourcing", "enrichment", "validation", "listing", "sync")

STAGES_BY_TYPE: dict[str, tuple[str, ...]] = {
    "full": STAGES,
    "trend": ("discovery", "validation", "listing"),
    "supplier": ("sourcing",),
    "enrich": ("enrichment",),
    "competitor": ("sync",),
}

COMPARE_PRICE_FACTOR = 1.35


@dataclass
class _RunContext:
    max_items: int
    newly_listed: list[ProductSnapshot] = field(default_factory=list)


class PipelineOrchestrator:
    """Admission control, stage sequencing and completion side effects for pipeline runs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        discovery: DiscoveryClient,
        sourcing: SourcingClient,
        enrichment: EnrichmentClient,
        listing: ListingClient,
        bookkeeping: BookkeepingClient,
        alerts: AlertNotifier,
        marketing=None,
        max_items: int | None = None,
        min_trend_score: int | None = None,
        markup: float | None = None,
    ):
        self.session_factory = session_factory
        self.discovery = discovery
        self.sourcing = sourcing
        self.enrichment = enrichment
        self.listing = listing
        self.bookkeeping = bookkeeping
        self.alerts = alerts
        self.marketing = marketing
        self.max_items = max_items or settings.pipeline_max_items
        self.min_trend_score = settings.min_trend_score if min_trend_score is None else min_trend_score
        self.markup = markup or settings.default_markup
        self._tasks: set[asyncio.Task] = set()

    # ── Admission ────────────────────────────────────────────────────────

    async def start_run(
        self,
        *,
        run_type: str = "full",
        triggered_by: str = "manual",
        config: dict | None = None,
        background: bool = True,
    ) -> PipelineRun:
        """Create a queued run, or raise ConflictError if one is already active.

        With background=True the run executes as a detached task and this
        returns immediately.
        """
        if run_type not in RUN_TYPES:
            raise ValueError(f"Unknown run type: {run_type}")
        if triggered_by not in TRIGGERS:
            raise ValueError(f"Unknown trigger: {triggered_by}")

        run_config = {"max_items": self.max_items, **(config or {})}

        async with self.session_factory() as session:
            active = await self._find_active(session)
            if active is not None:
                raise ConflictError(active.run_id)

            run = PipelineRun(
                run_id=str(uuid4()),
                type=run_type,
                status="queued",
                triggered_by=triggered_by,
                active_slot=ACTIVE_SLOT,
                config=run_config,
                logs=[],
                results=empty_results(),
            )
            session.add(run)
            try:
                await session.commit()
            except IntegrityError:
                # Lost the race against a concurrent trigger
                await session.rollback()
                active = await self._find_active(session)
                raise ConflictError(active.run_id if active else "unknown") from None

        logger.info("Pipeline run %s queued (type=%s, trigger=%s)", run.run_id, run_type, triggered_by)
        if background:
            self._launch(run.run_id)
        return run

    async def run_now(self, *, run_type: str = "full", triggered_by: str = "cron", config: dict | None = None) -> PipelineRun:
        """Start and await a run in the caller's task (used by the scheduler)."""
        run = await self.start_run(run_type=run_type, triggered_by=triggered_by, config=config, background=False)
        return await self.execute_run(run.run_id)

    def _launch(self, run_id: str) -> None:
        task = asyncio.create_task(self._execute_in_background(run_id), name=f"pipeline-{run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _execute_in_background(self, run_id: str) -> None:
        try:
            await self.execute_run(run_id)
        except RunFatalError as exc:
            logger.error("%s", exc)

    async def drain(self) -> None:
        """Wait for every background run started by this orchestrator."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Execution ────────────────────────────────────────────────────────

    async def execute_run(self, run_id: str) -> PipelineRun:
        token = bind_run_id(run_id)
        t_start = time.monotonic()
        try:
            async with self.session_factory() as session:
                try:
                    return await self._execute(session, run_id, t_start)
                except Exception as exc:
                    logger.error("Pipeline run %s failed: %s", run_id, exc, exc_info=True)
                    await self._mark_failed(session, run_id, t_start, exc)
                    raise RunFatalError(run_id, str(exc)) from exc
        finally:
            reset_run_id(token)

    async def _execute(self, session: AsyncSession, run_id: str, t_start: float) -> PipelineRun:
        run = await self._get_run(session, run_id)
        run.mark_running()
        run.add_log("info", "Pipeline started")
        await session.commit()

        ctx = _RunContext(max_items=int((run.config or {}).get("max_items") or self.max_items))
        stage_fns = {
            "discovery": self._stage_discovery,
            "sourcing": self._stage_sourcing,
            "enrichment": self._stage_enrichment,
            "validation": self._stage_validation,
            "listing": self._stage_listing,
            "sync": self._stage_sync,
        }
        for stage in STAGES_BY_TYPE[run.type]:
            await self._run_stage(session, run, stage, stage_fns[stage], ctx)

        # ── Completion ──
        duration_ms = int((time.monotonic() - t_start) * 1000)
        run.add_log("info", f"Pipeline completed in {round(duration_ms / 1000)}s")

        try:
            auto_listed = await self.auto_list_sweep()
        except Exception as exc:
            logger.warning("Auto-list sweep failed: %s", exc)
            auto_listed = 0
        run.set_result("auto_listed", auto_listed)

        run.finish("completed", duration_ms)
        await session.commit()

        pipeline_runs_total.labels(type=run.type, status="completed").inc()
        pipeline_duration_seconds.observe(duration_ms / 1000)
        logger.info(
            "Pipeline run %s completed in %dms: %s",
            run.run_id, duration_ms,
            {k: v for k, v in run.results.items() if k != "errors"},
        )

        await self._announce(run, ctx)
        return run

    async def _run_stage(self, session: AsyncSession, run: PipelineRun, stage: str, fn, ctx: _RunContext) -> None:
        run.add_log("info", f"Stage {stage}: started")
        await session.commit()

        try:
            detail = await fn(session, run, ctx)
        except Exception as exc:
            err = exc if isinstance(exc, StageError) else StageError(stage, str(exc) or type(exc).__name__)
            logger.warning("Stage %s failed: %s", stage, err.message)
            # Drop whatever the stage left unflushed; the run row itself is re-read
            await session.rollback()
            await session.refresh(run)
            run.record_error(err.stage, err.message)
            run.add_log("error", f"Stage {stage} failed: {err.message}")
            pipeline_stage_errors_total.labels(stage=stage).inc()
        else:
            run.add_log("info", f"Stage {stage} complete: {detail}")

        # A failure to save here is fatal for the run
        await session.commit()

    # ── Stages ───────────────────────────────────────────────────────────

    async def _stage_discovery(self, session: AsyncSession, run: PipelineRun, ctx: _RunContext) -> str:
        scanned = await self.discovery.scan()

        qualified = []
        for raw in scanned:
            score = score_trend(raw)
            if score >= self.min_trend_score:
                qualified.append((raw, score))
        # Highest trend score first; ties keep scan order
        qualified.sort(key=lambda pair: pair[1], reverse=True)
        qualified = qualified[: ctx.max_items]

        source_ids = [raw.source_id for raw, _ in qualified if raw.source_id]
        seen: set[str] = set()
        if source_ids:
            result = await session.execute(
                select(CatalogItem.source_id).where(CatalogItem.source_id.in_(source_ids))
            )
            seen = set(result.scalars())

        saved = 0
        for raw, score in qualified:
            if raw.source_id:
                if raw.source_id in seen:
                    logger.info("Skipping duplicate: %s", raw.name)
                    continue
                seen.add(raw.source_id)
            try:
                session.add(self._new_item(raw, score))
                await session.commit()
                saved += 1
            except SQLAlchemyError as exc:
                logger.warning("Failed to save discovered item %s: %s", raw.name, exc)
                await session.rollback()
                await session.refresh(run)

        run.set_result("discovered", saved)
        return f"{saved} items discovered ({len(scanned)} scanned, {len(qualified)} qualified)"

    def _new_item(self, raw: DiscoveredItem, score: int) -> CatalogItem:
        cost = raw.cost_estimate if raw.cost_estimate and raw.cost_estimate > 0 else None
        price = round(cost * self.markup, 2) if cost else 0.0
        return CatalogItem(
            title=raw.name,
            category=raw.category,
            source=raw.source,
            source_id=raw.source_id or None,
            sales_proxy=raw.sales_proxy,
            image_url=raw.image,
            cost=cost,
            selling_price=price,
            compare_price=round(price * COMPARE_PRICE_FACTOR) if price else None,
            margin_percent=compute_margin(cost, price),
            status="discovered",
            discovered_at=utcnow(),
            research_score=score,
        )

    async def _stage_sourcing(self, session: AsyncSession, run: PipelineRun, ctx: _RunContext) -> str:
        result = await self.sourcing.auto_source(ctx.max_items)
        return f"{result.sourced} items sourced"

    async def _stage_enrichment(self, session: AsyncSession, run: PipelineRun, ctx: _RunContext) -> str:
        result = await self.enrichment.bulk_enrich(ctx.max_items)
        return f"{result.enriched} items enriched"

    async def _stage_validation(self, session: AsyncSession, run: PipelineRun, ctx: _RunContext) -> str:
        q = (
            select(CatalogItem)
            .where(
                CatalogItem.approved.is_(False),
                CatalogItem.rejection_reason == "",
                CatalogItem.is_active.is_(True),
            )
            .order_by(CatalogItem.id.asc())
            .limit(ctx.max_items)
        )
        candidates = list((await session.execute(q)).scalars())

        validated = 0
        rejected = 0
        for item, decision in zip(candidates, evaluate_batch(candidates)):
            if item.cost and item.cost > 0:
                item.margin_percent = decision.margin_percent
            if decision.approved:
                item.approved = True
                item.approved_at = utcnow()
                item.run_id = run.run_id
                item.status = item.status or "analyzed"
                validated += 1
                catalog_decisions_total.labels(decision="approved").inc()
            else:
                item.rejection_reason = decision.reason
                rejected += 1
                catalog_decisions_total.labels(decision="rejected").inc()

        run.set_result("validated", validated)
        run.set_result("rejected", rejected)
        return f"{validated} approved, {rejected} rejected"

    async def _stage_listing(self, session: AsyncSession, run: PipelineRun, ctx: _RunContext) -> str:
        q = (
            select(CatalogItem)
            .where(
                CatalogItem.approved.is_(True),
                CatalogItem.listing_id.is_(None),
                CatalogItem.is_active.is_(True),
            )
            .order_by(CatalogItem.id.asc())
            .limit(ctx.max_items)
        )
        items = list((await session.execute(q)).scalars())

        for item in items:
            try:
                result = await self.listing.create_listing(item, run.run_id)
            except Exception as exc:
                run.record_error("listing", f"{item.title}: {exc}")
                pipeline_stage_errors_total.labels(stage="listing").inc()
                continue
            item.listing_id = result.listing_id
            item.status = "listed"
            item.listed_at = utcnow()
            # Commit per item so an external listing is never forgotten locally
            await session.commit()
            ctx.newly_listed.append(ProductSnapshot.from_item(item))

        run.set_result("listed", len(ctx.newly_listed))
        return f"{len(ctx.newly_listed)} items listed"

    async def _stage_sync(self, session: AsyncSession, run: PipelineRun, ctx: _RunContext) -> str:
        synced = await self.bookkeeping.sync_catalog(ctx.max_items)
        return f"{synced} records synced"

    # ── Completion helpers ───────────────────────────────────────────────

    async def auto_list_sweep(self) -> int:
        """Force every active, priced item without a definitive status to `listed`. Idempotent."""
        async with self.session_factory() as session:
            q = select(CatalogItem).where(
                CatalogItem.is_active.is_(True),
                CatalogItem.selling_price > 0,
                or_(CatalogItem.status.is_(None), CatalogItem.status.in_(UNLISTED_STATUSES)),
            )
            items = list((await session.execute(q)).scalars())
            for item in items:
                item.status = "listed"
                if not item.compare_price and item.selling_price:
                    item.compare_price = round(item.selling_price * COMPARE_PRICE_FACTOR)
            await session.commit()
        if items:
            logger.info("Auto-listed %d items for storefront", len(items))
        return len(items)

    async def _announce(self, run: PipelineRun, ctx: _RunContext) -> None:
        if self.marketing is not None:
            for product in ctx.newly_listed:
                try:
                    await self.marketing.on_product_live(product)
                except Exception as exc:
                    logger.warning("Marketing hook failed for %s: %s", product.title, exc)

        results = run.results or {}
        try:
            await self.alerts.notify("pipeline_complete", {
                "run_id": run.run_id,
                "duration": f"{round((run.duration_ms or 0) / 1000)}s",
                "discovered": results.get("discovered", 0),
                "listed": results.get("listed", 0),
                "auto_listed": results.get("auto_listed", 0),
                "errors": len(results.get("errors", [])),
            })
        except Exception as exc:
            logger.warning("Pipeline notification failed: %s", exc)

    async def _mark_failed(self, session: AsyncSession, run_id: str, t_start: float, exc: Exception) -> None:
        duration_ms = int((time.monotonic() - t_start) * 1000)
        try:
            await session.rollback()
            run = await self._get_run(session, run_id)
            if not run.is_terminal:
                run.add_log("error", f"Pipeline failed: {exc}")
                run.finish("failed", duration_ms)
                await session.commit()
                pipeline_runs_total.labels(type=run.type, status="failed").inc()
        except Exception:
            logger.exception("Could not record failure of pipeline run %s", run_id)

    # ── Queries ──────────────────────────────────────────────────────────

    async def _find_active(self, session: AsyncSession) -> PipelineRun | None:
        result = await session.execute(
            select(PipelineRun)
            .where(PipelineRun.status.in_(ACTIVE_STATUSES))
            .order_by(PipelineRun.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _get_run(self, session: AsyncSession, run_id: str) -> PipelineRun:
        result = await session.execute(select(PipelineRun).where(PipelineRun.run_id == run_id))
        return result.scalar_one()

    async def get_status(self) -> dict:
        async with self.session_factory() as session:
            active = await self._find_active(session)
            result = await session.execute(
                select(PipelineRun)
                .where(PipelineRun.status == "completed")
                .order_by(PipelineRun.completed_at.desc(), PipelineRun.id.desc())
                .limit(1)
            )
            last = result.scalar_one_or_none()
        return {
            "is_running": active is not None,
            "active_run": active.summary() if active else None,
            "last_completed": last.summary() if last else None,
        }

    async def list_runs(self, limit: int = 10, offset: int = 0) -> list[PipelineRun]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PipelineRun).order_by(PipelineRun.id.desc()).offset(offset).limit(limit)
            )
            return list(result.scalars())

    async def get_run(self, run_id: str) -> PipelineRun | None:
        async with self.session_factory() as session:
            result = await session.execute(select(PipelineRun).where(PipelineRun.run_id == run_id))
            return result.scalar_one_or_none()
