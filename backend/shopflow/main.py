import logging
import time
import traceback
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopflow.config import settings
from shopflow.database import async_session, engine, init_db
from shopflow.errors import ConflictError, ContentNotFoundError, ContentStateError
from shopflow.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_json)

from shopflow.api.marketing import router as marketing_router  # noqa: E402
from shopflow.api.metrics import router as metrics_router  # noqa: E402
from shopflow.api.pipeline import router as pipeline_router  # noqa: E402
from shopflow.api.webhooks import router as webhooks_router  # noqa: E402
from shopflow.providers.alerts import WebhookAlertNotifier  # noqa: E402
from shopflow.providers.bookkeeping import AirtableCatalogSync  # noqa: E402
from shopflow.providers.cj import CJClient, CJSupplierSourcer, CJTrendScanner  # noqa: E402
from shopflow.providers.content import AICopywriter, MarketingContentGenerator  # noqa: E402
from shopflow.providers.email import KlaviyoSync  # noqa: E402
from shopflow.providers.enrichment import AIEnricher  # noqa: E402
from shopflow.providers.llm import default_text_generator  # noqa: E402
from shopflow.providers.social import default_channels  # noqa: E402
from shopflow.providers.storefront import WooCommerceListing  # noqa: E402
from shopflow.services.marketing_orchestrator import MarketingOrchestrator  # noqa: E402
from shopflow.services.pipeline_orchestrator import PipelineOrchestrator  # noqa: E402
from shopflow.services.scheduler import build_scheduler  # noqa: E402
from shopflow.services.social_dispatcher import SocialDispatcher  # noqa: E402

logger = logging.getLogger("shopflow")


# ── Composition root ─────────────────────────────────────────────────────────

def build_services(
    session_factory: async_sessionmaker[AsyncSession] = async_session,
) -> tuple[PipelineOrchestrator, MarketingOrchestrator]:
    """Wire the real provider adapters into one pipeline and one marketing orchestrator."""
    text_gen = default_text_generator()
    alerts = WebhookAlertNotifier()
    cj = CJClient()

    marketing = MarketingOrchestrator(
        session_factory,
        dispatcher=SocialDispatcher(default_channels(), alerts),
        content_generator=MarketingContentGenerator(text_gen),
        copywriter=AICopywriter(text_gen),
        email=KlaviyoSync(),
        alerts=alerts,
    )
    pipeline = PipelineOrchestrator(
        session_factory,
        discovery=CJTrendScanner(cj),
        sourcing=CJSupplierSourcer(session_factory, cj),
        enrichment=AIEnricher(session_factory, text_gen),
        listing=WooCommerceListing(),
        bookkeeping=AirtableCatalogSync(session_factory),
        alerts=alerts,
        marketing=marketing,
    )
    return pipeline, marketing


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: verify DB connection (create tables directly on SQLite)
    if settings.database_url.startswith("sqlite"):
        await init_db()
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))

    pipeline, marketing = build_services()
    app.state.pipeline = pipeline
    app.state.marketing = marketing
    marketing.start()

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler(pipeline, marketing)
        scheduler.start()

    yield

    # Shutdown
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    await marketing.stop()
    await pipeline.drain()
    await engine.dispose()


app = FastAPI(
    title="Shopflow",
    description="Catalog discovery pipeline and marketing automation",
    version="0.1.0",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────────────
origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-Request-ID"],
)

# ── Rate limiting middleware (trigger endpoints only) ────────────────────────
from shopflow.middleware.rate_limit import RateLimitMiddleware  # noqa: E402

app.add_middleware(RateLimitMiddleware)

# ── Request context middleware (request ID + timing) ─────────────────────────
from shopflow.middleware.request_context import RequestContextMiddleware  # noqa: E402

app.add_middleware(RequestContextMiddleware)

# ── Prometheus metrics middleware ────────────────────────────────────────────
from shopflow.middleware.metrics import PrometheusMiddleware  # noqa: E402

app.add_middleware(PrometheusMiddleware)


# ── Exception handlers ───────────────────────────────────────────────────────

@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "run_id": exc.active_run_id})


@app.exception_handler(ContentStateError)
async def content_state_handler(request: Request, exc: ContentStateError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "status": exc.status})


@app.exception_handler(ContentNotFoundError)
async def content_not_found_handler(request: Request, exc: ContentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": f"{type(exc).__name__}: {exc}", "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(pipeline_router)
app.include_router(webhooks_router)
app.include_router(marketing_router)
app.include_router(metrics_router)


# ── Health check ─────────────────────────────────────────────────────────────

_health_cache: dict = {}
_health_cache_ts: float = 0.0
HEALTH_CACHE_TTL = 10.0  # seconds


@app.get("/api/health")
async def health_check(request: Request):
    global _health_cache, _health_cache_ts

    now = time.time()
    if _health_cache and (now - _health_cache_ts) < HEALTH_CACHE_TTL:
        return _health_cache

    components: dict = {}

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        components["database"] = {"status": "connected"}
    except Exception as exc:
        components["database"] = {"status": "disconnected", "error": str(exc)}

    try:
        r = aioredis.from_url(settings.redis_url, decode_responses=True)
        await r.ping()
        await r.aclose()
        components["redis"] = {"status": "connected"}
    except Exception as exc:
        components["redis"] = {"status": "disconnected", "error": str(exc)}

    marketing = getattr(request.app.state, "marketing", None)
    components["social_worker"] = {
        "status": "running" if marketing is not None and marketing.worker_running else "stopped",
    }

    db_ok = components["database"]["status"] == "connected"
    redis_ok = components["redis"]["status"] == "connected"

    if db_ok and redis_ok:
        overall = "healthy"
    elif not db_ok:
        overall = "unhealthy"
    else:
        overall = "degraded"

    result = {
        "status": overall,
        "environment": settings.environment,
        "components": components,
    }

    _health_cache = result
    _health_cache_ts = now
    return result
