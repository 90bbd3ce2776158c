"""Shared test fixtures for backend tests."""

import os

# Settings are read at import time; point them at throwaway services first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from typing import AsyncGenerator  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from shopflow.database import Base  # noqa: E402
from shopflow.services.marketing_orchestrator import MarketingOrchestrator  # noqa: E402
from shopflow.services.pipeline_orchestrator import PipelineOrchestrator  # noqa: E402
from shopflow.services.social_dispatcher import SocialDispatcher  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeChannel, FakeContentGenerator, FakeCopywriter, FakeEmail, RecordingAlerts, make_pipeline,
)


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A fresh file-backed SQLite database per test (separate connections, real locking)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'shopflow.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def alerts() -> RecordingAlerts:
    return RecordingAlerts()


@pytest_asyncio.fixture
async def channels() -> list[FakeChannel]:
    return [FakeChannel("instagram"), FakeChannel("facebook"), FakeChannel("pinterest")]


@pytest_asyncio.fixture
async def dispatcher(channels, alerts) -> SocialDispatcher:
    return SocialDispatcher(channels, alerts, cooldown_seconds=7200)


@pytest_asyncio.fixture
async def marketing(session_factory, dispatcher, alerts) -> AsyncGenerator[MarketingOrchestrator, None]:
    orchestrator = MarketingOrchestrator(
        session_factory,
        dispatcher=dispatcher,
        content_generator=FakeContentGenerator(),
        copywriter=FakeCopywriter(),
        email=FakeEmail(),
        alerts=alerts,
        post_delay_seconds=0,
        generation_delay_seconds=0,
    )
    yield orchestrator
    await orchestrator.stop()


@pytest_asyncio.fixture
async def pipeline(session_factory, alerts) -> AsyncGenerator[PipelineOrchestrator, None]:
    orchestrator = make_pipeline(session_factory, alerts)
    yield orchestrator
    await orchestrator.drain()


@pytest_asyncio.fixture
async def api_client(pipeline, marketing) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with test orchestrators on app.state (no lifespan)."""
    from shopflow.main import app

    app.state.pipeline = pipeline
    app.state.marketing = marketing
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
