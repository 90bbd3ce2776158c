"""
Scheduler worker entrypoint — runs the cron jobs and the social post queue
without the HTTP API.

Run with: python worker.py
Set SCHEDULER_ENABLED=false on the API processes when this worker is deployed,
so the jobs fire once.
"""

import asyncio
import logging
import signal

from shopflow.config import settings
from shopflow.middleware.logging_config import configure_logging

configure_logging(settings.log_level, settings.log_json)
logger = logging.getLogger("worker")


async def main():
    from shopflow.database import engine, init_db
    from shopflow.main import build_services
    from shopflow.services.scheduler import build_scheduler

    if settings.database_url.startswith("sqlite"):
        await init_db()

    pipeline, marketing = build_services()
    marketing.start()
    scheduler = build_scheduler(pipeline, marketing)
    scheduler.start()
    logger.info("Worker started with %d scheduled jobs", len(scheduler.get_jobs()))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await stop.wait()

    logger.info("Worker shutting down")
    scheduler.shutdown(wait=False)
    await marketing.stop()
    await pipeline.drain()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
