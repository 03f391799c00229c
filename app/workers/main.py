"""
Bridgewell Matching — Worker process entry point.

    python -m app.workers.main

Starts ``WORKER_CONCURRENCY`` request consumers, the in-flight reclaimer
and the batch scheduler, and runs until SIGINT/SIGTERM.  Shutdown sets one
stop event; consumers finish their in-flight message and the schedulers
abandon their sleep.
"""

from __future__ import annotations

import asyncio
import signal

import structlog
from sqlalchemy import text

from app.config import get_settings
from app.database import engine
from app.services.notifier import Notifier
from app.services.queue import RedisQueue
from app.utils.logging import configure_logging
from app.utils.redis import close_redis, connect_redis
from app.workers.processor import MatchRequestConsumer
from app.workers.scheduler import BatchMatchJob, PeriodicScheduler

logger = structlog.get_logger("bridgewell.workers")


def build_reclaimer(request_queue: RedisQueue, idle_seconds: float) -> PeriodicScheduler:
    """Reclaim processing entries whose lease has been idle for
    ``idle_seconds``, checked every ``idle_seconds``."""

    async def reclaim(run_at) -> int:
        return await request_queue.recover_inflight(min_idle_seconds=idle_seconds)

    return PeriodicScheduler(reclaim, idle_seconds, name="inflight-reclaimer")


async def start_workers(redis, stop_event: asyncio.Event) -> list[asyncio.Task]:
    """Spawn consumers, the in-flight reclaimer and the batch scheduler on
    the running loop."""
    settings = get_settings()
    idle_seconds = settings.INFLIGHT_RECOVERY_IDLE_SECONDS

    request_queue = RedisQueue(redis, settings.REQUEST_QUEUE)
    results_queue = RedisQueue(redis, settings.RESULTS_QUEUE)
    notifier = Notifier(RedisQueue(redis, settings.NOTIFICATIONS_QUEUE))

    await request_queue.recover_inflight(min_idle_seconds=idle_seconds)

    tasks = [
        asyncio.create_task(
            MatchRequestConsumer(request_queue, results_queue, name=f"consumer-{i}").run(stop_event),
            name=f"consumer-{i}",
        )
        for i in range(settings.WORKER_CONCURRENCY)
    ]

    reclaimer = build_reclaimer(request_queue, idle_seconds)
    tasks.append(asyncio.create_task(reclaimer.run(stop_event), name="inflight-reclaimer"))

    scheduler = PeriodicScheduler(BatchMatchJob(notifier), settings.BATCH_INTERVAL_SECONDS)
    tasks.append(asyncio.create_task(scheduler.run(stop_event), name="scheduler"))

    logger.info(
        "workers_started",
        consumers=settings.WORKER_CONCURRENCY,
        batch_interval_seconds=settings.BATCH_INTERVAL_SECONDS,
    )
    return tasks


async def run() -> None:
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    logger.info("worker_startup_begin", environment=settings.ENVIRONMENT)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    redis = await connect_redis()

    try:
        tasks = await start_workers(redis, stop_event)
        await stop_event.wait()
        logger.info("worker_shutdown_begin")
        await asyncio.gather(*tasks, return_exceptions=True)
    finally:
        await close_redis()
        await engine.dispose()
        logger.info("worker_shutdown_complete")


if __name__ == "__main__":
    asyncio.run(run())
