"""
Bridgewell Matching — Periodic batch re-scoring.

``PeriodicScheduler`` fires a job at interval boundaries (aligned to the
epoch, so the hourly default behaves like cron ``0 * * * *``) until its
stop event is set.  Clock and sleep are injected.

``BatchMatchJob`` scans tasks published within the lookback window,
re-scores each in its own session, publishes ``new_matches`` for tasks
with eligible candidates, and finally expires stale pending matches.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from app.config import get_settings
from app.database import async_session_factory
from app.services.matching_service import MatchingService, serialize_candidate, utc_now
from app.services.profile_reader import ProfileReader
from app.services.result_store import ResultStore

logger = structlog.get_logger("bridgewell.workers.scheduler")


class PeriodicScheduler:
    def __init__(
        self,
        job: Callable[[datetime], Awaitable[Any]],
        interval_seconds: float,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "batch-matching",
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.job = job
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.sleep = sleep
        self.name = name

    def next_run_at(self, now: datetime) -> datetime:
        """First interval boundary strictly after ``now``."""
        ts = now.timestamp()
        boundary = (math.floor(ts / self.interval_seconds) + 1) * self.interval_seconds
        return datetime.fromtimestamp(boundary, tz=timezone.utc)

    async def _wait(self, delay: float, stop_event: asyncio.Event) -> bool:
        """Sleep for ``delay``; return True if stopped in the meantime."""
        sleeper = asyncio.ensure_future(self.sleep(max(delay, 0.0)))
        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (sleeper, stopper):
                if not fut.done():
                    fut.cancel()
        return stop_event.is_set()

    async def run(self, stop_event: asyncio.Event) -> None:
        log = logger.bind(scheduler=self.name, interval_seconds=self.interval_seconds)
        log.info("scheduler_started")

        while not stop_event.is_set():
            now = self.clock()
            run_at = self.next_run_at(now)
            if await self._wait((run_at - now).total_seconds(), stop_event):
                break

            log.info("scheduled_job_start", run_at=run_at.isoformat())
            try:
                result = await self.job(run_at)
            except Exception:
                log.exception("scheduled_job_failed", run_at=run_at.isoformat())
                continue
            log.info("scheduled_job_complete", run_at=run_at.isoformat(), result=result)

        log.info("scheduler_stopped")


class BatchMatchJob:
    def __init__(
        self,
        notifier: Any,
        session_factory: Callable[[], Any] = async_session_factory,
        reader_factory: Callable[[Any], Any] = ProfileReader,
        store_factory: Callable[[Any], Any] = ResultStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        settings = get_settings()
        self.notifier = notifier
        self.session_factory = session_factory
        self.reader_factory = reader_factory
        self.store_factory = store_factory
        self.clock = clock
        self.lookback = timedelta(hours=settings.BATCH_LOOKBACK_HOURS)
        self.top_n = settings.BATCH_TOP_N

    async def __call__(self, now: datetime) -> dict[str, int]:
        return await self.run_once(now)

    async def run_once(self, now: datetime | None = None) -> dict[str, int]:
        now = now or self.clock()
        since = now - self.lookback
        summary = {"scanned": 0, "notified": 0, "failed": 0, "expired": 0}

        async with self.session_factory() as session:
            task_ids = await self.reader_factory(session).list_recent_published_task_ids(since)
        logger.info("batch_scan_start", since=since.isoformat(), tasks=len(task_ids))

        for task_id in task_ids:
            summary["scanned"] += 1
            try:
                async with self.session_factory() as session:
                    service = MatchingService(
                        self.reader_factory(session),
                        self.store_factory(session),
                        clock=lambda: now,
                    )
                    ranked = await service.find_matches_for_task(task_id, limit=self.top_n)
                    await session.commit()

                if ranked:
                    await self.notifier.new_matches(
                        task_id, [serialize_candidate(c, "user_id") for c in ranked]
                    )
                    summary["notified"] += 1
            except Exception:
                logger.exception("batch_task_failed", task_id=str(task_id))
                summary["failed"] += 1

        try:
            async with self.session_factory() as session:
                summary["expired"] = await self.store_factory(session).expire_stale_matches()
                await session.commit()
        except Exception:
            logger.exception("batch_expiry_failed")

        logger.info("batch_scan_complete", **summary)
        return summary
