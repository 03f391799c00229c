"""
Bridgewell Matching — Queue consumer for on-demand match requests.

Each consumer blocks on ``matching-requests`` (no fixed-interval polling),
runs the requested match in a fresh database session under a bounded
timeout, publishes the ranked list to ``matching-results`` and only then
acknowledges the request.

  malformed body            → dead-letter
  ack/requeue itself fails  → logged, left on the processing list
  failure / timeout         → requeue with attempts + 1
  attempts reach the limit  → dead-letter
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from app.config import get_settings
from app.database import async_session_factory
from app.schemas.messages import MatchRequestMessage, MatchResultsMessage
from app.services.matching_service import MatchingService, serialize_candidate, utc_now
from app.services.profile_reader import ProfileReader
from app.services.result_store import ResultStore

logger = structlog.get_logger("bridgewell.workers.processor")

RECEIVE_ERROR_BACKOFF_SECONDS = 1.0

ACKED = "acked"
REQUEUED = "requeued"
DEAD_LETTERED = "dead_lettered"


def build_matching_service(session: Any, clock: Callable[[], datetime] = utc_now) -> MatchingService:
    return MatchingService(ProfileReader(session), ResultStore(session), clock=clock)


class MatchRequestConsumer:
    def __init__(
        self,
        request_queue: Any,
        results_queue: Any,
        session_factory: Callable[[], Any] = async_session_factory,
        service_factory: Callable[[Any], Any] = build_matching_service,
        name: str = "consumer-0",
    ) -> None:
        settings = get_settings()
        self.request_queue = request_queue
        self.results_queue = results_queue
        self.session_factory = session_factory
        self.service_factory = service_factory
        self.name = name

        self.receive_timeout = settings.QUEUE_RECEIVE_TIMEOUT_SECONDS
        self.message_timeout = settings.MESSAGE_TIMEOUT_SECONDS
        self.max_attempts = settings.MAX_DELIVERY_ATTEMPTS
        self.match_limit = settings.DEFAULT_MATCH_LIMIT

    async def run(self, stop_event: asyncio.Event) -> None:
        """Consume until ``stop_event`` is set.  The in-flight message, if
        any, is finished before returning."""
        log = logger.bind(consumer=self.name, queue=self.request_queue.name)
        log.info("consumer_started")

        while not stop_event.is_set():
            try:
                message = await self.request_queue.receive(self.receive_timeout)
            except (RedisError, OSError):
                log.exception("queue_receive_failed")
                await asyncio.sleep(RECEIVE_ERROR_BACKOFF_SECONDS)
                continue

            if message is None:
                continue
            try:
                await self.handle(message)
            except (RedisError, OSError):
                # Left on the processing list; reclaimed once its lease goes idle.
                log.exception("match_request_settle_failed", raw=message.raw[:200])
                await asyncio.sleep(RECEIVE_ERROR_BACKOFF_SECONDS)

        log.info("consumer_stopped")

    async def handle(self, message: Any) -> str:
        try:
            request = MatchRequestMessage.model_validate(message.body or {})
        except ValidationError as exc:
            logger.warning(
                "match_request_malformed",
                consumer=self.name,
                errors=exc.error_count(),
                raw=message.raw[:200],
            )
            await self.request_queue.dead_letter(message, reason="malformed")
            return DEAD_LETTERED

        log = logger.bind(
            consumer=self.name,
            type=request.type,
            task_id=str(request.task_id) if request.task_id else None,
            user_id=str(request.user_id) if request.user_id else None,
            attempts=request.attempts,
        )

        try:
            result = await asyncio.wait_for(self.process(request), timeout=self.message_timeout)
            await self.results_queue.publish(result)
        except Exception:
            log.exception("match_request_failed")
            return await self._retry(message, request)

        await self.request_queue.ack(message)
        log.info("match_request_processed", matches=len(result.matches))
        return ACKED

    async def process(self, request: MatchRequestMessage) -> MatchResultsMessage:
        async with self.session_factory() as session:
            service = self.service_factory(session)
            if request.type == "task_matches":
                ranked = await service.find_matches_for_task(request.task_id, limit=self.match_limit)
                result = MatchResultsMessage(
                    type=request.type,
                    task_id=request.task_id,
                    matches=[serialize_candidate(c, "user_id") for c in ranked],
                )
            else:
                ranked = await service.find_tasks_for_user(request.user_id, limit=self.match_limit)
                result = MatchResultsMessage(
                    type=request.type,
                    user_id=request.user_id,
                    matches=[serialize_candidate(c, "task_id") for c in ranked],
                )
            await session.commit()
        return result

    async def _retry(self, message: Any, request: MatchRequestMessage) -> str:
        attempts = request.attempts + 1
        if attempts >= self.max_attempts:
            await self.request_queue.dead_letter(message, reason=f"failed after {attempts} attempts")
            return DEAD_LETTERED

        body = dict(message.body)
        body["attempts"] = attempts
        await self.request_queue.requeue(message, body)
        return REQUEUED
