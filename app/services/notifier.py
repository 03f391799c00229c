"""
Bridgewell Matching — Outbound notifications for downstream services.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from redis.exceptions import RedisError

from app.exceptions import TransientInfraError
from app.schemas.messages import MatchAcceptedNotification, NewMatchesNotification, QueueMessage

logger = structlog.get_logger("bridgewell.notifier")


class Notifier:
    """Publishes ``match_accepted`` and ``new_matches`` onto the
    notifications queue.  An unreachable queue raises
    ``TransientInfraError``."""

    def __init__(self, queue: Any) -> None:
        self.queue = queue

    async def _publish(self, message: QueueMessage) -> None:
        try:
            await self.queue.publish(message)
        except (RedisError, OSError) as exc:
            raise TransientInfraError(
                f"Notification queue {self.queue.name!r} unavailable: {exc}"
            ) from exc

    async def match_accepted(
        self,
        match_id: uuid.UUID,
        user_id: uuid.UUID,
        task_id: uuid.UUID,
        score: float,
    ) -> None:
        await self._publish(
            MatchAcceptedNotification(
                match_id=match_id,
                user_id=user_id,
                task_id=task_id,
                score=round(score, 4),
            )
        )
        logger.info("match_accepted_published", match_id=str(match_id), task_id=str(task_id))

    async def new_matches(self, task_id: uuid.UUID, matches: list[dict[str, Any]]) -> None:
        await self._publish(NewMatchesNotification(task_id=task_id, matches=matches))
        logger.info("new_matches_published", task_id=str(task_id), count=len(matches))
