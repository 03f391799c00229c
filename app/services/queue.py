"""
Bridgewell Matching — Reliable work queue on Redis lists.

  publish      LPUSH <queue>            (priority "high": RPUSH, served next)
  receive      BLMOVE <queue> RIGHT → <queue>:processing LEFT  (blocking),
               then HSET <queue>:leases <raw> <received-at>
  ack          LREM processing + HDEL lease                     (one MULTI)
  requeue      LREM processing + HDEL lease + LPUSH new body    (one MULTI)
  dead_letter  LREM processing + HDEL lease + LPUSH <queue>:dead (one MULTI)

A message stays on the processing list from the moment it is received
until it is settled, so a worker that dies mid-message leaves it there.
``recover_inflight`` pushes back only entries whose lease has been idle
for ``min_idle_seconds``; live messages held by other worker processes
sharing the queue are left alone.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
import structlog

from app.schemas.messages import QueueMessage

logger = structlog.get_logger("bridgewell.queue")

HIGH_PRIORITY = "high"

# KEYS: processing, queue, leases   ARGV: raw message
# Moves the entry back only if it is still on the processing list, so two
# processes reclaiming at once cannot both re-queue it.
RECLAIM_SCRIPT = """
if redis.call('LREM', KEYS[1], 1, ARGV[1]) == 1 then
    redis.call('RPUSH', KEYS[2], ARGV[1])
    redis.call('HDEL', KEYS[3], ARGV[1])
    return 1
end
return 0
"""


@dataclass(frozen=True)
class ReceivedMessage:
    """A message moved onto the processing list but not yet acknowledged."""

    raw: str
    body: dict[str, Any] | None

    @property
    def attempts(self) -> int:
        if not self.body:
            return 0
        try:
            return int(self.body.get("attempts", 0))
        except (TypeError, ValueError):
            return 0


class RedisQueue:
    """One named queue with its ``:processing``, ``:leases`` and ``:dead``
    companions."""

    def __init__(
        self,
        redis: aioredis.Redis,
        name: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis
        self.name = name
        self.clock = clock
        self.processing = f"{name}:processing"
        self.leases = f"{name}:leases"
        self.dead = f"{name}:dead"

    async def publish(self, message: QueueMessage | dict[str, Any], priority: str = "normal") -> None:
        payload = message.to_json() if isinstance(message, QueueMessage) else json.dumps(message, default=str)
        if priority == HIGH_PRIORITY:
            await self.redis.rpush(self.name, payload)
        else:
            await self.redis.lpush(self.name, payload)
        logger.debug("message_published", queue=self.name, priority=priority)

    async def receive(self, timeout: float) -> ReceivedMessage | None:
        """Block up to ``timeout`` seconds for the next message."""
        raw = await self.redis.blmove(self.name, self.processing, timeout, src="RIGHT", dest="LEFT")
        if raw is None:
            return None
        await self.redis.hset(self.leases, raw, self.clock())
        try:
            body = json.loads(raw)
        except (TypeError, ValueError):
            body = None
        if not isinstance(body, dict):
            body = None
        return ReceivedMessage(raw=raw, body=body)

    async def ack(self, message: ReceivedMessage) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing, 1, message.raw)
            pipe.hdel(self.leases, message.raw)
            await pipe.execute()

    async def requeue(self, message: ReceivedMessage, body: dict[str, Any]) -> None:
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing, 1, message.raw)
            pipe.hdel(self.leases, message.raw)
            pipe.lpush(self.name, json.dumps(body, default=str))
            await pipe.execute()
        logger.info("message_requeued", queue=self.name, attempts=body.get("attempts"))

    async def dead_letter(self, message: ReceivedMessage, reason: str) -> None:
        entry = json.dumps(
            {
                "message": message.raw,
                "reason": reason,
                "failed_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing, 1, message.raw)
            pipe.hdel(self.leases, message.raw)
            pipe.lpush(self.dead, entry)
            await pipe.execute()
        logger.warning("message_dead_lettered", queue=self.name, reason=reason)

    async def recover_inflight(self, min_idle_seconds: float = 0.0) -> int:
        """Move processing entries idle for at least ``min_idle_seconds`` back
        to the queue.  An entry without a lease counts as idle."""
        now = self.clock()
        recovered = 0
        for raw in await self.redis.lrange(self.processing, 0, -1):
            leased_at = await self.redis.hget(self.leases, raw)
            if leased_at is not None and now - float(leased_at) < min_idle_seconds:
                continue
            recovered += await self.redis.eval(
                RECLAIM_SCRIPT, 3, self.processing, self.name, self.leases, raw
            )
        if recovered:
            logger.warning("inflight_messages_recovered", queue=self.name, count=recovered)
        return recovered

    async def depth(self) -> dict[str, int]:
        return {
            "pending": await self.redis.llen(self.name),
            "processing": await self.redis.llen(self.processing),
            "dead": await self.redis.llen(self.dead),
        }
