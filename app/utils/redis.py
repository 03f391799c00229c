"""
Bridgewell Matching — Shared Redis client lifecycle.

The API process and the worker process each open one client at startup
and close it on shutdown.  Socket timeouts are bounded so a dead Redis
surfaces as ``redis.exceptions.TimeoutError`` instead of a hang.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog

from app.config import get_settings

logger = structlog.get_logger("bridgewell.redis")

_redis_client: aioredis.Redis | None = None


def create_redis() -> aioredis.Redis:
    settings = get_settings()
    return aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
    )


async def connect_redis() -> aioredis.Redis:
    global _redis_client
    _redis_client = create_redis()
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis_connected", url=get_settings().REDIS_URL)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("redis_closed")


def get_redis() -> aioredis.Redis | None:
    """Return the shared Redis client (None before startup)."""
    return _redis_client
