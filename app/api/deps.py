"""
Bridgewell Matching — FastAPI dependency providers.

Services are built per request around the request's ``AsyncSession``;
nothing is cached between requests.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import get_db
from app.services.action_service import ActionService
from app.services.matching_service import MatchingService
from app.services.notifier import Notifier
from app.services.profile_reader import ProfileReader
from app.services.queue import RedisQueue
from app.services.result_store import ResultStore
from app.utils.redis import get_redis


def get_result_store(db: AsyncSession = Depends(get_db)) -> ResultStore:
    return ResultStore(db)


def get_matching_service(db: AsyncSession = Depends(get_db)) -> MatchingService:
    return MatchingService(ProfileReader(db), ResultStore(db))


def get_notifier() -> Optional[Notifier]:
    redis = get_redis()
    if redis is None:
        return None
    return Notifier(RedisQueue(redis, get_settings().NOTIFICATIONS_QUEUE))


def get_action_service(
    store: ResultStore = Depends(get_result_store),
    notifier: Optional[Notifier] = Depends(get_notifier),
) -> ActionService:
    return ActionService(store, notifier)


def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> uuid.UUID:
    """Caller identity forwarded by the gateway after authentication."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity.",
        ) from None
