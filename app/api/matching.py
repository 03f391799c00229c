"""
Bridgewell Matching — Matching API

Ranked candidates for a task, ranked tasks for a user, and the
accept/reject/view decision endpoint.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_action_service, get_matching_service
from app.config import get_settings
from app.schemas.match import (
    MatchActionRequest,
    MatchActionResponse,
    TaskMatchesResponse,
    UserMatchesResponse,
)
from app.services.action_service import ActionService
from app.services.matching_service import MatchingService, serialize_candidate

logger = structlog.get_logger("bridgewell.api.matching")

router = APIRouter()

settings = get_settings()


# ──────────────────────────────────────────────────────────────────────────────
# GET /task/{task_id} — Candidates for a task
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/task/{task_id}",
    response_model=TaskMatchesResponse,
    summary="Ranked candidate users for a task",
)
async def get_task_matches(
    task_id: uuid.UUID,
    limit: int = Query(settings.DEFAULT_MATCH_LIMIT, ge=1, le=settings.MAX_MATCH_LIMIT),
    service: MatchingService = Depends(get_matching_service),
) -> TaskMatchesResponse:
    """Opposite-role users scored against a published task.

    Unknown or unpublished tasks return an empty list.  Every returned
    pair is upserted into ``match_results``; an existing decision status
    is left untouched.
    """
    ranked = await service.find_matches_for_task(task_id, limit=limit)
    matches = [serialize_candidate(c, "user_id") for c in ranked]
    logger.info("task_matches_served", task_id=str(task_id), count=len(matches))
    return TaskMatchesResponse(
        task_id=task_id,
        matches=matches,
        count=len(matches),
        generated_at=datetime.now(timezone.utc),
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /user/{user_id} — Tasks for a user
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/user/{user_id}",
    response_model=UserMatchesResponse,
    summary="Ranked tasks for a user",
)
async def get_user_matches(
    user_id: uuid.UUID,
    limit: int = Query(settings.DEFAULT_MATCH_LIMIT, ge=1, le=settings.MAX_MATCH_LIMIT),
    service: MatchingService = Depends(get_matching_service),
) -> UserMatchesResponse:
    ranked = await service.find_tasks_for_user(user_id, limit=limit)
    matches = [serialize_candidate(c, "task_id") for c in ranked]
    logger.info("user_matches_served", user_id=str(user_id), count=len(matches))
    return UserMatchesResponse(
        user_id=user_id,
        matches=matches,
        count=len(matches),
        generated_at=datetime.now(timezone.utc),
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /{match_id}/action — Record a decision
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{match_id}/action",
    response_model=MatchActionResponse,
    summary="Accept, reject or view a match",
)
async def record_match_action(
    match_id: uuid.UUID,
    body: MatchActionRequest,
    service: ActionService = Depends(get_action_service),
) -> MatchActionResponse:
    """``InvalidInputError`` (400) and ``NotFoundError`` (404) are mapped
    by the application's exception handlers."""
    outcome = await service.record_action(match_id, body.action)
    return MatchActionResponse(
        match_id=outcome.match_id,
        action=outcome.action,
        status=outcome.status,
        notified=outcome.notified,
    )
