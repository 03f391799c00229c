"""
Bridgewell Matching — Personalised recommendations for the calling user.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_current_user_id, get_matching_service
from app.config import get_settings
from app.schemas.match import RecommendationsResponse
from app.services.matching_service import MatchingService, serialize_candidate

logger = structlog.get_logger("bridgewell.api.recommendations")

router = APIRouter()

settings = get_settings()


@router.get("", response_model=RecommendationsResponse, summary="Recommendations for the caller")
async def get_recommendations(
    type: Literal["tasks", "users"] = Query("tasks"),
    limit: int = Query(settings.DEFAULT_MATCH_LIMIT, ge=1, le=settings.MAX_MATCH_LIMIT),
    user_id: uuid.UUID = Depends(get_current_user_id),
    service: MatchingService = Depends(get_matching_service),
) -> RecommendationsResponse:
    """``type=tasks`` runs the user→tasks pipeline; ``type=users`` lists
    opposite-role users ordered by engagement."""
    if type == "tasks":
        ranked = await service.find_tasks_for_user(user_id, limit=limit)
        recommendations = [serialize_candidate(c, "task_id") for c in ranked]
    else:
        recommendations = await service.recommend_users(user_id, limit=limit)

    logger.info(
        "recommendations_served",
        user_id=str(user_id),
        type=type,
        count=len(recommendations),
    )
    return RecommendationsResponse(
        user_id=user_id,
        type=type,
        recommendations=recommendations,
        count=len(recommendations),
        generated_at=datetime.now(timezone.utc),
    )
