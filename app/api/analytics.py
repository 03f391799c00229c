"""
Bridgewell Matching — Action analytics over a trailing period.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, Query

from app.api.deps import get_result_store
from app.schemas.match import AcceptedMatch, ActionStatistic, AnalyticsResponse
from app.services.result_store import ResultStore

logger = structlog.get_logger("bridgewell.api.analytics")

router = APIRouter()

PERIODS: dict[str, timedelta] = {
    "1d": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

TOP_MATCHES_LIMIT = 10


@router.get("", response_model=AnalyticsResponse, summary="Action counts and top accepted matches")
async def get_analytics(
    period: Literal["1d", "7d", "30d"] = Query("7d"),
    store: ResultStore = Depends(get_result_store),
) -> AnalyticsResponse:
    since = datetime.now(timezone.utc) - PERIODS[period]
    statistics = await store.action_statistics(since)
    top_matches = await store.top_accepted_matches(since, limit=TOP_MATCHES_LIMIT)
    logger.info("analytics_served", period=period, actions=len(statistics))
    return AnalyticsResponse(
        period=period,
        statistics=[ActionStatistic(**row) for row in statistics],
        top_matches=[AcceptedMatch(**row) for row in top_matches],
    )
