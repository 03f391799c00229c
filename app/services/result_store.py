"""
Bridgewell Matching — Idempotent match-result storage and the analytics log.

Upserts are keyed by the ``uq_match_results_task_user`` constraint on
(task_id, user_id).  Re-scoring refreshes ``total_score``, ``breakdown``
and ``updated_at`` only: the decision ``status`` is never part of the
update set, so a human accept/reject survives any number of re-runs.
Concurrent writers rely on PostgreSQL's ``ON CONFLICT`` atomicity; the
engine takes no locks of its own.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.match import MatchAnalytics, MatchingPreferences, MatchResult
from app.models.task import Task
from app.models.user import User
from app.services.profiles import MatchAction, MatchStatus, TaskStatus

logger = structlog.get_logger("bridgewell.result_store")

MATCH_PAIR_CONSTRAINT = "uq_match_results_task_user"


def build_match_upsert(
    task_id: uuid.UUID,
    user_id: uuid.UUID,
    total_score: float,
    breakdown: dict[str, float],
):
    """INSERT … ON CONFLICT (task_id, user_id) DO UPDATE, returning the row id."""
    stmt = pg_insert(MatchResult).values(
        id=uuid.uuid4(),
        task_id=task_id,
        user_id=user_id,
        total_score=total_score,
        breakdown=breakdown,
        status=MatchStatus.PENDING.value,
    )
    return stmt.on_conflict_do_update(
        constraint=MATCH_PAIR_CONSTRAINT,
        set_={
            "total_score": stmt.excluded.total_score,
            "breakdown": stmt.excluded.breakdown,
            "updated_at": func.now(),
        },
    ).returning(MatchResult.id)


class ResultStore:
    """Writes match results, decisions, preferences and analytics rows."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    def savepoint(self):
        """Nested transaction so one failed write does not poison the rest."""
        return self.db.begin_nested()

    async def commit(self) -> None:
        await self.db.commit()

    # ── Match results ────────────────────────────────────────────────────

    async def upsert_match(
        self,
        task_id: uuid.UUID,
        user_id: uuid.UUID,
        total_score: float,
        breakdown: dict[str, float],
    ) -> uuid.UUID:
        stmt = build_match_upsert(task_id, user_id, total_score, breakdown)
        match_id = (await self.db.execute(stmt)).scalar_one()
        logger.debug(
            "match_upserted",
            match_id=str(match_id),
            task_id=str(task_id),
            user_id=str(user_id),
            total_score=round(total_score, 4),
        )
        return match_id

    async def get_match(self, match_id: uuid.UUID) -> MatchResult | None:
        stmt = select(MatchResult).where(MatchResult.id == match_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def set_status(self, match_id: uuid.UUID, status: MatchStatus) -> None:
        await self.db.execute(
            update(MatchResult)
            .where(MatchResult.id == match_id)
            .values(status=status.value, updated_at=func.now())
        )
        logger.info("match_status_set", match_id=str(match_id), status=status.value)

    async def expire_stale_matches(self) -> int:
        """Mark pending matches whose task is gone or no longer published."""
        still_published = (
            select(Task.id)
            .where(
                Task.id == MatchResult.task_id,
                Task.status == TaskStatus.PUBLISHED.value,
            )
            .exists()
        )
        result = await self.db.execute(
            update(MatchResult)
            .where(MatchResult.status == MatchStatus.PENDING.value, ~still_published)
            .values(status=MatchStatus.EXPIRED.value, updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        expired = result.rowcount or 0
        logger.info("stale_matches_expired", count=expired)
        return expired

    # ── Analytics (append-only) ──────────────────────────────────────────

    async def append_analytics(
        self,
        match: MatchResult,
        action: MatchAction,
        match_type: str = "task_match",
    ) -> MatchAnalytics:
        entry = MatchAnalytics(
            match_type=match_type,
            match_id=match.id,
            user_id=match.user_id,
            task_id=match.task_id,
            score=match.total_score,
            action=action.value,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def action_statistics(self, since: datetime) -> list[dict[str, Any]]:
        stmt = (
            select(
                MatchAnalytics.action,
                func.count(MatchAnalytics.id),
                func.avg(MatchAnalytics.score),
            )
            .where(MatchAnalytics.created_at >= since)
            .group_by(MatchAnalytics.action)
            .order_by(MatchAnalytics.action)
        )
        rows = (await self.db.execute(stmt)).all()
        return [
            {
                "action": action,
                "count": int(count),
                "avg_score": round(float(avg), 4) if avg is not None else None,
            }
            for action, count, avg in rows
        ]

    async def top_accepted_matches(self, since: datetime, limit: int = 10) -> list[dict[str, Any]]:
        """Highest-scoring matches accepted within the window.

        The window applies to the ``accept`` row in the analytics log, not to
        ``match_results.updated_at``, which every re-score refreshes.
        """
        accepted = (
            select(
                MatchAnalytics.match_id.label("match_id"),
                func.max(MatchAnalytics.created_at).label("accepted_at"),
            )
            .where(
                MatchAnalytics.action == MatchAction.ACCEPT.value,
                MatchAnalytics.created_at >= since,
            )
            .group_by(MatchAnalytics.match_id)
            .subquery("accepted")
        )
        stmt = (
            select(MatchResult, Task.title, User.first_name, User.last_name)
            .join(accepted, accepted.c.match_id == MatchResult.id)
            .join(Task, Task.id == MatchResult.task_id)
            .join(User, User.id == MatchResult.user_id)
            .where(MatchResult.status == MatchStatus.ACCEPTED.value)
            .order_by(MatchResult.total_score.desc(), MatchResult.id)
            .limit(limit)
        )
        rows = (await self.db.execute(stmt)).all()
        return [
            {
                "match_id": match.id,
                "task_id": match.task_id,
                "user_id": match.user_id,
                "score": match.total_score,
                "task_title": title,
                "first_name": first_name,
                "last_name": last_name,
            }
            for match, title, first_name, last_name in rows
        ]

    # ── Preferences ──────────────────────────────────────────────────────

    async def upsert_preferences(
        self,
        user_id: uuid.UUID,
        preferred_categories: list[str] | None,
        preferred_skills: list[str] | None,
        location_preference: dict | None,
        availability_preference: dict | None,
    ) -> MatchingPreferences:
        values = {
            "preferred_categories": preferred_categories,
            "preferred_skills": preferred_skills,
            "location_preference": location_preference,
            "availability_preference": availability_preference,
        }
        stmt = pg_insert(MatchingPreferences).values(id=uuid.uuid4(), user_id=user_id, **values)
        stmt = (
            stmt.on_conflict_do_update(
                index_elements=[MatchingPreferences.user_id],
                set_={**values, "updated_at": func.now()},
            )
            .returning(MatchingPreferences)
            .execution_options(populate_existing=True)
        )
        preferences = (await self.db.execute(stmt)).scalar_one()
        logger.info("preferences_upserted", user_id=str(user_id))
        return preferences

    async def get_preferences(self, user_id: uuid.UUID) -> MatchingPreferences | None:
        stmt = select(MatchingPreferences).where(MatchingPreferences.user_id == user_id)
        return (await self.db.execute(stmt)).scalar_one_or_none()
