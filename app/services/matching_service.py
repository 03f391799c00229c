"""
Bridgewell Matching — Bidirectional match finder.

Two symmetric entry points share one pipeline:

  task → users   active users whose role is opposite to the task creator's
  user → tasks   published tasks created by the opposite role, never the
                 user's own

  fetch pool → score every candidate → drop ineligible → rank → top-N
  → (optionally) persist each pair through the result store

The service holds no state between calls: its collaborators (profile
reader, result store, clock) are injected at construction so the same
class serves request handlers, queue consumers and the scheduled batch.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import structlog

from app.config import get_settings
from app.services import scoring_service, similarity_service
from app.services.profiles import (
    ScoredCandidate,
    TaskProfile,
    UserHistory,
    UserProfile,
    opposite_role,
)

logger = structlog.get_logger("bridgewell.matching_service")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MatchingService:
    """Stateless match finder.

    Parameters
    ----------
    profile_reader:
        Read-only access to users, tasks and participation history
        (``ProfileReader`` or any object with the same coroutines).
    result_store:
        Idempotent match-result writer (``ResultStore``).  Only needed
        when results are persisted.
    clock:
        Zero-argument callable returning the current aware datetime.
    """

    def __init__(
        self,
        profile_reader: Any,
        result_store: Any | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.profile_reader = profile_reader
        self.result_store = result_store
        self.clock = clock

        settings = get_settings()
        self.max_limit: int = settings.MAX_MATCH_LIMIT
        self.task_pool_limit: int = settings.TASK_CANDIDATE_POOL_LIMIT

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return get_settings().DEFAULT_MATCH_LIMIT
        return max(1, min(int(limit), self.max_limit))

    # ── Public API ────────────────────────────────────────────────────────

    async def find_matches_for_task(
        self,
        task_id: uuid.UUID,
        limit: int | None = 10,
        persist: bool = True,
    ) -> list[ScoredCandidate]:
        """Rank opposite-role users for a published task.

        A missing or unpublished task, or a creator role with no
        counterpart, yields an empty list rather than an error.
        """
        limit = self.clamp_limit(limit)
        log = logger.bind(task_id=str(task_id), limit=limit)

        task = await self.profile_reader.get_task(task_id)
        if task is None or not task.is_published:
            log.info("task_not_matchable", found=task is not None)
            return []

        candidate_role = opposite_role(task.creator_role)
        if candidate_role is None:
            log.info("creator_role_not_matchable", creator_role=task.creator_role)
            return []

        pool = await self.profile_reader.list_candidate_users(
            candidate_role, exclude_user_id=task.creator_id
        )
        now = self.clock()

        scored: list[ScoredCandidate] = []
        for user, history in pool:
            if user.id == task.creator_id or user.role != candidate_role or not user.is_active:
                continue
            candidate = self._score_pair(user, task, history, now, candidate=user)
            if candidate is not None:
                scored.append(candidate)

        ranked = scoring_service.rank(scored, limit)
        if persist:
            ranked = await self._persist(ranked, task_id=task.id)

        log.info("task_matches_found", pool_size=len(pool), eligible=len(scored), returned=len(ranked))
        return ranked

    async def find_tasks_for_user(
        self,
        user_id: uuid.UUID,
        limit: int | None = 10,
        persist: bool = True,
    ) -> list[ScoredCandidate]:
        """Rank published tasks created by the opposite role for a user."""
        limit = self.clamp_limit(limit)
        log = logger.bind(user_id=str(user_id), limit=limit)

        user = await self.profile_reader.get_user(user_id)
        if user is None or not user.is_active:
            log.info("user_not_matchable", found=user is not None)
            return []

        creator_role = opposite_role(user.role)
        if creator_role is None:
            log.info("user_role_not_matchable", role=user.role)
            return []

        history = await self.profile_reader.get_user_history(user_id)
        tasks = await self.profile_reader.list_candidate_tasks(
            creator_role, exclude_creator_id=user.id, limit=self.task_pool_limit
        )
        now = self.clock()

        scored: list[ScoredCandidate] = []
        for task in tasks:
            if task.creator_id == user.id or task.creator_role != creator_role or not task.is_published:
                continue
            candidate = self._score_pair(user, task, history, now, candidate=task)
            if candidate is not None:
                scored.append(candidate)

        ranked = scoring_service.rank(scored, limit)
        if persist:
            ranked = await self._persist(ranked, user_id=user.id)

        log.info("user_matches_found", pool_size=len(tasks), eligible=len(scored), returned=len(ranked))
        return ranked

    async def recommend_users(
        self,
        user_id: uuid.UUID,
        limit: int | None = 10,
    ) -> list[dict[str, Any]]:
        """Opposite-role users ordered by engagement, for the
        ``type=users`` recommendation feed.  Nothing is persisted."""
        limit = self.clamp_limit(limit)

        user = await self.profile_reader.get_user(user_id)
        if user is None or not user.is_active:
            return []
        role = opposite_role(user.role)
        if role is None:
            return []

        pool = await self.profile_reader.list_candidate_users(role, exclude_user_id=user.id)
        now = self.clock()

        ranked: list[tuple[float, int, float, str, UserProfile]] = []
        for other, history in pool:
            if other.id == user.id or other.role != role or not other.is_active:
                continue
            engagement = similarity_service.engagement_score(history, now)
            created = other.created_at.timestamp() if other.created_at else float("-inf")
            ranked.append((engagement, history.completed_tasks, created, str(other.id), other))

        ranked.sort(key=lambda r: r[3])
        ranked.sort(key=lambda r: (r[0], r[1], r[2]), reverse=True)

        return [
            {
                "user_id": other.id,
                "first_name": other.first_name,
                "last_name": other.last_name,
                "location": other.location,
                "skills": sorted(other.skills),
                "interests": sorted(other.interests),
                "engagement_score": round(engagement, 4),
                "completed_tasks": completed,
            }
            for engagement, completed, _, _, other in ranked[:limit]
        ]

    # ── Internals ─────────────────────────────────────────────────────────

    def _score_pair(
        self,
        user: UserProfile,
        task: TaskProfile,
        history: UserHistory | None,
        now: datetime,
        candidate: UserProfile | TaskProfile,
    ) -> ScoredCandidate | None:
        """Score one pair; a failure is logged and the candidate skipped."""
        try:
            score = scoring_service.calculate_match_score(user, task, history, now)
        except Exception:
            logger.exception("candidate_scoring_failed", task_id=str(task.id), user_id=str(user.id))
            return None

        if not score.eligible:
            return None

        if isinstance(candidate, TaskProfile):
            details = {
                "title": task.title,
                "category": task.category,
                "location": task.location,
                "is_virtual": task.is_virtual,
                "scheduled_date": task.scheduled_at.isoformat() if task.scheduled_at else None,
            }
        else:
            details = {
                "first_name": user.first_name,
                "last_name": user.last_name,
                "location": user.location,
                "skills": sorted(user.skills),
            }

        return ScoredCandidate(
            candidate_id=candidate.id,
            total=score.total,
            breakdown=score.breakdown,
            created_at=candidate.created_at,
            details=details,
        )

    async def _persist(
        self,
        ranked: list[ScoredCandidate],
        task_id: uuid.UUID | None = None,
        user_id: uuid.UUID | None = None,
    ) -> list[ScoredCandidate]:
        """Upsert each ranked pair inside its own savepoint.

        The returned list carries the stored match ids.  A pair whose
        write fails is logged and still returned, without a match id.
        """
        if self.result_store is None:
            return ranked

        persisted: list[ScoredCandidate] = []
        for candidate in ranked:
            pair_task = task_id if task_id is not None else candidate.candidate_id
            pair_user = user_id if user_id is not None else candidate.candidate_id
            try:
                async with self.result_store.savepoint():
                    match_id = await self.result_store.upsert_match(
                        pair_task, pair_user, candidate.total, candidate.breakdown
                    )
            except Exception:
                logger.exception(
                    "match_persist_failed",
                    task_id=str(pair_task),
                    user_id=str(pair_user),
                )
                persisted.append(candidate)
                continue
            persisted.append(
                ScoredCandidate(
                    candidate_id=candidate.candidate_id,
                    total=candidate.total,
                    breakdown=candidate.breakdown,
                    created_at=candidate.created_at,
                    details=candidate.details,
                    match_id=match_id,
                )
            )
        return persisted


def serialize_candidate(candidate: ScoredCandidate, id_field: str) -> dict[str, Any]:
    """Flatten a ranked candidate into the JSON shape shared by the API
    and the results queue."""
    return {
        id_field: str(candidate.candidate_id),
        "match_id": str(candidate.match_id) if candidate.match_id else None,
        "score": round(candidate.total, 4),
        "breakdown": {k: round(v, 4) for k, v in candidate.breakdown.items()},
        **candidate.details,
    }
