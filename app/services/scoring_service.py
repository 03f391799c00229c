"""
Bridgewell Matching — Composite score, eligibility and ranking.

  total = 0.30·skills + 0.20·interests + 0.20·location
        + 0.15·availability + 0.15·engagement

A candidate is eligible only when ``total > 0.30``.  Ineligible candidates
are discarded before ranking, never merely sorted to the bottom.

Ranking is by total descending.  Equal totals are ordered by the
candidate's creation time (most recent first) and then by id, so the
result never depends on the order rows came back from the store.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from app.services import similarity_service as scorers
from app.services.profiles import ScoredCandidate, TaskProfile, UserHistory, UserProfile, as_utc

WEIGHTS: dict[str, float] = {
    "skills": 0.30,
    "interests": 0.20,
    "location": 0.20,
    "availability": 0.15,
    "engagement": 0.15,
}

ELIGIBILITY_THRESHOLD = 0.30


def validate_weights(weights: dict[str, float]) -> dict[str, float]:
    total = sum(weights.values())
    if not math.isclose(total, 1.0):
        raise ValueError(f"Match weights must sum to 1.0, got {total:.4f}")
    return weights


validate_weights(WEIGHTS)


@dataclass(frozen=True)
class MatchScore:
    total: float
    breakdown: dict[str, float]

    @property
    def eligible(self) -> bool:
        return is_eligible(self.total)


def is_eligible(total: float) -> bool:
    return total > ELIGIBILITY_THRESHOLD


def compose(breakdown: dict[str, float]) -> float:
    """Weighted sum of the five dimension scores."""
    return sum(WEIGHTS[dimension] * breakdown[dimension] for dimension in WEIGHTS)


def calculate_match_score(
    user: UserProfile,
    task: TaskProfile,
    history: UserHistory | None,
    now: datetime,
) -> MatchScore:
    """Score one (user, task) pair across every dimension."""
    breakdown = {
        "skills": scorers.skill_similarity(user.skills, task.required_skills),
        "interests": scorers.interest_similarity(user.interests, task.category, task.tags),
        "location": scorers.location_score(user.location, task.location, task.is_virtual),
        "availability": scorers.availability_score(user.availability, task.scheduled_at),
        "engagement": scorers.engagement_score(history, now),
    }
    return MatchScore(total=compose(breakdown), breakdown=breakdown)


def _recency_key(created_at: datetime | None) -> float:
    if created_at is None:
        return float("-inf")
    return as_utc(created_at).timestamp()


def rank(candidates: Iterable[ScoredCandidate], limit: int) -> list[ScoredCandidate]:
    """Drop ineligible candidates and return the top ``limit`` in a stable,
    deterministic order."""
    eligible = [c for c in candidates if is_eligible(c.total)]
    eligible.sort(key=lambda c: str(c.candidate_id))
    eligible.sort(key=lambda c: (c.total, _recency_key(c.created_at)), reverse=True)
    return eligible[:limit]
