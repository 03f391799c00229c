"""
Bridgewell Matching — Per-dimension similarity scorers.

Each scorer is a pure, deterministic function returning a value in [0, 1]:

  skills        Jaccard(user skills, task required skills)
  interests     Jaccard(user interests, {task category} ∪ task tags)
  location      virtual 1.0 | missing 0.5 | exact 1.0 | shared token 0.8 | 0.3
  availability  missing 0.5 | scheduled time inside a window 1.0 | 0.2
  engagement    0.5 base, adjusted by completions, rating and recency

No scorer touches shared state, so all of them are safe to call
concurrently from request handlers and queue workers alike.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from app.services.profiles import AvailabilityWindow, UserHistory, as_utc, normalise_terms

# ── Location heuristic ──────────────────────────────────────────────────────

VIRTUAL_LOCATION_SCORE = 1.0
MISSING_LOCATION_SCORE = 0.5
EXACT_LOCATION_SCORE = 1.0
SHARED_TOKEN_LOCATION_SCORE = 0.8
DEFAULT_LOCATION_SCORE = 0.3
MIN_LOCATION_TOKEN_LENGTH = 3  # tokens must be longer than 2 characters

# ── Availability ────────────────────────────────────────────────────────────

MISSING_AVAILABILITY_SCORE = 0.5
AVAILABLE_SCORE = 1.0
UNAVAILABLE_SCORE = 0.2

# ── Engagement ──────────────────────────────────────────────────────────────

ENGAGEMENT_BASE = 0.5
COMPLETION_BONUS_PER_TASK = 0.1
COMPLETION_BONUS_CAP = 0.3
RATING_PIVOT = 3.0
RATING_FACTOR = 0.1
RECENT_ACTIVITY_DAYS = 7
RECENT_ACTIVITY_BONUS = 0.2
STALE_ACTIVITY_DAYS = 30
STALE_ACTIVITY_PENALTY = 0.2


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    """|A ∩ B| / |A ∪ B|, or 0 when the union is empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def skill_similarity(
    user_skills: Iterable[str] | None,
    required_skills: Iterable[str] | None,
) -> float:
    """Jaccard index over lower-cased skill sets.  Empty either side ⇒ 0."""
    user_set = normalise_terms(user_skills)
    task_set = normalise_terms(required_skills)
    if not user_set or not task_set:
        return 0.0
    return jaccard(user_set, task_set)


def interest_similarity(
    user_interests: Iterable[str] | None,
    category: str | None,
    tags: Iterable[str] | None,
) -> float:
    """Jaccard index between the user's interests and the task's category
    plus its tags."""
    interest_set = normalise_terms(user_interests)
    if not interest_set:
        return 0.0
    task_terms = normalise_terms([category, *(tags or [])])
    if not task_terms:
        return 0.0
    return jaccard(interest_set, task_terms)


def _location_tokens(location: str) -> set[str]:
    return {
        part.strip()
        for part in location.lower().split(",")
        if len(part.strip()) >= MIN_LOCATION_TOKEN_LENGTH
    }


def location_score(
    user_location: str | None,
    task_location: str | None,
    is_virtual: bool,
) -> float:
    """Coarse string/tier heuristic; no geocoding is attempted."""
    if is_virtual:
        return VIRTUAL_LOCATION_SCORE

    if not user_location or not user_location.strip() or not task_location or not task_location.strip():
        return MISSING_LOCATION_SCORE

    if user_location.strip().lower() == task_location.strip().lower():
        return EXACT_LOCATION_SCORE

    if _location_tokens(user_location) & _location_tokens(task_location):
        return SHARED_TOKEN_LOCATION_SCORE

    return DEFAULT_LOCATION_SCORE


def availability_score(
    windows: Iterable[AvailabilityWindow] | None,
    scheduled_at: datetime | None,
) -> float:
    """1.0 when the task's scheduled time falls inside any declared window."""
    window_list = list(windows or ())
    if not window_list or scheduled_at is None:
        return MISSING_AVAILABILITY_SCORE

    moment = as_utc(scheduled_at)
    for window in window_list:
        if window.contains(moment):
            return AVAILABLE_SCORE
    return UNAVAILABLE_SCORE


def engagement_score(history: UserHistory | None, now: datetime) -> float:
    """Heuristic from completion count, average rating and activity recency.

    Unknown last activity applies neither the recency bonus nor the
    inactivity penalty, so a brand-new user scores the neutral 0.5.
    """
    if history is None:
        return ENGAGEMENT_BASE

    score = ENGAGEMENT_BASE

    if history.completed_tasks > 0:
        score += min(history.completed_tasks * COMPLETION_BONUS_PER_TASK, COMPLETION_BONUS_CAP)

    if history.average_rating is not None and history.average_rating > 0:
        score += (history.average_rating - RATING_PIVOT) * RATING_FACTOR

    if history.last_activity is not None:
        idle_days = (as_utc(now) - as_utc(history.last_activity)).total_seconds() / 86400
        if idle_days < RECENT_ACTIVITY_DAYS:
            score += RECENT_ACTIVITY_BONUS
        elif idle_days > STALE_ACTIVITY_DAYS:
            score -= STALE_ACTIVITY_PENALTY

    return _clamp(score)
