"""
Bridgewell Matching — Read-only profile views used by the scorers.

Users, tasks and participation history are owned by other services.  The
engine converts the rows it reads into these immutable value objects so
that every scorer stays a pure function of its inputs.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger("bridgewell.profiles")


class Role(str, Enum):
    SENIOR = "senior"
    YOUTH = "youth"


class TaskStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class MatchStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class MatchAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    VIEW = "view"


# Decision status written by each action; ``view`` leaves the status alone.
ACTION_STATUS: dict[MatchAction, MatchStatus] = {
    MatchAction.ACCEPT: MatchStatus.ACCEPTED,
    MatchAction.REJECT: MatchStatus.REJECTED,
}

_OPPOSITE_ROLE: dict[str, str] = {
    Role.SENIOR.value: Role.YOUTH.value,
    Role.YOUTH.value: Role.SENIOR.value,
}


def opposite_role(role: str | None) -> str | None:
    """Return the counterpart role, or None for roles that are never matched
    (e.g. ``admin``)."""
    if role is None:
        return None
    return _OPPOSITE_ROLE.get(role.lower())


@dataclass(frozen=True)
class AvailabilityWindow:
    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


@dataclass(frozen=True)
class UserProfile:
    id: uuid.UUID
    role: str
    skills: frozenset[str] = frozenset()
    interests: frozenset[str] = frozenset()
    location: str | None = None
    availability: tuple[AvailabilityWindow, ...] = ()
    is_active: bool = True
    created_at: datetime | None = None
    first_name: str = ""
    last_name: str = ""


@dataclass(frozen=True)
class TaskProfile:
    id: uuid.UUID
    creator_id: uuid.UUID
    creator_role: str
    category: str | None = None
    tags: frozenset[str] = frozenset()
    required_skills: frozenset[str] = frozenset()
    location: str | None = None
    is_virtual: bool = False
    scheduled_at: datetime | None = None
    status: str = TaskStatus.DRAFT.value
    created_at: datetime | None = None
    title: str = ""
    description: str = ""

    @property
    def is_published(self) -> bool:
        return self.status == TaskStatus.PUBLISHED.value


@dataclass(frozen=True)
class UserHistory:
    """Participation aggregate derived from ``task_participants``."""

    completed_tasks: int = 0
    average_rating: float | None = None
    last_activity: datetime | None = None


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate (user or task) that cleared the eligibility threshold."""

    candidate_id: uuid.UUID
    total: float
    breakdown: dict[str, float]
    created_at: datetime | None = None
    details: dict[str, Any] = field(default_factory=dict)
    match_id: uuid.UUID | None = None


# ── Conversion helpers ──────────────────────────────────────────────────────


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix awareness."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str) and value.strip():
        try:
            return as_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


def parse_availability(raw: Any) -> tuple[AvailabilityWindow, ...]:
    """Convert stored availability JSON into windows.

    Accepts ``{"times": [{"start": ..., "end": ...}]}`` (the account
    service's format) or a bare list of slots.  Malformed slots are dropped.
    """
    if not raw:
        return ()
    slots = raw.get("times", []) if isinstance(raw, dict) else raw
    if not isinstance(slots, list):
        return ()

    windows: list[AvailabilityWindow] = []
    for slot in slots:
        if not isinstance(slot, dict):
            continue
        start = parse_datetime(slot.get("start"))
        end = parse_datetime(slot.get("end"))
        if start is None or end is None or end < start:
            logger.debug("availability_slot_skipped", slot=slot)
            continue
        windows.append(AvailabilityWindow(start=start, end=end))
    return tuple(windows)


def normalise_terms(values: Any) -> frozenset[str]:
    """Lower-case and strip a list of free-text terms, dropping blanks."""
    if not values:
        return frozenset()
    return frozenset(
        str(v).strip().lower() for v in values if v is not None and str(v).strip()
    )
