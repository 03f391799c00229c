"""Shared pytest fixtures for Bridgewell matching tests."""
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from app.services.profiles import (
    AvailabilityWindow,
    TaskProfile,
    UserHistory,
    UserProfile,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# ──────────────────────────────────────────────────────────────────────────────
# In-memory collaborators
# ──────────────────────────────────────────────────────────────────────────────

@dataclass
class StoredMatch:
    id: uuid.UUID
    task_id: uuid.UUID
    user_id: uuid.UUID
    total_score: float
    breakdown: dict
    status: str = "pending"


class FakeProfileReader:
    """Returns every user/task it holds; filtering is left to the caller."""

    def __init__(self, users=None, tasks=None, histories=None):
        self.users: list[UserProfile] = list(users or [])
        self.tasks: list[TaskProfile] = list(tasks or [])
        self.histories: dict[uuid.UUID, UserHistory] = dict(histories or {})

    async def get_task(self, task_id):
        return next((t for t in self.tasks if t.id == task_id), None)

    async def get_user(self, user_id):
        return next((u for u in self.users if u.id == user_id), None)

    async def get_user_history(self, user_id):
        return self.histories.get(user_id, UserHistory())

    async def list_candidate_users(self, role, exclude_user_id=None):
        return [(u, self.histories.get(u.id, UserHistory())) for u in self.users]

    async def list_candidate_tasks(self, creator_role, exclude_creator_id, limit):
        return list(self.tasks)[:limit]

    async def list_recent_published_task_ids(self, since):
        return [
            t.id for t in self.tasks
            if t.is_published and t.created_at is not None and t.created_at >= since
        ]


class FakeResultStore:
    """Dict-backed stand-in honouring the (task_id, user_id) upsert key."""

    def __init__(self, fail_pairs=()):
        self.rows: dict[tuple, StoredMatch] = {}
        self.analytics: list[dict] = []
        self.commits = 0
        self.fail_pairs = set(fail_pairs)
        self.expire_result = 0
        self.expire_calls = 0

    @asynccontextmanager
    async def savepoint(self):
        yield

    async def commit(self):
        self.commits += 1

    async def upsert_match(self, task_id, user_id, total_score, breakdown):
        key = (task_id, user_id)
        if key in self.fail_pairs:
            raise RuntimeError("simulated write failure")
        row = self.rows.get(key)
        if row is None:
            row = StoredMatch(uuid.uuid4(), task_id, user_id, total_score, dict(breakdown))
            self.rows[key] = row
        else:
            row.total_score = total_score
            row.breakdown = dict(breakdown)
        return row.id

    async def get_match(self, match_id):
        return next((r for r in self.rows.values() if r.id == match_id), None)

    async def set_status(self, match_id, status):
        row = await self.get_match(match_id)
        row.status = status.value

    async def append_analytics(self, match, action, match_type="task_match"):
        entry = {
            "match_type": match_type,
            "match_id": match.id,
            "user_id": match.user_id,
            "task_id": match.task_id,
            "score": match.total_score,
            "action": action.value,
        }
        self.analytics.append(entry)
        return entry

    async def expire_stale_matches(self):
        self.expire_calls += 1
        return self.expire_result


@dataclass
class FakeReceived:
    raw: str
    body: Optional[dict]


class FakeQueue:
    def __init__(self, name="matching-requests", fail_publish=False):
        self.name = name
        self.published: list[tuple[Any, str]] = []
        self.acked: list[FakeReceived] = []
        self.requeued: list[tuple[FakeReceived, dict]] = []
        self.dead: list[tuple[FakeReceived, str]] = []
        self.fail_publish = fail_publish

    async def publish(self, message, priority="normal"):
        if self.fail_publish:
            from redis.exceptions import ConnectionError as RedisConnectionError

            raise RedisConnectionError("queue down")
        self.published.append((message, priority))

    async def ack(self, message):
        self.acked.append(message)

    async def requeue(self, message, body):
        self.requeued.append((message, body))

    async def dead_letter(self, message, reason):
        self.dead.append((message, reason))


class FakeSession:
    def __init__(self):
        self.commits = 0

    async def commit(self):
        self.commits += 1


def fake_session_factory():
    """Mimics ``async_sessionmaker``: calling it yields an async context."""
    @asynccontextmanager
    async def _session():
        yield FakeSession()

    return _session()


# ──────────────────────────────────────────────────────────────────────────────
# Builders
# ──────────────────────────────────────────────────────────────────────────────

def build_user(role="youth", **overrides) -> UserProfile:
    values = {
        "id": uuid.uuid4(),
        "role": role,
        "skills": frozenset(),
        "interests": frozenset(),
        "location": None,
        "availability": (),
        "is_active": True,
        "created_at": NOW - timedelta(days=30),
        "first_name": "Test",
        "last_name": "User",
    }
    values.update(overrides)
    for key in ("skills", "interests"):
        values[key] = frozenset(v.lower() for v in values[key])
    return UserProfile(**values)


def build_task(creator_role="senior", **overrides) -> TaskProfile:
    values = {
        "id": uuid.uuid4(),
        "creator_id": uuid.uuid4(),
        "creator_role": creator_role,
        "category": None,
        "tags": frozenset(),
        "required_skills": frozenset(),
        "location": None,
        "is_virtual": False,
        "scheduled_at": None,
        "status": "published",
        "created_at": NOW - timedelta(hours=2),
        "title": "Test task",
    }
    values.update(overrides)
    for key in ("tags", "required_skills"):
        values[key] = frozenset(v.lower() for v in values[key])
    return TaskProfile(**values)


# ──────────────────────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_user():
    return build_user


@pytest.fixture
def make_task():
    return build_task


@pytest.fixture
def make_reader():
    return FakeProfileReader


@pytest.fixture
def result_store():
    return FakeResultStore()


@pytest.fixture
def make_store():
    return FakeResultStore


@pytest.fixture
def make_queue():
    return FakeQueue


@pytest.fixture
def session_factory():
    return fake_session_factory


@pytest.fixture
def received():
    return FakeReceived


@pytest.fixture
def cooking_user():
    """skills=[cooking, teaching], interests=[cooking], nothing else known."""
    return build_user(role="youth", skills={"Cooking", "Teaching"}, interests={"cooking"})


@pytest.fixture
def cooking_task():
    """Virtual senior task needing cooking and patience."""
    return build_task(
        creator_role="senior",
        required_skills={"cooking", "patience"},
        category="cooking",
        is_virtual=True,
        title="Cook a family recipe together",
    )


@pytest.fixture
def morning_window():
    return AvailabilityWindow(start=NOW.replace(hour=8), end=NOW.replace(hour=11))
