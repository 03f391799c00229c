"""Unit tests for ResultStore — upsert SQL shape and query post-processing."""
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from app.models.match import MatchResult
from app.services.profiles import MatchAction, MatchStatus
from app.services.result_store import MATCH_PAIR_CONSTRAINT, ResultStore, build_match_upsert


def _compile(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


@pytest.fixture
def db():
    session = MagicMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    return session


class TestUniquenessConstraint:
    def test_declared_on_task_user_pair(self):
        constraints = {
            c.name: [col.name for col in c.columns]
            for c in MatchResult.__table__.constraints
            if c.name == MATCH_PAIR_CONSTRAINT
        }
        assert constraints == {MATCH_PAIR_CONSTRAINT: ["task_id", "user_id"]}


class TestUpsertStatement:
    def test_on_conflict_targets_pair_constraint(self):
        sql = _compile(build_match_upsert(uuid.uuid4(), uuid.uuid4(), 0.7, {"skills": 1.0}))
        assert f"ON CONFLICT ON CONSTRAINT {MATCH_PAIR_CONSTRAINT} DO UPDATE" in sql

    def test_update_set_never_touches_status(self):
        sql = _compile(build_match_upsert(uuid.uuid4(), uuid.uuid4(), 0.7, {"skills": 1.0}))
        update_clause = sql.split("DO UPDATE SET", 1)[1].split("RETURNING", 1)[0]
        assert "total_score" in update_clause
        assert "breakdown" in update_clause
        assert "updated_at" in update_clause
        assert "status" not in update_clause

    def test_new_rows_start_pending(self):
        stmt = build_match_upsert(uuid.uuid4(), uuid.uuid4(), 0.7, {})
        params = stmt.compile(dialect=postgresql.dialect()).params
        assert params["status"] == MatchStatus.PENDING.value

    def test_returns_row_id(self):
        sql = _compile(build_match_upsert(uuid.uuid4(), uuid.uuid4(), 0.7, {}))
        assert "RETURNING match_results.id" in sql


class TestResultStore:
    @pytest.mark.asyncio
    async def test_upsert_returns_stored_id(self, db):
        match_id = uuid.uuid4()
        result = MagicMock()
        result.scalar_one.return_value = match_id
        db.execute.return_value = result

        store = ResultStore(db)
        assert await store.upsert_match(uuid.uuid4(), uuid.uuid4(), 0.5, {"skills": 0.5}) == match_id
        db.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_set_status_updates_status_column(self, db):
        store = ResultStore(db)
        await store.set_status(uuid.uuid4(), MatchStatus.ACCEPTED)
        stmt = db.execute.await_args.args[0]
        sql = _compile(stmt)
        assert sql.startswith("UPDATE match_results SET status=")

    @pytest.mark.asyncio
    async def test_expire_only_pending_rows(self, db):
        result = MagicMock()
        result.rowcount = 4
        db.execute.return_value = result

        store = ResultStore(db)
        assert await store.expire_stale_matches() == 4
        compiled = db.execute.await_args.args[0].compile(dialect=postgresql.dialect())
        sql = str(compiled)
        assert "NOT" in sql and "EXISTS" in sql
        assert {"pending", "expired", "published"} <= set(compiled.params.values())

    @pytest.mark.asyncio
    async def test_append_analytics_copies_score(self, db):
        match = MatchResult(
            id=uuid.uuid4(), task_id=uuid.uuid4(), user_id=uuid.uuid4(),
            total_score=0.66, breakdown={}, status="pending",
        )
        store = ResultStore(db)
        entry = await store.append_analytics(match, MatchAction.VIEW)

        db.add.assert_called_once_with(entry)
        assert entry.action == "view"
        assert entry.score == 0.66
        assert entry.match_id == match.id
        assert entry.match_type == "task_match"

    @pytest.mark.asyncio
    async def test_action_statistics_rounds_average(self, db):
        result = MagicMock()
        result.all.return_value = [("accept", 3, 0.712345), ("view", 7, None)]
        db.execute.return_value = result

        stats = await ResultStore(db).action_statistics(datetime(2026, 1, 1, tzinfo=timezone.utc))
        assert stats == [
            {"action": "accept", "count": 3, "avg_score": 0.7123},
            {"action": "view", "count": 7, "avg_score": None},
        ]

    @pytest.mark.asyncio
    async def test_top_accepted_windowed_by_accept_time(self, db):
        since = datetime(2026, 3, 1, tzinfo=timezone.utc)
        match_id, task_id, user_id = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        match = MagicMock(id=match_id, task_id=task_id, user_id=user_id, total_score=0.8)
        result = MagicMock()
        result.all.return_value = [(match, "Garden tidy", "Ada", "Lee")]
        db.execute.return_value = result

        rows = await ResultStore(db).top_accepted_matches(since, limit=3)

        compiled = db.execute.await_args.args[0].compile(dialect=postgresql.dialect())
        sql = str(compiled)
        assert "FROM matching_analytics" in sql
        assert "match_results.updated_at" not in sql
        assert since in compiled.params.values()
        assert MatchAction.ACCEPT.value in compiled.params.values()
        assert MatchStatus.ACCEPTED.value in compiled.params.values()
        assert rows == [{
            "match_id": match_id, "task_id": task_id, "user_id": user_id, "score": 0.8,
            "task_title": "Garden tidy", "first_name": "Ada", "last_name": "Lee",
        }]
