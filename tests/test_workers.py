"""Tests for the queue consumer, the periodic scheduler and the batch job."""
import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.schemas.messages import MatchResultsMessage, NewMatchesNotification
from app.services.notifier import Notifier
from app.services.profiles import ScoredCandidate
from app.workers import processor
from app.workers.main import build_reclaimer
from app.workers.processor import ACKED, DEAD_LETTERED, REQUEUED, MatchRequestConsumer
from app.workers.scheduler import BatchMatchJob, PeriodicScheduler


class StubMatchingService:
    def __init__(self, ranked=None, error=None, delay=0.0):
        self.ranked = ranked or []
        self.error = error
        self.delay = delay
        self.calls = []

    async def _run(self, kind, target_id, limit):
        self.calls.append((kind, target_id, limit))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.ranked

    async def find_matches_for_task(self, task_id, limit=10, persist=True):
        return await self._run("task", task_id, limit)

    async def find_tasks_for_user(self, user_id, limit=10, persist=True):
        return await self._run("user", user_id, limit)


def _message(received, body):
    return received(raw=json.dumps(body), body=body)


@pytest.fixture
def consumer_for(make_queue, session_factory):
    def build(service, results_queue=None):
        requests = make_queue("matching-requests")
        results = results_queue or make_queue("matching-results")
        consumer = MatchRequestConsumer(
            requests, results,
            session_factory=session_factory,
            service_factory=lambda session: service,
        )
        return consumer, requests, results
    return build


# ──────────────────────────────────────────────────────────────────────────────
# MatchRequestConsumer
# ──────────────────────────────────────────────────────────────────────────────

class TestConsumerHandle:
    @pytest.mark.asyncio
    async def test_success_publishes_then_acks(self, consumer_for, received):
        task_id, user_id = uuid.uuid4(), uuid.uuid4()
        ranked = [ScoredCandidate(candidate_id=user_id, total=0.7, breakdown={"skills": 0.5})]
        consumer, requests, results = consumer_for(StubMatchingService(ranked))
        message = _message(received, {"type": "task_matches", "taskId": str(task_id), "priority": "normal"})

        assert await consumer.handle(message) == ACKED
        assert requests.acked == [message]
        published, _ = results.published[0]
        assert isinstance(published, MatchResultsMessage)
        assert published.task_id == task_id
        assert published.matches[0]["user_id"] == str(user_id)
        assert published.matches[0]["score"] == 0.7

    @pytest.mark.asyncio
    async def test_user_request_routes_to_user_pipeline(self, consumer_for, received):
        user_id = uuid.uuid4()
        service = StubMatchingService()
        consumer, requests, results = consumer_for(service)

        await consumer.handle(_message(received, {"type": "user_matches", "userId": str(user_id)}))
        assert service.calls == [("user", user_id, consumer.match_limit)]
        published, _ = results.published[0]
        assert published.to_json() == json.dumps(
            {"type": "user_matches", "userId": str(user_id), "matches": []}, separators=(",", ":")
        )

    @pytest.mark.asyncio
    async def test_failure_requeues_with_incremented_attempts(self, consumer_for, received):
        consumer, requests, results = consumer_for(StubMatchingService(error=RuntimeError("db down")))
        body = {"type": "task_matches", "taskId": str(uuid.uuid4())}

        assert await consumer.handle(_message(received, body)) == REQUEUED
        assert requests.acked == []
        assert results.published == []
        _, new_body = requests.requeued[0]
        assert new_body["attempts"] == 1
        assert new_body["taskId"] == body["taskId"]

    @pytest.mark.asyncio
    async def test_exhausted_attempts_dead_letter(self, consumer_for, received):
        consumer, requests, _ = consumer_for(StubMatchingService(error=RuntimeError("db down")))
        body = {"type": "task_matches", "taskId": str(uuid.uuid4()), "attempts": consumer.max_attempts - 1}

        assert await consumer.handle(_message(received, body)) == DEAD_LETTERED
        assert requests.requeued == []
        assert len(requests.dead) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [None, {"type": "task_matches"}, {"type": "bogus", "taskId": str(uuid.uuid4())}],
    )
    async def test_malformed_dead_lettered(self, consumer_for, received, body):
        service = StubMatchingService()
        consumer, requests, results = consumer_for(service)

        assert await consumer.handle(received(raw="garbage", body=body)) == DEAD_LETTERED
        assert requests.dead[0][1] == "malformed"
        assert service.calls == []
        assert results.published == []

    @pytest.mark.asyncio
    async def test_timeout_requeues(self, consumer_for, received):
        consumer, requests, _ = consumer_for(StubMatchingService(delay=1.0))
        consumer.message_timeout = 0.01

        body = {"type": "task_matches", "taskId": str(uuid.uuid4())}
        assert await consumer.handle(_message(received, body)) == REQUEUED
        assert requests.acked == []

    @pytest.mark.asyncio
    async def test_results_publish_failure_not_acked(self, consumer_for, make_queue, received):
        consumer, requests, _ = consumer_for(
            StubMatchingService(), results_queue=make_queue("matching-results", fail_publish=True)
        )
        body = {"type": "task_matches", "taskId": str(uuid.uuid4())}
        assert await consumer.handle(_message(received, body)) == REQUEUED
        assert requests.acked == []


class TestConsumerLoop:
    @pytest.mark.asyncio
    async def test_runs_until_stopped(self, consumer_for, received):
        consumer, requests, results = consumer_for(StubMatchingService())
        stop = asyncio.Event()
        message = _message(received, {"type": "task_matches", "taskId": str(uuid.uuid4())})
        deliveries = [message, None]

        async def receive(timeout):
            if deliveries:
                return deliveries.pop(0)
            stop.set()
            return None

        requests.receive = receive
        await asyncio.wait_for(consumer.run(stop), timeout=2)

        assert requests.acked == [message]
        assert len(results.published) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("service_error", [None, RuntimeError("db down")])
    async def test_survives_queue_outage_while_settling(
        self, consumer_for, received, monkeypatch, service_error
    ):
        monkeypatch.setattr(processor, "RECEIVE_ERROR_BACKOFF_SECONDS", 0)
        consumer, requests, _ = consumer_for(StubMatchingService(error=service_error))
        stop = asyncio.Event()
        body = {"type": "task_matches", "taskId": str(uuid.uuid4())}
        deliveries = [_message(received, body), _message(received, body)]
        receives = []

        async def receive(timeout):
            receives.append(timeout)
            if deliveries:
                return deliveries.pop(0)
            stop.set()
            return None

        async def settle_fails(*args, **kwargs):
            raise RedisConnectionError("connection reset")

        requests.receive = receive
        requests.ack = requests.requeue = requests.dead_letter = settle_fails

        await asyncio.wait_for(consumer.run(stop), timeout=2)

        assert stop.is_set()
        assert len(receives) == 3


# ──────────────────────────────────────────────────────────────────────────────
# PeriodicScheduler
# ──────────────────────────────────────────────────────────────────────────────

class TestPeriodicScheduler:
    def test_hourly_boundaries(self):
        scheduler = PeriodicScheduler(AsyncMock(), 3600)
        at = datetime(2026, 3, 2, 12, 17, 5, tzinfo=timezone.utc)
        assert scheduler.next_run_at(at) == datetime(2026, 3, 2, 13, 0, tzinfo=timezone.utc)
        on_boundary = datetime(2026, 3, 2, 13, 0, tzinfo=timezone.utc)
        assert scheduler.next_run_at(on_boundary) == datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            PeriodicScheduler(AsyncMock(), 0)

    @pytest.mark.asyncio
    async def test_sleeps_until_boundary_and_survives_job_failure(self):
        clock_times = iter([
            datetime(2026, 3, 2, 12, 59, 30, tzinfo=timezone.utc),
            datetime(2026, 3, 2, 13, 0, 1, tzinfo=timezone.utc),
        ])
        stop = asyncio.Event()
        runs = []
        delays = []

        async def job(run_at):
            runs.append(run_at)
            if len(runs) == 1:
                raise RuntimeError("batch exploded")
            stop.set()
            return {"scanned": 0}

        async def fake_sleep(delay):
            delays.append(delay)

        scheduler = PeriodicScheduler(job, 3600, clock=lambda: next(clock_times), sleep=fake_sleep)
        await asyncio.wait_for(scheduler.run(stop), timeout=2)

        assert delays == [30.0, 3599.0]
        assert runs == [
            datetime(2026, 3, 2, 13, 0, tzinfo=timezone.utc),
            datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc),
        ]

    @pytest.mark.asyncio
    async def test_stop_interrupts_sleep(self):
        job = AsyncMock()
        stop = asyncio.Event()
        scheduler = PeriodicScheduler(job, 3600)

        runner = asyncio.create_task(scheduler.run(stop))
        await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(runner, timeout=1)
        job.assert_not_awaited()


class TestInflightReclaimer:
    @pytest.mark.asyncio
    async def test_reclaims_idle_entries_on_its_own_interval(self, now):
        queue = AsyncMock()
        queue.recover_inflight.return_value = 2

        reclaimer = build_reclaimer(queue, 300.0)

        assert reclaimer.interval_seconds == 300.0
        assert await reclaimer.job(now) == 2
        queue.recover_inflight.assert_awaited_once_with(min_idle_seconds=300.0)


# ──────────────────────────────────────────────────────────────────────────────
# BatchMatchJob
# ──────────────────────────────────────────────────────────────────────────────

class TestBatchMatchJob:
    @pytest.mark.asyncio
    async def test_scan_isolates_failures_and_expires(
        self, make_reader, make_store, make_queue, make_task, cooking_user, cooking_task,
        session_factory, now,
    ):
        broken = make_task(category="cooking", is_virtual=True)
        unmatched = make_task(category="woodwork", location="Bristol")
        stale = make_task(category="cooking", is_virtual=True, created_at=now - timedelta(days=3))

        class BrokenReader(make_reader):
            async def get_task(self, task_id):
                if task_id == broken.id:
                    raise RuntimeError("row decode failed")
                return await super().get_task(task_id)

        reader = BrokenReader(users=[cooking_user], tasks=[broken, cooking_task, unmatched, stale])
        store = make_store()
        store.expire_result = 2
        notifications = make_queue("matching-notifications")

        job = BatchMatchJob(
            Notifier(notifications),
            session_factory=session_factory,
            reader_factory=lambda session: reader,
            store_factory=lambda session: store,
        )
        summary = await job.run_once(now)

        assert summary == {"scanned": 3, "notified": 1, "failed": 1, "expired": 2}
        assert store.expire_calls == 1
        assert (cooking_task.id, cooking_user.id) in store.rows

        message, _ = notifications.published[0]
        assert isinstance(message, NewMatchesNotification)
        assert message.task_id == cooking_task.id
        assert message.matches[0]["user_id"] == str(cooking_user.id)

    @pytest.mark.asyncio
    async def test_limits_to_top_n(
        self, make_reader, make_store, make_queue, make_user, cooking_task, session_factory, now
    ):
        users = [make_user(skills={"cooking"}, interests={"cooking"}) for _ in range(8)]
        notifications = make_queue("matching-notifications")
        job = BatchMatchJob(
            Notifier(notifications),
            session_factory=session_factory,
            reader_factory=lambda session: make_reader(users=users, tasks=[cooking_task]),
            store_factory=lambda session: make_store(),
        )
        await job.run_once(now)

        message, _ = notifications.published[0]
        assert len(message.matches) == job.top_n == 5
