import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from access_core.core.errors import ReclamationFailed
from access_core.jobs import session_cleanup
from access_core.jobs.scheduler import RECURRING_PRIORITY, JobScheduler, JobTicket
from access_core.models import JobHistory
from conftest import FakeRedis

TICK = timedelta(milliseconds=20)


class ClaimedElsewhere(FakeRedis):
    async def set(self, key, value, ex=None, nx=False):
        return None


class RedisDown(FakeRedis):
    async def set(self, key, value, ex=None, nx=False):
        raise RedisConnectionError("connection refused")


def _scheduler(redis=None) -> JobScheduler:
    redis = redis or FakeRedis()
    return JobScheduler(redis_factory=lambda: redis)


def _counting_handler(items: int = 0):
    calls = []
    fired = asyncio.Event()

    async def handler(ticket):
        calls.append(ticket)
        fired.set()
        return items

    return handler, calls, fired


@pytest.mark.asyncio
async def test_manual_trigger_runs_once_and_reports_count() -> None:
    scheduler = _scheduler()
    handler, calls, _ = _counting_handler(items=4)
    scheduler.start()
    try:
        ticket = scheduler.trigger_manual("cleanup", handler)
        result = await asyncio.wait_for(ticket, 1)
    finally:
        await scheduler.stop()

    assert len(calls) == 1
    assert result.success is True
    assert result.items_reclaimed == 4
    assert set(result.as_dict()) == {"success", "itemsReclaimed", "durationMs"}
    assert scheduler.status()["last_result"]["itemsReclaimed"] == 4


@pytest.mark.asyncio
async def test_manual_trigger_requires_running_scheduler() -> None:
    handler, _, _ = _counting_handler()
    with pytest.raises(RuntimeError):
        _scheduler().trigger_manual("cleanup", handler)


def test_register_recurring_is_idempotent() -> None:
    scheduler = _scheduler()
    handler, _, _ = _counting_handler()
    assert scheduler.register_recurring("job-1", "cleanup", timedelta(minutes=5), handler) is True
    assert scheduler.register_recurring("job-1", "cleanup", timedelta(minutes=1), handler) is False
    assert scheduler.status()["recurring"] == ["job-1"]
    with pytest.raises(ValueError):
        scheduler.register_recurring("job-2", "cleanup", timedelta(0), handler)


@pytest.mark.asyncio
async def test_recurring_job_fires_on_interval() -> None:
    redis = FakeRedis()
    scheduler = _scheduler(redis)
    handler, calls, fired = _counting_handler(items=2)
    scheduler.register_recurring("job-1", "cleanup", TICK, handler)
    scheduler.start()
    try:
        await asyncio.wait_for(fired.wait(), 1)
    finally:
        await scheduler.stop()

    assert calls[0].manual is False
    assert calls[0].recurring_id == "job-1"
    assert any(key.startswith("jobs:slot:job-1:") for key in redis.store)


@pytest.mark.asyncio
async def test_recurring_slot_claimed_elsewhere_is_skipped() -> None:
    scheduler = _scheduler(ClaimedElsewhere())
    handler, calls, _ = _counting_handler()
    scheduler.register_recurring("job-1", "cleanup", TICK, handler)
    scheduler.start()
    await asyncio.sleep(0.15)
    await scheduler.stop()
    assert calls == []


@pytest.mark.asyncio
async def test_recurring_job_runs_locally_when_redis_is_down() -> None:
    scheduler = _scheduler(RedisDown())
    handler, _, fired = _counting_handler()
    scheduler.register_recurring("job-1", "cleanup", TICK, handler)
    scheduler.start()
    try:
        await asyncio.wait_for(fired.wait(), 1)
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_manual_runs_jump_ahead_of_recurring() -> None:
    scheduler = _scheduler()
    gate = asyncio.Event()
    started = asyncio.Event()
    order = []

    async def blocker(ticket):
        started.set()
        await gate.wait()
        return 0

    def recorder(label):
        async def handler(ticket):
            order.append(label)
            return 0

        return handler

    scheduler.start()
    try:
        scheduler.trigger_manual("blocker", blocker)
        await asyncio.wait_for(started.wait(), 1)

        recurring = JobTicket("recurring", manual=False)
        scheduler._enqueue(recurring, recorder("recurring"), RECURRING_PRIORITY)
        manual = scheduler.trigger_manual("manual", recorder("manual"))
        gate.set()
        await asyncio.wait_for(manual, 1)
        await asyncio.wait_for(recurring, 1)
    finally:
        await scheduler.stop()

    assert order == ["manual", "recurring"]


@pytest.mark.asyncio
async def test_failed_run_surfaces_reclamation_failed() -> None:
    scheduler = _scheduler()

    async def broken(ticket):
        raise ValueError("boom")

    scheduler.start()
    try:
        ticket = scheduler.trigger_manual("cleanup", broken)
        with pytest.raises(ReclamationFailed) as excinfo:
            await asyncio.wait_for(ticket, 1)
    finally:
        await scheduler.stop()

    assert isinstance(excinfo.value.__cause__, ValueError)
    assert excinfo.value.details["job_id"] == ticket.job_id
    assert scheduler.last_result.success is False


@pytest.mark.asyncio
async def test_stop_finishes_in_flight_run_and_cancels_queued() -> None:
    scheduler = _scheduler()
    gate = asyncio.Event()
    started = asyncio.Event()
    handler, calls, _ = _counting_handler()

    async def blocker(ticket):
        started.set()
        await gate.wait()
        return 1

    scheduler.start()
    in_flight = scheduler.trigger_manual("blocker", blocker)
    await asyncio.wait_for(started.wait(), 1)
    queued = scheduler.trigger_manual("queued", handler)

    stopping = asyncio.create_task(scheduler.stop())
    await asyncio.sleep(0.01)
    gate.set()
    await asyncio.wait_for(stopping, 1)

    assert (await in_flight).items_reclaimed == 1
    assert queued.done()
    with pytest.raises(asyncio.CancelledError):
        await queued
    assert calls == []
    assert scheduler.running is False


# ─── Session cleanup job ──────────────────────────────────────────────────────


def _patch_scope(monkeypatch, fake_db) -> None:
    @asynccontextmanager
    async def _scope():
        yield fake_db

    monkeypatch.setattr(session_cleanup, "session_scope", _scope)


@pytest.mark.asyncio
async def test_cleanup_job_records_history(fake_db, monkeypatch) -> None:
    _patch_scope(monkeypatch, fake_db)

    async def _reclaim(db, now=None):
        return 3

    monkeypatch.setattr(session_cleanup.sessions, "reclaim", _reclaim)
    ticket = JobTicket(session_cleanup.JOB_NAME, manual=True)

    assert await session_cleanup.process(ticket) == 3

    entry = next(obj for obj in fake_db.added if isinstance(obj, JobHistory))
    assert entry.job_id == ticket.job_id
    assert entry.queue_name == session_cleanup.QUEUE_NAME
    assert entry.status == session_cleanup.STATUS_COMPLETED
    assert entry.output == {"itemsReclaimed": 3}
    assert entry.completed_at is not None


@pytest.mark.asyncio
async def test_cleanup_job_failure_is_recorded_and_raised(fake_db, monkeypatch) -> None:
    _patch_scope(monkeypatch, fake_db)

    async def _reclaim(db, now=None):
        raise OperationalError("DELETE", {}, Exception("connection reset"))

    monkeypatch.setattr(session_cleanup.sessions, "reclaim", _reclaim)

    with pytest.raises(OperationalError):
        await session_cleanup.process(JobTicket(session_cleanup.JOB_NAME, manual=True))

    entry = next(obj for obj in fake_db.added if isinstance(obj, JobHistory))
    assert entry.status == session_cleanup.STATUS_FAILED
    assert "connection reset" in entry.error_message
    assert fake_db.rollbacks == 1


def test_cleanup_registration_uses_configured_interval() -> None:
    scheduler = _scheduler()
    assert session_cleanup.register(scheduler) is True
    assert session_cleanup.register(scheduler) is False
    job = scheduler._recurring[session_cleanup.RECURRING_JOB_ID]
    assert job.interval == timedelta(minutes=60)
    assert job.name == session_cleanup.JOB_NAME


@pytest.mark.asyncio
async def test_cleanup_trigger_goes_through_scheduler(fake_db, monkeypatch) -> None:
    _patch_scope(monkeypatch, fake_db)

    async def _reclaim(db, now=None):
        return 5

    monkeypatch.setattr(session_cleanup.sessions, "reclaim", _reclaim)
    scheduler = _scheduler()
    scheduler.start()
    try:
        result = await asyncio.wait_for(session_cleanup.trigger(scheduler), 1)
    finally:
        await scheduler.stop()
    assert result.items_reclaimed == 5
