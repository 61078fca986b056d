"""In-process job scheduler for maintenance work such as session reclamation.

Runs go through one priority queue drained by a single worker task, so at
most one run executes at a time. Manual triggers jump ahead of recurring
firings. Recurring firings are claimed per time slot in Redis so that only
one process of a multi-worker deployment runs each slot.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from redis.exceptions import RedisError

from access_core.core.errors import ReclamationFailed
from access_core.core.logging import audit
from access_core.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)

MANUAL_PRIORITY = 1
RECURRING_PRIORITY = 10
SLOT_KEY_PREFIX = "jobs:slot"


@dataclass(frozen=True)
class JobResult:
    success: bool
    items_reclaimed: int
    duration_ms: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "itemsReclaimed": self.items_reclaimed,
            "durationMs": self.duration_ms,
        }


class JobTicket:
    """Handle for one queued run; awaiting it yields the ``JobResult``."""

    def __init__(self, name: str, *, manual: bool, recurring_id: Optional[str] = None) -> None:
        self.job_id = str(uuid.uuid4())
        self.name = name
        self.manual = manual
        self.recurring_id = recurring_id
        self._future: asyncio.Future[JobResult] = asyncio.get_running_loop().create_future()

    def __await__(self):
        return self._future.__await__()

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> None:
        self._future.cancel()

    def _resolve(self, result: JobResult) -> None:
        if not self._future.done():
            self._future.set_result(result)

    def _fail(self, exc: BaseException) -> None:
        if self._future.done():
            return
        self._future.set_exception(exc)
        if not self.manual:
            # Nobody awaits recurring runs; mark the exception as retrieved.
            self._future.exception()


JobHandler = Callable[[JobTicket], Awaitable[int]]


@dataclass(order=True)
class _QueuedRun:
    priority: int
    sequence: int
    ticket: JobTicket = field(compare=False)
    handler: JobHandler = field(compare=False)


@dataclass
class _RecurringJob:
    job_id: str
    name: str
    interval: timedelta
    handler: JobHandler
    task: Optional[asyncio.Task] = None
    pending: bool = False


class JobScheduler:
    def __init__(self, *, redis_factory: Callable[[], Any] = get_redis_client) -> None:
        self._redis_factory = redis_factory
        self._recurring: dict[str, _RecurringJob] = {}
        self._queue: Optional[asyncio.PriorityQueue[_QueuedRun]] = None
        self._worker: Optional[asyncio.Task] = None
        self._sequence = itertools.count()
        self._running = False
        self._in_flight: Optional[JobTicket] = None
        self.last_result: Optional[JobResult] = None

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._queue = asyncio.PriorityQueue()
        self._running = True
        self._worker = asyncio.create_task(self._work(), name="job-scheduler-worker")
        for job in self._recurring.values():
            self._start_timer(job)
        logger.info("Job scheduler started", extra={"recurring_jobs": sorted(self._recurring)})

    async def stop(self) -> None:
        """Stop timers, let the in-flight run finish, cancel what is still queued."""
        if not self._running:
            return
        self._running = False
        for job in self._recurring.values():
            if job.task is not None:
                job.task.cancel()
        await asyncio.gather(
            *(job.task for job in self._recurring.values() if job.task is not None),
            return_exceptions=True,
        )
        for job in self._recurring.values():
            job.task = None
            job.pending = False

        cancelled = 0
        while self._queue is not None and not self._queue.empty():
            queued = self._queue.get_nowait()
            queued.ticket.cancel()
            cancelled += 1

        if self._worker is not None:
            # The sentinel sorts after every real run.
            self._queue.put_nowait(_QueuedRun(priority=2**31, sequence=next(self._sequence), ticket=None, handler=None))
            await self._worker
            self._worker = None
        logger.info("Job scheduler stopped", extra={"cancelled_runs": cancelled})

    def register_recurring(
        self, job_id: str, name: str, interval: timedelta, handler: JobHandler
    ) -> bool:
        """Register a recurring job; a second registration of ``job_id`` is a no-op."""
        if interval.total_seconds() <= 0:
            raise ValueError("Recurring interval must be positive")
        if job_id in self._recurring:
            logger.debug("Recurring job already registered", extra={"recurring_id": job_id})
            return False
        job = _RecurringJob(job_id=job_id, name=name, interval=interval, handler=handler)
        self._recurring[job_id] = job
        if self._running:
            self._start_timer(job)
        logger.info(
            "Registered recurring job",
            extra={"recurring_id": job_id, "job_name": name, "interval_seconds": interval.total_seconds()},
        )
        return True

    def trigger_manual(self, name: str, handler: JobHandler) -> JobTicket:
        if not self._running or self._queue is None:
            raise RuntimeError("Job scheduler is not running")
        ticket = JobTicket(name, manual=True)
        self._enqueue(ticket, handler, MANUAL_PRIORITY)
        audit("jobs.manual_trigger", job_id=ticket.job_id, job_name=name)
        return ticket

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "queued": self._queue.qsize() if self._queue is not None else 0,
            "in_flight": self._in_flight.job_id if self._in_flight is not None else None,
            "recurring": sorted(self._recurring),
            "last_result": self.last_result.as_dict() if self.last_result else None,
        }

    def _enqueue(self, ticket: JobTicket, handler: JobHandler, priority: int) -> None:
        self._queue.put_nowait(
            _QueuedRun(priority=priority, sequence=next(self._sequence), ticket=ticket, handler=handler)
        )

    def _start_timer(self, job: _RecurringJob) -> None:
        job.task = asyncio.create_task(self._tick(job), name=f"job-timer-{job.job_id}")

    async def _tick(self, job: _RecurringJob) -> None:
        seconds = job.interval.total_seconds()
        while True:
            await asyncio.sleep(seconds)
            if job.pending:
                logger.info("Skipping recurring firing; previous run still queued", extra={"recurring_id": job.job_id})
                continue
            if not await self._claim_slot(job):
                continue
            job.pending = True
            ticket = JobTicket(job.name, manual=False, recurring_id=job.job_id)
            self._enqueue(ticket, job.handler, RECURRING_PRIORITY)

    async def _claim_slot(self, job: _RecurringJob) -> bool:
        seconds = max(int(job.interval.total_seconds()), 1)
        slot = int(time.time() // seconds)
        key = f"{SLOT_KEY_PREFIX}:{job.job_id}:{slot}"
        try:
            claimed = await self._redis_factory().set(key, "1", nx=True, ex=seconds)
        except (RedisError, OSError):
            logger.warning("Redis unavailable; running recurring job locally", extra={"recurring_id": job.job_id})
            return True
        if not claimed:
            logger.debug("Recurring slot claimed elsewhere", extra={"recurring_id": job.job_id, "slot": slot})
        return bool(claimed)

    async def _work(self) -> None:
        while True:
            queued = await self._queue.get()
            if queued.ticket is None:
                return
            if queued.ticket.done():
                continue
            await self._execute(queued.ticket, queued.handler)

    async def _execute(self, ticket: JobTicket, handler: JobHandler) -> None:
        self._in_flight = ticket
        started = time.perf_counter()
        try:
            items = await handler(ticket)
        except Exception as exc:
            duration_ms = int((time.perf_counter() - started) * 1000)
            logger.exception(
                "Job failed",
                extra={"job_id": ticket.job_id, "job_name": ticket.name, "duration_ms": duration_ms},
            )
            self.last_result = JobResult(success=False, items_reclaimed=0, duration_ms=duration_ms)
            failure = ReclamationFailed(
                f"{ticket.name} failed: {exc}", details={"job_id": ticket.job_id, "duration_ms": duration_ms}
            )
            failure.__cause__ = exc
            ticket._fail(failure)
        else:
            duration_ms = int((time.perf_counter() - started) * 1000)
            result = JobResult(success=True, items_reclaimed=int(items or 0), duration_ms=duration_ms)
            self.last_result = result
            logger.info(
                "Job completed",
                extra={
                    "job_id": ticket.job_id,
                    "job_name": ticket.name,
                    "items_reclaimed": result.items_reclaimed,
                    "duration_ms": duration_ms,
                },
            )
            ticket._resolve(result)
        finally:
            self._in_flight = None
            if ticket.recurring_id and ticket.recurring_id in self._recurring:
                self._recurring[ticket.recurring_id].pending = False


scheduler = JobScheduler()
