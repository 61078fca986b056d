from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from access_core.core.settings import settings
from access_core.db.session import session_scope
from access_core.jobs.scheduler import JobScheduler, JobTicket
from access_core.models.job_history import JobHistory
from access_core.services import sessions

logger = logging.getLogger(__name__)

QUEUE_NAME = "session-cleanup"
JOB_NAME = "cleanup-expired-sessions"
RECURRING_JOB_ID = "session-cleanup-recurring"

STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


async def _record_start(db: AsyncSession, ticket: JobTicket) -> Optional[JobHistory]:
    entry = JobHistory(
        job_id=ticket.job_id,
        queue_name=QUEUE_NAME,
        job_name=ticket.name,
        status=STATUS_ACTIVE,
        attempt_number=1,
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Could not record job start", extra={"job_id": ticket.job_id})
        await db.rollback()
        return None
    return entry


async def _record_finish(
    db: AsyncSession,
    entry: Optional[JobHistory],
    *,
    status: str,
    output: Optional[dict[str, Any]] = None,
    error_message: Optional[str] = None,
) -> None:
    if entry is None:
        return
    entry.status = status
    entry.output = output
    entry.error_message = error_message
    entry.completed_at = datetime.now(timezone.utc)
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError:
        logger.exception("Could not record job outcome", extra={"job_id": entry.job_id})
        await db.rollback()


async def process(ticket: JobTicket) -> int:
    """Delete revoked and expired sessions; returns how many rows went."""
    async with session_scope() as db:
        entry = await _record_start(db, ticket)
        try:
            reclaimed = await sessions.reclaim(db)
        except Exception as exc:
            await db.rollback()
            await _record_finish(db, entry, status=STATUS_FAILED, error_message=str(exc))
            raise
        await _record_finish(db, entry, status=STATUS_COMPLETED, output={"itemsReclaimed": reclaimed})
        return reclaimed


def register(scheduler: JobScheduler) -> bool:
    return scheduler.register_recurring(
        RECURRING_JOB_ID,
        JOB_NAME,
        timedelta(minutes=settings.session_cleanup_interval_minutes),
        process,
    )


def trigger(scheduler: JobScheduler) -> JobTicket:
    return scheduler.trigger_manual(JOB_NAME, process)


async def recent_history(db: AsyncSession, *, limit: int = 50) -> list[JobHistory]:
    stmt = (
        select(JobHistory)
        .where(JobHistory.queue_name == QUEUE_NAME)
        .order_by(JobHistory.created_at.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
