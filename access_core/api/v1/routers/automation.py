from fastapi import APIRouter, Depends, HTTPException, Query, status

from access_core.api import deps
from access_core.core.permissions import Capability
from access_core.jobs import session_cleanup
from access_core.jobs.scheduler import scheduler
from access_core.schemas.jobs import JobHistoryList, JobHistoryOut, JobTriggered
from access_core.services.auth_manager import AuthSessionManager

router = APIRouter(prefix="/automation", tags=["automation"])

require_settings_admin = deps.require_capability(Capability.MANAGE_SETTINGS)


@router.post(
    "/session-cleanup/trigger",
    response_model=JobTriggered,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_session_cleanup(
    manager: AuthSessionManager = Depends(require_settings_admin),
) -> JobTriggered:
    try:
        ticket = session_cleanup.trigger(scheduler)
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "scheduler_unavailable", "message": str(exc)},
        ) from exc
    return JobTriggered(job_id=ticket.job_id, job_name=ticket.name)


@router.get("/jobs", response_model=JobHistoryList)
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=200),
    manager: AuthSessionManager = Depends(require_settings_admin),
) -> JobHistoryList:
    entries = await session_cleanup.recent_history(manager.db, limit=limit)
    return JobHistoryList(jobs=[JobHistoryOut.model_validate(entry) for entry in entries])
