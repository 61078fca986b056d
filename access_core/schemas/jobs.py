from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel


class JobTriggered(BaseModel):
    job_id: str
    job_name: str
    status: str = "queued"


class JobHistoryOut(BaseModel):
    id: UUID
    job_id: str
    queue_name: str
    job_name: str
    status: str
    attempt_number: int
    error_message: Optional[str] = None
    output: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JobHistoryList(BaseModel):
    jobs: list[JobHistoryOut]
