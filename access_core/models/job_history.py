import uuid

from sqlalchemy import Column, DateTime, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from access_core.db.base import Base


class JobHistory(Base):
    __tablename__ = "job_history"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    job_id = Column(String(255), nullable=False, index=True)
    queue_name = Column(String(100), nullable=False, index=True)
    job_name = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False, server_default="1")
    error_message = Column(Text, nullable=True)
    output = Column(JSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)
