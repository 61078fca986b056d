import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Text, func
from sqlalchemy.dialects.postgresql import UUID

from access_core.db.base import Base


class UserTfaCredential(Base):
    __tablename__ = "user_tfa_credentials"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    # Both secrets are Fernet tokens; the pending one only becomes active after verify-setup.
    secret_encrypted = Column(Text, nullable=True)
    pending_secret_encrypted = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=False, server_default="false")
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
