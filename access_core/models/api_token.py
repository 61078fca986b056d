import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import JSONB, UUID

from access_core.db.base import Base


class ApiToken(Base):
    """Non-interactive credential authorised by its scope map."""

    __tablename__ = "api_tokens"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    token_name = Column(String(255), nullable=False)
    token_key = Column(String(64), nullable=False, unique=True, index=True)
    token_secret_hash = Column(String(255), nullable=False)
    created_by_user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    integration_type = Column(String(50), nullable=False, server_default="api")
    scopes = Column(JSONB, nullable=True)
    allowed_ip_ranges = Column(JSONB, nullable=False, server_default="[]")
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    expires_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
