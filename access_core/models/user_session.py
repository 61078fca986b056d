from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, func, or_
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.hybrid import hybrid_method

from access_core.db.base import Base


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(String(36), primary_key=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    refresh_token_hash = Column(String(64), nullable=False, unique=True)
    access_token_hash = Column(String(64), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_fingerprint = Column(String(32), nullable=True, index=True)
    last_activity = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_revoked = Column(Boolean, nullable=False, default=False, server_default="false")
    mfa_remembered = Column(Boolean, nullable=False, default=False, server_default="false")
    login_count = Column(Integer, nullable=False, default=1, server_default="1")
    last_login_ip = Column(String(64), nullable=True)

    @hybrid_method
    def is_reclaimable_at(self, now: datetime) -> bool:
        return bool(self.is_revoked) or self.expires_at < now

    @is_reclaimable_at.expression
    def is_reclaimable_at(cls, now: datetime):
        return or_(cls.expires_at < now, cls.is_revoked.is_(True))
