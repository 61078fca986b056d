from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class DeviceInfo(BaseModel):
    browser: str
    os: str
    device: str


class LocationInfo(BaseModel):
    country: str
    city: str


class SessionOut(BaseModel):
    id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_info: DeviceInfo
    location_info: LocationInfo
    last_activity: Optional[datetime] = None
    created_at: Optional[datetime] = None
    expires_at: datetime
    mfa_remembered: bool = False
    is_current_session: bool = False


class SessionList(BaseModel):
    sessions: list[SessionOut]


class SessionRevokeResponse(BaseModel):
    message: str
    already_revoked: bool = False


class SessionRevokeAllResponse(BaseModel):
    message: str
    revoked_count: int
