from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255, description="Username or email")
    password: str = Field(min_length=1)


class VerifyMfaRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=32)
    remember_me: bool = False
    challenge_token: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    token: Optional[str] = None


class AccountCreateRequest(BaseModel):
    username: str = Field(min_length=3, max_length=255)
    email: EmailStr
    password: str
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class ProfileUpdateRequest(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=255)
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class UserOut(BaseModel):
    id: UUID
    username: str
    email: EmailStr
    role: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool
    mfa_enabled: bool
    login_count: int = 0
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SessionTokens(BaseModel):
    token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserOut
    permissions: dict[str, bool]


class MfaChallenge(BaseModel):
    requires_mfa: bool = True
    reason: str
    challenge_token: str
    device_id: Optional[str] = None


class SetupStatus(BaseModel):
    needs_first_time_setup: bool
    authenticated: bool = False


class PermissionsOut(BaseModel):
    role: str
    permissions: dict[str, bool]


class ChangePasswordResponse(BaseModel):
    message: str
    sessions_revoked: int = 0
