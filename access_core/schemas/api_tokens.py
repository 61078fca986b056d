from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from access_core.services.api_tokens import PROGRAMMATIC_INTEGRATION, normalize_scope_map


class ApiTokenCreate(BaseModel):
    token_name: str = Field(min_length=1, max_length=255)
    integration_type: str = Field(default=PROGRAMMATIC_INTEGRATION, max_length=50)
    scopes: Optional[dict[str, list[str]]] = None
    allowed_ip_ranges: list[str] = Field(default_factory=list)
    expires_at: Optional[datetime] = None

    @field_validator("scopes", mode="before")
    @classmethod
    def _check_scopes(cls, value):
        return normalize_scope_map(value)


class ApiTokenOut(BaseModel):
    id: UUID
    token_name: str
    token_key: str
    integration_type: str
    scopes: Optional[dict[str, list[str]]] = None
    allowed_ip_ranges: list[str] = Field(default_factory=list)
    is_active: bool
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApiTokenCreated(ApiTokenOut):
    token_secret: str
