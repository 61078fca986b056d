from pydantic import BaseModel, Field


class TfaStatus(BaseModel):
    enabled: bool
    remaining_backup_codes: int = 0


class TfaSetupResponse(BaseModel):
    secret: str
    otpauth_url: str


class TfaCodeRequest(BaseModel):
    code: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class TfaDisableRequest(BaseModel):
    password: str = Field(min_length=1)


class BackupCodesResponse(BaseModel):
    backup_codes: list[str]
