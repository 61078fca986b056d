from fastapi import APIRouter, Depends

from access_core.api import deps
from access_core.schemas.tfa import (
    BackupCodesResponse,
    TfaCodeRequest,
    TfaDisableRequest,
    TfaSetupResponse,
    TfaStatus,
)
from access_core.services import tfa
from access_core.services.auth_manager import AuthSessionManager

router = APIRouter(prefix="/tfa", tags=["tfa"])


@router.get("/status", response_model=TfaStatus)
async def tfa_status(manager: AuthSessionManager = Depends(deps.require_session)) -> TfaStatus:
    return TfaStatus(**await tfa.status(manager.db, manager.account))


@router.post("/setup", response_model=TfaSetupResponse)
async def tfa_setup(manager: AuthSessionManager = Depends(deps.require_session)) -> TfaSetupResponse:
    enrollment = await tfa.setup(manager.db, manager.account)
    return TfaSetupResponse(secret=enrollment.secret, otpauth_url=enrollment.otpauth_url)


@router.post("/verify-setup", response_model=BackupCodesResponse)
async def tfa_verify_setup(
    payload: TfaCodeRequest,
    manager: AuthSessionManager = Depends(deps.require_session),
) -> BackupCodesResponse:
    codes = await tfa.verify_setup(manager.db, manager.account, payload.code)
    return BackupCodesResponse(backup_codes=codes)


@router.post("/disable")
async def tfa_disable(
    payload: TfaDisableRequest,
    manager: AuthSessionManager = Depends(deps.require_session),
) -> dict:
    await tfa.disable(manager.db, manager.account, payload.password)
    return {"message": "Two-factor authentication disabled"}


@router.post("/regenerate-backup-codes", response_model=BackupCodesResponse)
async def tfa_regenerate_backup_codes(
    manager: AuthSessionManager = Depends(deps.require_session),
) -> BackupCodesResponse:
    codes = await tfa.regenerate_backup_codes(manager.db, manager.account)
    return BackupCodesResponse(backup_codes=codes)
