from typing import Optional, Union

from fastapi import APIRouter, Depends, Request, Response, status

from access_core.api import deps
from access_core.core.limiter import limiter
from access_core.core.settings import settings
from access_core.schemas.auth import (
    AccountCreateRequest,
    ChangePasswordRequest,
    ChangePasswordResponse,
    LoginRequest,
    LogoutRequest,
    MfaChallenge,
    PermissionsOut,
    ProfileUpdateRequest,
    RefreshRequest,
    SessionTokens,
    SetupStatus,
    UserOut,
    VerifyMfaRequest,
)
from access_core.services.auth_manager import AuthResult, AuthSessionManager

router = APIRouter(prefix="/auth", tags=["auth"])


def _login_limit() -> str:
    return f"{settings.rate_limit_per_minute}/minute"


def _session_tokens(manager: AuthSessionManager, result: AuthResult) -> SessionTokens:
    return SessionTokens(
        token=result.session.access_token,
        refresh_token=result.session.refresh_token,
        expires_at=result.session.expires_at,
        user=UserOut.model_validate(result.user),
        permissions=manager.capabilities.as_dict() if manager.capabilities else {},
    )


def _echo_device_id(response: Response, device_id: Optional[str]) -> None:
    if device_id:
        response.headers[deps.DEVICE_ID_HEADER] = device_id


@router.get("/setup-status", response_model=SetupStatus)
async def setup_status(manager: AuthSessionManager = Depends(deps.get_auth_manager)) -> SetupStatus:
    return SetupStatus(
        needs_first_time_setup=manager.needs_first_time_setup,
        authenticated=manager.is_authenticated,
    )


@router.post("/setup-admin", response_model=SessionTokens, status_code=status.HTTP_201_CREATED)
@limiter.limit(_login_limit)
async def setup_admin(
    payload: AccountCreateRequest,
    request: Request,
    manager: AuthSessionManager = Depends(deps.get_auth_manager),
) -> SessionTokens:
    result = await manager.setup_admin(**payload.model_dump())
    return _session_tokens(manager, result)


@router.post("/signup", response_model=SessionTokens, status_code=status.HTTP_201_CREATED)
@limiter.limit(_login_limit)
async def signup(
    payload: AccountCreateRequest,
    request: Request,
    manager: AuthSessionManager = Depends(deps.get_auth_manager),
) -> SessionTokens:
    result = await manager.signup(**payload.model_dump())
    return _session_tokens(manager, result)


@router.post("/login", response_model=Union[SessionTokens, MfaChallenge])
@limiter.limit(_login_limit)
async def login(
    credentials: LoginRequest,
    request: Request,
    response: Response,
    manager: AuthSessionManager = Depends(deps.get_auth_manager),
) -> Union[SessionTokens, MfaChallenge]:
    result = await manager.login(credentials.username, credentials.password, manager.client.device_id)
    _echo_device_id(response, result.device_id)
    if result.mfa_required:
        return MfaChallenge(
            reason=result.reason,
            challenge_token=result.challenge_token,
            device_id=result.device_id,
        )
    return _session_tokens(manager, result)


@router.post("/verify-mfa", response_model=SessionTokens)
@limiter.limit(_login_limit)
async def verify_mfa(
    payload: VerifyMfaRequest,
    request: Request,
    response: Response,
    manager: AuthSessionManager = Depends(deps.get_auth_manager),
) -> SessionTokens:
    result = await manager.verify_mfa(
        payload.username,
        payload.code,
        remember_device=payload.remember_me,
        challenge_token=payload.challenge_token,
    )
    _echo_device_id(response, result.device_id)
    return _session_tokens(manager, result)


@router.post("/refresh-token", response_model=SessionTokens)
async def refresh_token(
    payload: RefreshRequest,
    manager: AuthSessionManager = Depends(deps.get_auth_manager),
) -> SessionTokens:
    result = await manager.refresh(payload.refresh_token)
    return _session_tokens(manager, result)


@router.post("/logout")
async def logout(
    payload: Optional[LogoutRequest] = None,
    token: Optional[str] = Depends(deps.oauth2_scheme),
    manager: AuthSessionManager = Depends(deps.get_auth_manager),
) -> dict:
    await manager.logout((payload.token if payload else None) or token)
    return {"message": "Logout successful"}


@router.post("/logout-all")
async def logout_all(manager: AuthSessionManager = Depends(deps.require_session)) -> dict:
    revoked = await manager.logout_all()
    return {"message": "All sessions revoked", "revoked_count": revoked}


@router.get("/profile", response_model=UserOut)
async def get_profile(manager: AuthSessionManager = Depends(deps.require_session)) -> UserOut:
    return UserOut.model_validate(manager.account)


@router.put("/profile", response_model=UserOut)
async def update_profile(
    payload: ProfileUpdateRequest,
    manager: AuthSessionManager = Depends(deps.require_session),
) -> UserOut:
    user = await manager.update_profile(**payload.model_dump(exclude_unset=True))
    return UserOut.model_validate(user)


@router.put("/change-password", response_model=ChangePasswordResponse)
async def change_password(
    payload: ChangePasswordRequest,
    manager: AuthSessionManager = Depends(deps.require_session),
) -> ChangePasswordResponse:
    revoked = await manager.change_password(payload.current_password, payload.new_password)
    return ChangePasswordResponse(message="Password changed successfully", sessions_revoked=revoked)


@router.get("/permissions", response_model=PermissionsOut)
async def permissions(manager: AuthSessionManager = Depends(deps.require_session)) -> PermissionsOut:
    capabilities = await manager.refresh_permissions()
    return PermissionsOut(role=capabilities.role, permissions=capabilities.as_dict())
