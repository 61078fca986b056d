from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from access_core.api import deps
from access_core.core.permissions import Capability
from access_core.schemas.api_tokens import ApiTokenCreate, ApiTokenCreated, ApiTokenOut
from access_core.services import api_tokens
from access_core.services.auth_manager import AuthSessionManager

router = APIRouter(prefix="/api-tokens", tags=["api-tokens"])

require_settings_admin = deps.require_capability(Capability.MANAGE_SETTINGS)


@router.get("", response_model=list[ApiTokenOut])
async def list_api_tokens(manager: AuthSessionManager = Depends(require_settings_admin)) -> list[ApiTokenOut]:
    tokens = await api_tokens.list_tokens(manager.db)
    return [ApiTokenOut.model_validate(token) for token in tokens]


@router.post("", response_model=ApiTokenCreated, status_code=status.HTTP_201_CREATED)
async def create_api_token(
    payload: ApiTokenCreate,
    manager: AuthSessionManager = Depends(require_settings_admin),
) -> ApiTokenCreated:
    try:
        token, secret = await api_tokens.issue_token(
            manager.db,
            token_name=payload.token_name,
            created_by_user_id=manager.account.id,
            integration_type=payload.integration_type,
            scopes=payload.scopes,
            allowed_ip_ranges=payload.allowed_ip_ranges,
            expires_at=payload.expires_at,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_token_request", "message": str(exc)},
        ) from exc
    out = ApiTokenOut.model_validate(token)
    return ApiTokenCreated(**out.model_dump(), token_secret=secret)


@router.delete("/{token_id}", response_model=ApiTokenOut)
async def deactivate_api_token(
    token_id: UUID,
    manager: AuthSessionManager = Depends(require_settings_admin),
) -> ApiTokenOut:
    token = await api_tokens.deactivate_token(manager.db, token_id)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "not_found", "message": "API token not found"},
        )
    return ApiTokenOut.model_validate(token)
