from fastapi import APIRouter, Depends

from access_core.api import deps
from access_core.models import ApiToken

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/whoami")
async def whoami(token: ApiToken = Depends(deps.require_api_scope("token", "get"))) -> dict:
    """Describe the calling API key; the key needs the ``token:get`` grant."""
    return {
        "token_key": token.token_key,
        "token_name": token.token_name,
        "integration_type": token.integration_type,
        "scopes": token.scopes or {},
        "expires_at": token.expires_at,
    }
