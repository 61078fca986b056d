from typing import Optional

from fastapi import Depends, Header, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from access_core.core.errors import CapabilityDenied, SessionInvalid
from access_core.core.permissions import Capability
from access_core.db.session import get_db
from access_core.models import ApiToken
from access_core.services import api_tokens
from access_core.services.auth_manager import AuthSessionManager
from access_core.services.sessions import ClientContext

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)

DEVICE_ID_HEADER = "X-Device-ID"


def get_client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


async def get_client_context(
    request: Request,
    device_id: Optional[str] = Header(default=None, alias=DEVICE_ID_HEADER),
) -> ClientContext:
    return ClientContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        device_id=(device_id or "").strip() or None,
    )


async def get_auth_manager(
    token: Optional[str] = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
    client: ClientContext = Depends(get_client_context),
) -> AuthSessionManager:
    """Run the restore step for this request; the manager comes back READY."""
    manager = AuthSessionManager(db, client)
    await manager.start(token)
    return manager


async def require_session(manager: AuthSessionManager = Depends(get_auth_manager)) -> AuthSessionManager:
    if not manager.is_authenticated:
        raise manager.restore_error or SessionInvalid("Authentication required")
    return manager


def require_capability(capability: Capability | str):
    target = Capability(capability)

    async def dependency(manager: AuthSessionManager = Depends(require_session)) -> AuthSessionManager:
        if manager.capabilities is None or not manager.capabilities.has(target):
            raise CapabilityDenied(f"Missing capability: {target.value}")
        return manager

    return dependency


async def get_api_token(
    request: Request,
    db: AsyncSession = Depends(get_db_session),
) -> ApiToken:
    return await api_tokens.authenticate(
        db,
        request.headers.get("authorization"),
        integration_type=api_tokens.PROGRAMMATIC_INTEGRATION,
        client_ip=get_client_ip(request),
    )


def require_api_scope(resource: str, action: str):
    async def dependency(token: ApiToken = Depends(get_api_token)) -> ApiToken:
        api_tokens.validate_scope(token, resource, action)
        return token

    return dependency
