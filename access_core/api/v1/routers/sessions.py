from fastapi import APIRouter, Depends

from access_core.api import deps
from access_core.core.errors import CurrentSessionRevoke
from access_core.core.logging import audit
from access_core.schemas.sessions import SessionList, SessionRevokeAllResponse, SessionRevokeResponse
from access_core.services import sessions
from access_core.services.auth_manager import AuthSessionManager

router = APIRouter(prefix="/auth/sessions", tags=["sessions"])


@router.get("", response_model=SessionList)
async def list_sessions(manager: AuthSessionManager = Depends(deps.require_session)) -> SessionList:
    records = await sessions.list_sessions(
        manager.db, user_id=manager.account.id, current_session_id=manager.session_id
    )
    return SessionList(sessions=records)


@router.delete("/{session_id}", response_model=SessionRevokeResponse)
async def revoke_session(
    session_id: str,
    manager: AuthSessionManager = Depends(deps.require_session),
) -> SessionRevokeResponse:
    if session_id == manager.session_id:
        raise CurrentSessionRevoke()
    revoked = await sessions.revoke_session(manager.db, user_id=manager.account.id, session_id=session_id)
    if not revoked:
        return SessionRevokeResponse(message="Session already revoked", already_revoked=True)
    audit("sessions.revoked", user_id=str(manager.account.id), revoked_session_id=session_id)
    return SessionRevokeResponse(message="Session revoked successfully")


@router.delete("", response_model=SessionRevokeAllResponse)
async def revoke_other_sessions(
    manager: AuthSessionManager = Depends(deps.require_session),
) -> SessionRevokeAllResponse:
    revoked = await sessions.revoke_all_except(
        manager.db, user_id=manager.account.id, current_session_id=manager.session_id
    )
    audit("sessions.revoked_others", user_id=str(manager.account.id), revoked=revoked)
    return SessionRevokeAllResponse(message="Other sessions revoked", revoked_count=revoked)
