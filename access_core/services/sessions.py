from __future__ import annotations

import ipaddress
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from access_core.core.errors import SessionInvalid, SessionNotFound
from access_core.core.security import (
    ACCESS_TOKEN_TYPE,
    create_access_token,
    decode_token,
    generate_refresh_token,
    hash_token,
)
from access_core.core.settings import settings
from access_core.models.user import User
from access_core.models.user_session import UserSession
from access_core.services.device_trust import device_fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientContext:
    """Device and network descriptors of the calling client."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    device_id: Optional[str] = None


@dataclass(frozen=True)
class CreatedSession:
    id: str
    access_token: str
    refresh_token: str
    expires_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_user_agent(user_agent: Optional[str]) -> dict[str, str]:
    if not user_agent:
        return {"browser": "Unknown", "os": "Unknown", "device": "Unknown"}
    ua = user_agent.lower()

    if "edg" in ua:
        browser = "Edge"
    elif "opr/" in ua or "opera" in ua:
        browser = "Opera"
    elif "chrome" in ua or "crios" in ua:
        browser = "Chrome"
    elif "firefox" in ua or "fxios" in ua:
        browser = "Firefox"
    elif "safari" in ua:
        browser = "Safari"
    else:
        browser = "Unknown"

    if "windows" in ua:
        os_name = "Windows"
    elif "android" in ua:
        os_name = "Android"
    elif "iphone" in ua or "ipad" in ua:
        os_name = "iOS"
    elif "macintosh" in ua or "mac os" in ua:
        os_name = "macOS"
    elif "linux" in ua:
        os_name = "Linux"
    else:
        os_name = "Unknown"

    if "tablet" in ua or "ipad" in ua:
        device = "Tablet"
    elif "mobile" in ua:
        device = "Mobile"
    else:
        device = "Desktop"
    return {"browser": browser, "os": os_name, "device": device}


def location_hint(ip_address: Optional[str]) -> dict[str, str]:
    """Coarse location; no geo database is consulted."""
    if not ip_address:
        return {"country": "Unknown", "city": "Unknown"}
    try:
        address = ipaddress.ip_address(ip_address)
    except ValueError:
        return {"country": "Unknown", "city": "Unknown"}
    if address.is_private or address.is_loopback or address.is_link_local:
        return {"country": "Local", "city": "Local Network"}
    return {"country": "Unknown", "city": "Unknown"}


def session_lifetime(mfa_remembered: bool) -> timedelta:
    if mfa_remembered:
        return timedelta(days=settings.tfa_remember_me_days)
    return timedelta(days=settings.session_ttl_days)


def build_session(
    user: User,
    client: ClientContext,
    *,
    session_id: str,
    refresh_token: str,
    access_token: str,
    mfa_remembered: bool,
    now: datetime,
) -> UserSession:
    """A new row is never reclaimable: it expires in the future and is not revoked."""
    return UserSession(
        id=session_id,
        user_id=user.id,
        refresh_token_hash=hash_token(refresh_token),
        access_token_hash=hash_token(access_token),
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        device_fingerprint=device_fingerprint(client.device_id),
        last_activity=now,
        created_at=now,
        expires_at=now + session_lifetime(mfa_remembered),
        is_revoked=False,
        mfa_remembered=mfa_remembered,
        login_count=1,
        last_login_ip=client.ip_address,
    )


async def create_session(
    db: AsyncSession,
    user: User,
    client: ClientContext,
    *,
    mfa_remembered: bool = False,
) -> CreatedSession:
    now = _utcnow()
    session_id = str(uuid.uuid4())
    refresh_token = generate_refresh_token()
    access_token = create_access_token(str(user.id), session_id)
    record = build_session(
        user,
        client,
        session_id=session_id,
        refresh_token=refresh_token,
        access_token=access_token,
        mfa_remembered=mfa_remembered,
        now=now,
    )
    db.add(record)
    await db.commit()
    await check_suspicious_activity(db, user_id=user.id, now=now)
    return CreatedSession(
        id=session_id,
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=record.expires_at,
    )


async def check_suspicious_activity(db: AsyncSession, *, user_id, now: datetime) -> bool:
    """Warn when an account fans out over many networks or devices within a day."""
    stmt = select(UserSession.ip_address, UserSession.device_fingerprint).where(
        UserSession.user_id == user_id,
        UserSession.created_at >= now - timedelta(hours=24),
        UserSession.is_revoked.is_(False),
    )
    rows = (await db.execute(stmt)).all()
    unique_ips = {row[0] for row in rows}
    unique_devices = {row[1] for row in rows}
    threshold = settings.suspicious_activity_threshold
    if len(unique_ips) > threshold or len(unique_devices) > threshold:
        logger.warning(
            "Suspicious session activity",
            extra={"user_id": str(user_id), "unique_ips": len(unique_ips), "unique_devices": len(unique_devices)},
        )
        return True
    return False


def annotate_sessions(
    records: Iterable[UserSession], current_session_id: Optional[str]
) -> list[dict[str, Any]]:
    return [
        {
            "id": record.id,
            "ip_address": record.ip_address,
            "user_agent": record.user_agent,
            "device_info": parse_user_agent(record.user_agent),
            "location_info": location_hint(record.ip_address),
            "last_activity": record.last_activity,
            "created_at": record.created_at,
            "expires_at": record.expires_at,
            "mfa_remembered": bool(record.mfa_remembered),
            "is_current_session": record.id == current_session_id,
        }
        for record in records
    ]


async def list_sessions(
    db: AsyncSession,
    *,
    user_id,
    current_session_id: Optional[str],
    now: Optional[datetime] = None,
) -> list[dict[str, Any]]:
    stmt = (
        select(UserSession)
        .where(
            UserSession.user_id == user_id,
            UserSession.is_revoked.is_(False),
            UserSession.expires_at > (now or _utcnow()),
        )
        .order_by(UserSession.last_activity.desc())
    )
    records = (await db.execute(stmt)).scalars().all()
    return annotate_sessions(records, current_session_id)


async def revoke_session(db: AsyncSession, *, user_id, session_id: str) -> bool:
    """Revoke one of the account's sessions.

    Returns ``False`` when it was already revoked; that still counts as success.
    """
    result = await db.execute(select(UserSession).where(UserSession.id == session_id))
    record = result.scalar_one_or_none()
    if record is None or record.user_id != user_id:
        raise SessionNotFound()
    if record.is_revoked:
        return False
    record.is_revoked = True
    db.add(record)
    await db.commit()
    return True


async def revoke_by_id(db: AsyncSession, session_id: str) -> None:
    await db.execute(
        update(UserSession)
        .where(UserSession.id == session_id, UserSession.is_revoked.is_(False))
        .values(is_revoked=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def revoke_all_except(db: AsyncSession, *, user_id, current_session_id: Optional[str]) -> int:
    conditions = [UserSession.user_id == user_id, UserSession.is_revoked.is_(False)]
    if current_session_id is not None:
        conditions.append(UserSession.id != current_session_id)
    stmt = (
        update(UserSession)
        .where(*conditions)
        .values(is_revoked=True)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount or 0


async def revoke_all(db: AsyncSession, *, user_id) -> int:
    return await revoke_all_except(db, user_id=user_id, current_session_id=None)


async def reclaim(db: AsyncSession, *, now: Optional[datetime] = None) -> int:
    """Delete every expired or revoked session; returns the number removed."""
    stmt = (
        delete(UserSession)
        .where(UserSession.is_reclaimable_at(now or _utcnow()))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount or 0


async def _load_live_account(db: AsyncSession, record: UserSession) -> User:
    user = await db.get(User, record.user_id)
    if user is None or not user.is_active:
        raise SessionInvalid("Account is inactive")
    return user


async def validate_access_token(
    db: AsyncSession, token: str, *, now: Optional[datetime] = None
) -> tuple[UserSession, User]:
    """Re-check a bearer token against its server-side session and touch it."""
    now = now or _utcnow()
    try:
        payload = decode_token(token, expected_type=ACCESS_TOKEN_TYPE)
    except ValueError as exc:
        raise SessionInvalid("Invalid token") from exc
    session_id = payload.get("sid")
    if not session_id:
        raise SessionInvalid("Invalid token")

    result = await db.execute(select(UserSession).where(UserSession.id == session_id))
    record = result.scalar_one_or_none()
    if record is None or record.is_revoked:
        raise SessionInvalid("Session has been revoked")
    if record.expires_at < now:
        await revoke_by_id(db, record.id)
        raise SessionInvalid("Session has expired")
    idle_limit = timedelta(minutes=settings.session_inactivity_timeout_minutes)
    if record.last_activity and now - record.last_activity > idle_limit:
        await revoke_by_id(db, record.id)
        raise SessionInvalid("Session timed out due to inactivity")
    if record.access_token_hash != hash_token(token):
        raise SessionInvalid("Token does not match session")
    if str(record.user_id) != str(payload.get("sub")):
        raise SessionInvalid("Invalid token")

    user = await _load_live_account(db, record)
    record.last_activity = now
    db.add(record)
    await db.commit()
    return record, user


async def refresh_session(
    db: AsyncSession, refresh_token: str, *, now: Optional[datetime] = None
) -> tuple[UserSession, User, str]:
    """Issue a new access token for the session owning ``refresh_token``."""
    now = now or _utcnow()
    result = await db.execute(
        select(UserSession).where(UserSession.refresh_token_hash == hash_token(refresh_token))
    )
    record = result.scalar_one_or_none()
    if record is None or record.is_revoked or record.expires_at < now:
        raise SessionInvalid("Invalid refresh token")
    user = await _load_live_account(db, record)

    access_token = create_access_token(str(user.id), record.id)
    record.access_token_hash = hash_token(access_token)
    record.last_activity = now
    db.add(record)
    await db.commit()
    return record, user, access_token
