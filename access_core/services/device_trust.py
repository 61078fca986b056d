from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from access_core.core.settings import settings
from access_core.models.trusted_device import TrustedDevice

logger = logging.getLogger(__name__)


def device_fingerprint(device_id: Optional[str]) -> Optional[str]:
    if not device_id:
        return None
    return hashlib.sha256(device_id.encode("utf-8")).hexdigest()[:32]


def is_trust_active(trust: Optional[TrustedDevice], now: datetime) -> bool:
    return trust is not None and trust.trusted_until > now


async def _get_trust(db: AsyncSession, user_id, device_hash: str) -> Optional[TrustedDevice]:
    stmt = select(TrustedDevice).where(
        TrustedDevice.user_id == user_id,
        TrustedDevice.device_hash == device_hash,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def is_trusted(
    db: AsyncSession,
    *,
    user_id,
    device_id: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    """Whether ``device_id`` may skip the second factor for this account right now."""
    device_hash = device_fingerprint(device_id)
    if device_hash is None:
        return False
    trust = await _get_trust(db, user_id, device_hash)
    return is_trust_active(trust, now or datetime.now(timezone.utc))


async def _evict_oldest(db: AsyncSession, *, user_id, now: datetime) -> None:
    """Drop expired entries, then the least recently used active ones over the cap."""
    await db.execute(
        delete(TrustedDevice).where(
            TrustedDevice.user_id == user_id,
            TrustedDevice.trusted_until <= now,
        )
    )
    count_stmt = select(func.count()).select_from(TrustedDevice).where(
        TrustedDevice.user_id == user_id,
        TrustedDevice.trusted_until > now,
    )
    active = (await db.execute(count_stmt)).scalar() or 0
    overflow = active - settings.tfa_max_remembered_devices + 1
    if overflow <= 0:
        return
    oldest_stmt = (
        select(TrustedDevice.id)
        .where(TrustedDevice.user_id == user_id, TrustedDevice.trusted_until > now)
        .order_by(TrustedDevice.last_used_at.asc().nulls_first(), TrustedDevice.created_at.asc())
        .limit(overflow)
    )
    oldest_ids = (await db.execute(oldest_stmt)).scalars().all()
    if oldest_ids:
        await db.execute(delete(TrustedDevice).where(TrustedDevice.id.in_(oldest_ids)))
        logger.info("Evicted remembered devices over the per-account limit", extra={"evicted": len(oldest_ids)})


async def remember(
    db: AsyncSession,
    *,
    user_id,
    device_id: str,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TrustedDevice:
    """Upsert the trust entry for (account, device) with a fresh expiry window."""
    now = now or datetime.now(timezone.utc)
    device_hash = device_fingerprint(device_id)
    if device_hash is None:
        raise ValueError("device_id is required to remember a device")
    trusted_until = now + timedelta(days=settings.tfa_remember_me_days)

    trust = await _get_trust(db, user_id, device_hash)
    if trust is None:
        await _evict_oldest(db, user_id=user_id, now=now)
        trust = TrustedDevice(
            user_id=user_id,
            device_hash=device_hash,
            trusted_until=trusted_until,
            user_agent=user_agent,
            ip_address=ip_address,
            last_used_at=now,
        )
        db.add(trust)
        try:
            await db.commit()
            return trust
        except IntegrityError:
            # A concurrent request inserted the same pair first.
            await db.rollback()
            trust = await _get_trust(db, user_id, device_hash)
            if trust is None:
                raise

    trust.trusted_until = trusted_until
    trust.last_used_at = now
    trust.user_agent = user_agent or trust.user_agent
    trust.ip_address = ip_address or trust.ip_address
    db.add(trust)
    await db.commit()
    return trust


async def forget_all(db: AsyncSession, *, user_id) -> None:
    await db.execute(delete(TrustedDevice).where(TrustedDevice.user_id == user_id))
