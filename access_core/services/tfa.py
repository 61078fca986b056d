from __future__ import annotations

import hashlib
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import pyotp
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from access_core.core.errors import InvalidCredentials, MfaInvalid, TfaStateError
from access_core.core.fernet_crypto import decrypt_text, encrypt_text
from access_core.core.logging import audit
from access_core.core.settings import settings
from access_core.models.user import User
from access_core.models.user_mfa_recovery_code import UserMfaRecoveryCode
from access_core.models.user_tfa_credential import UserTfaCredential
from access_core.services import device_trust
from access_core.services.credentials import verify_secret

logger = logging.getLogger(__name__)

RECOVERY_CODE_COUNT = 10
RECOVERY_CODE_LENGTH = 8  # 8-character codes like "A1B2-C3D4"
RECOVERY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0, O, 1, I
TOTP_CODE_PATTERN = re.compile(r"^\d{6}$")


@dataclass(frozen=True)
class TfaEnrollment:
    secret: str
    otpauth_url: str


def generate_totp_secret() -> str:
    return pyotp.random_base32()


def build_totp_uri(secret: str, account_name: str, issuer: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=issuer)


def verify_totp(secret: str, code: str, for_time: Optional[datetime] = None) -> bool:
    """Accept the current time step or one step either side."""
    return pyotp.TOTP(secret).verify(code, for_time=for_time, valid_window=1)


def normalize_code(code: str) -> str:
    return "".join(code.split())


def is_totp_shaped(code: str) -> bool:
    return bool(TOTP_CODE_PATTERN.match(normalize_code(code)))


# ─── Recovery Codes ───────────────────────────────────────────────────────────


def _generate_recovery_code() -> str:
    code = "".join(secrets.choice(RECOVERY_CODE_ALPHABET) for _ in range(RECOVERY_CODE_LENGTH))
    return f"{code[:4]}-{code[4:]}"


def hash_recovery_code(code: str) -> str:
    normalized = normalize_code(code).upper().replace("-", "")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


async def _replace_recovery_codes(db: AsyncSession, *, user_id) -> list[str]:
    """Swap the account's codes for a fresh set; caller commits."""
    await db.execute(delete(UserMfaRecoveryCode).where(UserMfaRecoveryCode.user_id == user_id))
    await db.flush()

    plain_codes = [_generate_recovery_code() for _ in range(RECOVERY_CODE_COUNT)]
    for code in plain_codes:
        db.add(UserMfaRecoveryCode(user_id=user_id, code_hash=hash_recovery_code(code)))
    return plain_codes


async def consume_recovery_code(db: AsyncSession, *, user_id, code: str) -> bool:
    """Mark one unused code as used.

    The ``used_at IS NULL`` predicate makes the update the arbiter: two requests
    racing on the same code cannot both see a row count of one.
    """
    stmt = (
        update(UserMfaRecoveryCode)
        .where(
            UserMfaRecoveryCode.user_id == user_id,
            UserMfaRecoveryCode.code_hash == hash_recovery_code(code),
            UserMfaRecoveryCode.used_at.is_(None),
        )
        .values(used_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    await db.commit()
    return result.rowcount == 1


async def remaining_recovery_codes(db: AsyncSession, *, user_id) -> int:
    stmt = select(func.count()).select_from(UserMfaRecoveryCode).where(
        UserMfaRecoveryCode.user_id == user_id,
        UserMfaRecoveryCode.used_at.is_(None),
    )
    result = await db.execute(stmt)
    return result.scalar() or 0


# ─── Enrollment ───────────────────────────────────────────────────────────────


async def get_credential(db: AsyncSession, *, user_id) -> Optional[UserTfaCredential]:
    result = await db.execute(select(UserTfaCredential).where(UserTfaCredential.user_id == user_id))
    return result.scalar_one_or_none()


async def setup(db: AsyncSession, user: User) -> TfaEnrollment:
    """Generate a pending secret; the account keeps its current MFA state."""
    if user.mfa_enabled:
        raise TfaStateError("Two-factor authentication is already enabled")
    secret = generate_totp_secret()
    credential = await get_credential(db, user_id=user.id)
    if credential is None:
        credential = UserTfaCredential(user_id=user.id, enabled=False)
    credential.pending_secret_encrypted = encrypt_text(secret)
    db.add(credential)
    await db.commit()
    return TfaEnrollment(
        secret=secret,
        otpauth_url=build_totp_uri(secret, user.email or user.username, settings.tfa_issuer),
    )


async def verify_setup(db: AsyncSession, user: User, code: str) -> list[str]:
    """Activate the pending secret and return the one-time display of backup codes."""
    credential = await get_credential(db, user_id=user.id)
    if credential is None or not credential.pending_secret_encrypted:
        raise TfaStateError("Two-factor setup has not been started")
    pending_secret = decrypt_text(credential.pending_secret_encrypted)
    if not verify_totp(pending_secret, normalize_code(code)):
        raise MfaInvalid()

    credential.secret_encrypted = credential.pending_secret_encrypted
    credential.pending_secret_encrypted = None
    credential.enabled = True
    credential.confirmed_at = datetime.now(timezone.utc)
    user.mfa_enabled = True
    db.add(credential)
    db.add(user)
    codes = await _replace_recovery_codes(db, user_id=user.id)
    await db.commit()
    audit("tfa.enabled", user_id=str(user.id))
    return codes


async def disable(db: AsyncSession, user: User, password: str) -> None:
    """Turn MFA off after re-checking the account password."""
    if not user.mfa_enabled:
        raise TfaStateError("Two-factor authentication is not enabled")
    if not await verify_secret(user.hashed_password, password):
        raise InvalidCredentials("Invalid password")

    user.mfa_enabled = False
    db.add(user)
    await db.execute(delete(UserTfaCredential).where(UserTfaCredential.user_id == user.id))
    await db.execute(delete(UserMfaRecoveryCode).where(UserMfaRecoveryCode.user_id == user.id))
    await device_trust.forget_all(db, user_id=user.id)
    await db.commit()
    audit("tfa.disabled", user_id=str(user.id))


async def regenerate_backup_codes(db: AsyncSession, user: User) -> list[str]:
    if not user.mfa_enabled:
        raise TfaStateError("Two-factor authentication is not enabled")
    codes = await _replace_recovery_codes(db, user_id=user.id)
    await db.commit()
    audit("tfa.backup_codes_regenerated", user_id=str(user.id))
    return codes


async def verify_code(db: AsyncSession, user: User, code: str) -> bool:
    """Validate exactly one factor.

    Six digits are checked as a TOTP code only; anything else is treated as a
    backup code only, so at most one backup code is consumed per call.
    """
    normalized = normalize_code(code)
    if not normalized:
        return False
    if is_totp_shaped(normalized):
        credential = await get_credential(db, user_id=user.id)
        if credential is None or not credential.enabled or not credential.secret_encrypted:
            return False
        return verify_totp(decrypt_text(credential.secret_encrypted), normalized)
    consumed = await consume_recovery_code(db, user_id=user.id, code=normalized)
    if consumed:
        logger.info("Backup code consumed", extra={"user_id": str(user.id)})
    return consumed


async def status(db: AsyncSession, user: User) -> dict:
    remaining = await remaining_recovery_codes(db, user_id=user.id) if user.mfa_enabled else 0
    return {"enabled": bool(user.mfa_enabled), "remaining_backup_codes": remaining}
