from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from access_core.core.errors import PasswordPolicyError
from access_core.core.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"
MFA_CHALLENGE_TOKEN_TYPE = "mfa_challenge"


def get_password_hash(password: str) -> str:
    min_len = settings.default_password_min_length
    if len(password) < min_len:
        raise PasswordPolicyError(f"Password must be at least {min_len} characters")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def hash_token(token: str) -> str:
    """Digest stored in place of bearer/refresh tokens."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_refresh_token() -> str:
    return secrets.token_hex(64)


class JWTKeyError(RuntimeError):
    pass


@lru_cache(maxsize=1)
def _load_private_key() -> str:
    if settings.jwt_private_key:
        return settings.jwt_private_key
    if settings.jwt_private_key_path:
        return _read_key(settings.jwt_private_key_path)
    raise JWTKeyError("JWT private key not configured")


@lru_cache(maxsize=1)
def _load_public_key() -> str:
    if settings.jwt_public_key:
        return settings.jwt_public_key
    if settings.jwt_public_key_path:
        return _read_key(settings.jwt_public_key_path)
    raise JWTKeyError("JWT public key not configured")


def _read_key(path: str) -> str:
    with open(path, "r", encoding="utf-8") as key_file:
        return key_file.read()


def _encode(claims: dict[str, Any], expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    to_encode = {**claims, "iat": now, "exp": now + expires_delta}
    return jwt.encode(to_encode, _load_private_key(), algorithm=settings.jwt_algorithm)


def create_access_token(
    subject: str, session_id: str, expires_delta: timedelta | None = None
) -> str:
    return _encode(
        {"sub": subject, "sid": session_id, "type": ACCESS_TOKEN_TYPE},
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_mfa_challenge_token(subject: str) -> str:
    """Short-lived proof that the password step succeeded for ``subject``."""
    return _encode(
        {"sub": subject, "type": MFA_CHALLENGE_TOKEN_TYPE},
        timedelta(minutes=settings.mfa_challenge_expire_minutes),
    )


def decode_token(
    token: str, expected_type: str | None = None, *, allow_expired: bool = False
) -> dict[str, Any]:
    public_key = _load_public_key()
    try:
        payload = jwt.decode(
            token,
            public_key,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": not allow_expired},
        )
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if expected_type and payload.get("type") != expected_type:
        raise ValueError(f"Unexpected token type: {payload.get('type')}")
    return payload
