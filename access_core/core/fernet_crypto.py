from __future__ import annotations

import base64
from functools import lru_cache

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from access_core.core.settings import settings

_DEFAULT_DEV_KDF_SALT = "access-core-fernet-dev-salt-v1"


def _effective_kdf_salt(secret: str) -> bytes:
    configured = (settings.fernet_kdf_salt or "").strip()
    if configured:
        return configured.encode("utf-8")
    # Development fallback; deployments set FERNET_KDF_SALT.
    return f"{_DEFAULT_DEV_KDF_SALT}:{secret[:16]}".encode("utf-8")


@lru_cache(maxsize=16)
def _fernet_for_secret(secret: str) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_effective_kdf_salt(secret),
        iterations=max(100_000, settings.fernet_kdf_iterations),
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8"))))


def encrypt_text(value: str, *, secret: str | None = None) -> str:
    fernet = _fernet_for_secret(secret or settings.secret_key)
    return fernet.encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_text(token: str, *, secret: str | None = None) -> str:
    fernet = _fernet_for_secret(secret or settings.secret_key)
    return fernet.decrypt(token.encode("utf-8")).decode("utf-8")
