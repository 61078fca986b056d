from __future__ import annotations

import asyncio
import logging
import secrets
from functools import lru_cache
from typing import Optional

from access_core.core.security import pwd_context, verify_password
from access_core.core.settings import settings

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return pwd_context.hash(secrets.token_urlsafe(16))


def constant_time_verify(password_hash: Optional[str], password: str) -> bool:
    if password_hash:
        return verify_password(password, password_hash)
    # Dummy verification to equalize timing
    verify_password(password, _dummy_hash())
    return False


async def verify_secret(
    password_hash: Optional[str], password: str, *, timeout: float | None = None
) -> bool:
    """Check ``password`` off the event loop; a timeout counts as a mismatch."""
    limit = settings.verify_timeout_seconds if timeout is None else timeout
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(constant_time_verify, password_hash, password), timeout=limit
        )
    except asyncio.TimeoutError:
        logger.warning("Credential verification timed out after %.1fs", limit)
        return False
