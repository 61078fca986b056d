from __future__ import annotations

import logging
from typing import Callable

from fastapi import HTTPException, status
from redis.exceptions import RedisError

from access_core.core.errors import AccessError, LoginLocked, MfaLocked
from access_core.core.settings import settings
from access_core.utils.rate_limit import memory_counters
from access_core.utils.redis_client import get_redis_client

logger = logging.getLogger(__name__)


def _ttl(seconds: int) -> int:
    return max(1, int(seconds))


async def rate_limit(key: str, limit: int, window_seconds: int) -> None:
    window = _ttl(window_seconds)
    try:
        pipe = get_redis_client().pipeline()
        pipe.incr(f"rl:{key}")
        pipe.expire(f"rl:{key}", window)
        count, _ = await pipe.execute()
    except RedisError:
        logger.warning("Redis unavailable for rate limiting; using in-process counters")
        count = await memory_counters.incr(f"rl:{key}", window)
    if count > limit:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"code": "rate_limited", "message": "Rate limit exceeded"},
        )


class FailureLimiter:
    """Counts failures per identifier and locks the identifier once ``limit`` is reached.

    Counting uses Redis ``INCR`` so concurrent failures for one identifier never
    lose updates. The window starts at the first failure.
    """

    def __init__(
        self,
        namespace: str,
        *,
        limit: Callable[[], int],
        window_seconds: Callable[[], int],
        locked_error: type[AccessError],
    ) -> None:
        self.namespace = namespace
        self._limit = limit
        self._window_seconds = window_seconds
        self._locked_error = locked_error

    def _fail_key(self, identifier: str) -> str:
        return f"{self.namespace}:fail:{identifier}"

    def _lock_key(self, identifier: str) -> str:
        return f"{self.namespace}:lock:{identifier}"

    async def ensure_not_locked(self, identifier: str) -> None:
        lock_key = self._lock_key(identifier)
        try:
            locked = bool(await get_redis_client().exists(lock_key))
        except RedisError:
            logger.warning("Redis unavailable for %s lockout check; using in-process counters", self.namespace)
            locked = await memory_counters.is_locked(lock_key)
        if locked:
            raise self._locked_error()

    async def register_failure(self, identifier: str) -> int:
        """Record one failure; returns the count and locks when the limit is hit."""
        window = _ttl(self._window_seconds())
        fail_key = self._fail_key(identifier)
        lock_key = self._lock_key(identifier)
        try:
            redis = get_redis_client()
            attempts = await redis.incr(fail_key)
            if attempts == 1:
                await redis.expire(fail_key, window)
            if attempts >= self._limit():
                await redis.set(lock_key, 1, ex=window)
                await redis.delete(fail_key)
        except RedisError:
            logger.warning("Redis unavailable for %s failure count; using in-process counters", self.namespace)
            attempts = await memory_counters.incr(fail_key, window)
            if attempts >= self._limit():
                await memory_counters.lock(lock_key, window)
        if attempts >= self._limit():
            logger.warning(
                "Identifier locked after repeated failures",
                extra={"limiter": self.namespace, "identifier": identifier, "attempts": attempts},
            )
        return attempts

    async def reset(self, identifier: str) -> None:
        try:
            await get_redis_client().delete(self._fail_key(identifier), self._lock_key(identifier))
        except RedisError:
            await memory_counters.reset(self._fail_key(identifier))
            await memory_counters.reset(self._lock_key(identifier))


login_failures = FailureLimiter(
    "login",
    limit=lambda: settings.login_attempt_limit,
    window_seconds=lambda: settings.login_lockout_minutes * 60,
    locked_error=LoginLocked,
)

mfa_failures = FailureLimiter(
    "mfa",
    limit=lambda: settings.mfa_failure_limit,
    window_seconds=lambda: settings.mfa_failure_window_minutes * 60,
    locked_error=MfaLocked,
)
