"""In-process counters used when Redis is unreachable.

Only correct for a single worker process; Redis is the shared source of truth.
"""

import asyncio
import time
from collections import defaultdict, deque
from typing import Deque, Dict


class InMemoryCounters:
    def __init__(self) -> None:
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._locks: Dict[str, float] = {}
        self._mutex = asyncio.Lock()

    def _prune(self, key: str, window_seconds: int, now: float) -> Deque[float]:
        hits = self._hits[key]
        while hits and now - hits[0] > window_seconds:
            hits.popleft()
        return hits

    async def incr(self, key: str, window_seconds: int) -> int:
        async with self._mutex:
            now = time.monotonic()
            hits = self._prune(key, window_seconds, now)
            hits.append(now)
            return len(hits)

    async def lock(self, key: str, seconds: int) -> None:
        async with self._mutex:
            self._locks[key] = time.monotonic() + seconds
            self._hits.pop(key, None)

    async def is_locked(self, key: str) -> bool:
        async with self._mutex:
            until = self._locks.get(key)
            if until is None:
                return False
            if until <= time.monotonic():
                self._locks.pop(key, None)
                return False
            return True

    async def reset(self, key: str) -> None:
        async with self._mutex:
            self._hits.pop(key, None)
            self._locks.pop(key, None)


memory_counters = InMemoryCounters()
