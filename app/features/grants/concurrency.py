"""
Per-scope-key write serialization and request ordering.
"""
import asyncio
import threading
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


def role_scope_key(role_id: int, program_id: int) -> str:
    return f"role:{role_id}:program:{program_id}"


def user_scope_key(user_id: int) -> str:
    return f"user:{user_id}"


class KeyedLock:
    """
    One asyncio.Lock per scope key.

    Writers to the same key queue behind each other; writers to different
    keys never contend. Locks are dropped once nobody holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def is_held(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


class SequenceClock:
    """
    Strictly increasing request sequence numbers.

    Based on wall-clock nanoseconds so a writer keeps increasing across
    restarts. Sequences are only meaningful within one writer's origin.
    """

    def __init__(self) -> None:
        self._last = 0
        self._guard = threading.Lock()

    def next(self) -> int:
        with self._guard:
            self._last = max(self._last + 1, time.time_ns())
            return self._last


scope_locks = KeyedLock()
