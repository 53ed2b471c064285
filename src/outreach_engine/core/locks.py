"""Per-key async locking.

Each client is a single-writer resource: transitions for the same
client id run one at a time, different ids run in parallel.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

from outreach_engine.core.exceptions import TransientIOError


class KeyedLock:
    """Mutex per key, created on demand and dropped when idle.

    Usage:
        locks = KeyedLock()
        async with locks.hold(client_id):
            ...
    """

    def __init__(self, acquire_timeout: float | None = None) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}
        self._acquire_timeout = acquire_timeout

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            if self._acquire_timeout is None:
                await lock.acquire()
            else:
                try:
                    await asyncio.wait_for(lock.acquire(), self._acquire_timeout)
                except asyncio.TimeoutError as e:
                    raise TransientIOError(
                        "Timed out waiting for client lock",
                        details={"key": str(key)},
                        cause=e,
                    ) from e
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]
