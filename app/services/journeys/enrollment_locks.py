"""Per-key asyncio locks so one enrollment is only ever advanced by one task at a time."""

import asyncio
import weakref
from contextlib import asynccontextmanager


class EnrollmentLockRegistry:
    """
    Hands out one ``asyncio.Lock`` per key.

    Locks are dropped once nobody holds or waits on them. This only covers
    a single process; across processes the enrollment version column and
    the processed-event key catch the race.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self.lock_for(key)
        async with lock:
            yield lock

    def __len__(self) -> int:
        return len(self._locks)
