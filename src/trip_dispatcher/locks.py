"""Per-trip serialization of read-modify-write cycles.

The record store has no row locking or optimistic concurrency, so the sweep
and the inbound workers take the trip's lock around every reload, mutation
and save.  Locks are created on first use and discarded once no task holds
or waits for them.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class TripLocks:
    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, trip_id: str) -> AsyncIterator[None]:
        """Hold the lock for *trip_id* for the duration of the block."""
        lock = self._locks.setdefault(trip_id, asyncio.Lock())
        self._users[trip_id] = self._users.get(trip_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[trip_id] -= 1
            if self._users[trip_id] == 0:
                del self._users[trip_id]
                del self._locks[trip_id]

    def locked(self, trip_id: str) -> bool:
        lock = self._locks.get(trip_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
