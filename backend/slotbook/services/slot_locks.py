"""
In-process per-slot mutual exclusion with a bounded wait.

The database row lock (SELECT ... FOR UPDATE) serializes writers across
processes. This registry serializes writers inside one process before they
touch the database at all, which gives the same guarantee on engines that
ignore FOR UPDATE (SQLite) and keeps waiting requests off the connection pool.

Locks live in a weak-value map: a slot's lock exists only while some request
holds or waits for it.
"""

import asyncio
import time
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator

from slotbook.core.exceptions import ConcurrentConflictError
from slotbook.core.metrics import slot_lock_wait


class SlotLocks:
    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, slot_id: int) -> asyncio.Lock:
        lock = self._locks.get(slot_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[slot_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, slot_id: int, timeout: float) -> AsyncIterator[None]:
        """
        Hold the slot's lock for the body of the block.
        Raises ConcurrentConflictError if it cannot be acquired within `timeout`.
        """
        lock = self._lock_for(slot_id)
        started = time.perf_counter()
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ConcurrentConflictError(
                f"Timed out waiting for slot {slot_id}. Please try again.",
                slot_id=slot_id,
            ) from None
        finally:
            slot_lock_wait.observe(time.perf_counter() - started)

        try:
            yield
        finally:
            lock.release()
