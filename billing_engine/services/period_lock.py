"""
Per-(project, period) generation lock.

Serializes invoice generation for the same project and period within this
process, from the aggregation read through the commit. Across processes the
unique (project_id, active_period_key) constraint on invoices is the guard.
"""
import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Dict, Tuple


LockKey = Tuple[uuid.UUID, date, date]


class PeriodLockRegistry:
    """asyncio.Lock per (project, period_start, period_end), dropped when idle."""

    def __init__(self):
        self._locks: Dict[LockKey, asyncio.Lock] = {}
        self._waiters: Dict[LockKey, int] = {}

    @asynccontextmanager
    async def hold(self, project_id: uuid.UUID, period_start: date, period_end: date) -> AsyncIterator[None]:
        key = (project_id, period_start, period_end)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_locked(self, project_id: uuid.UUID, period_start: date, period_end: date) -> bool:
        lock = self._locks.get((project_id, period_start, period_end))
        return bool(lock and lock.locked())


period_locks = PeriodLockRegistry()
