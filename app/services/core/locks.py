"""
Per-query locks.

Serializes the call-lifecycle mutations of a single query inside one
process: accept, start, end, and the resolve/transfer cascade. Different
queries never contend. Across processes the partial unique index on
call_sessions is the backstop.

Usage:
    async with lock_registry.lock(query_id):
        ...
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class QueryLockRegistry:
    """One asyncio.Lock per query id, dropped again when nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def lock(self, query_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(query_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[query_id] = lock
        self._waiters[query_id] = self._waiters.get(query_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            remaining = self._waiters[query_id] - 1
            if remaining:
                self._waiters[query_id] = remaining
            else:
                del self._waiters[query_id]
                del self._locks[query_id]

    def is_locked(self, query_id: str) -> bool:
        lock = self._locks.get(query_id)
        return bool(lock and lock.locked())

    def __len__(self) -> int:
        return len(self._locks)
