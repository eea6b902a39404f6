"""
Per-key asyncio locks.

Serializes mutations of one record without blocking unrelated records.
Entries are reference counted and dropped once no task holds or awaits them.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List


class KeyedLocks:
    """Registry of asyncio locks keyed by record id."""

    def __init__(self):
        self._locks: Dict[str, List] = {}  # key -> [lock, waiters]

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for `key` for the duration of the block."""
        entry = self._locks.get(key)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._locks[key] = entry
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
