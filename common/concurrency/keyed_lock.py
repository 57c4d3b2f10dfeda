"""
Per-key asyncio locks.

Serializes coroutines that touch the same logical record inside one
process. Locks are reference counted and dropped once no coroutine holds
or waits on them, so the table does not grow with every key ever seen.

Example:
    locks = KeyedLock()

    async with locks.hold(("child-1", "video", "vid-9")):
        ...
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Hashable, List


class KeyedLock:
    """Table of asyncio locks keyed by any hashable value."""

    def __init__(self):
        # key -> [lock, waiter_count]
        self._locks: Dict[Hashable, List[Any]] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Acquire the lock for key for the duration of the context."""
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
