"""Per-(framework, old version, new version) locks for drift scans.

One registry is created per application lifespan and kept on ``app.state``.
"""
import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

ScanKey = tuple[str, str, str]


class ScanLockRegistry:
    def __init__(self) -> None:
        self._locks: dict[ScanKey, asyncio.Lock] = {}
        self._waiters: dict[ScanKey, int] = {}

    @asynccontextmanager
    async def hold(self, key: ScanKey) -> AsyncIterator[None]:
        """Serialize scans of one tuple; the lock entry is dropped when unused."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if not self._waiters[key]:
                del self._waiters[key]
                self._locks.pop(key, None)
