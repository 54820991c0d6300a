"""Per-pool mutual exclusion for capacity-affecting operations."""

import asyncio
import logging
import time
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, Tuple

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    A map of asyncio locks keyed by an identifier.

    Entries are reference-counted and dropped once no task holds or waits
    on them, so the map only ever contains keys that are in use. Operations
    on different keys never block each other.

    This guards a single process only. Deployments that share one database
    between processes also take a database-level lock inside the
    transaction (see ``PoolService.get_pool_with_lock``).
    """

    def __init__(self, name: str = "keyed"):
        self.name = name
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock, refs = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, refs + 1)
        return lock

    def _release(self, key: str) -> None:
        lock, refs = self._locks[key]
        if refs <= 1:
            del self._locks[key]
        else:
            self._locks[key] = (lock, refs - 1)

    @asynccontextmanager
    async def acquire(self, key) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        key = str(key)
        lock = self._checkout(key)
        started = time.monotonic()
        try:
            async with lock:
                waited = time.monotonic() - started
                if waited > 1.0:
                    logger.warning(
                        "Slow lock acquisition",
                        extra={"lock": self.name, "key": key, "waited_seconds": round(waited, 3)}
                    )
                yield
        finally:
            self._release(key)

    @asynccontextmanager
    async def acquire_many(self, keys: Iterable) -> AsyncIterator[None]:
        """
        Hold several keys at once.

        Keys are taken in sorted order so two callers locking overlapping
        sets cannot deadlock.
        """
        ordered = sorted({str(key) for key in keys})
        async with AsyncExitStack() as stack:
            for key in ordered:
                await stack.enter_async_context(self.acquire(key))
            yield

    def is_locked(self, key) -> bool:
        entry = self._locks.get(str(key))
        return entry is not None and entry[0].locked()

    def waiting(self, key) -> int:
        """Number of tasks holding or queued on ``key``."""
        entry = self._locks.get(str(key))
        return entry[1] if entry is not None else 0

    def __len__(self) -> int:
        return len(self._locks)


# Process-wide pool locks shared by every service instance
pool_locks = KeyedLock(name="pool")
