"""
Keyed Lock Service

Provides per-key mutual exclusion for the two pieces of shared mutable state
in the engine: a workflow's version head and a workflow's environment slot.

Locks are in-process asyncio locks. Cross-process safety comes from the
database: head moves are compare-and-swap updates and a non-terminal
deployment row marks an occupied environment slot.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from flowops.core.config import settings
from flowops.core.errors import LockTimeoutError

logger = logging.getLogger(__name__)


class _LockEntry:
    __slots__ = ("lock", "waiters")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.waiters = 0


class KeyedLockService:
    """
    Service for managing named locks.

    Usage:
        async with lock_service.acquire(workflow_id, lock_type="workflow_head"):
            # only one holder per (lock_type, key) at a time
            ...
    """

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = default_timeout or settings.LOCK_TIMEOUT_SECONDS
        self._locks: Dict[str, _LockEntry] = {}

    def _generate_lock_key(self, key: str, lock_type: str) -> str:
        return f"{lock_type}:{key}"

    def is_locked(self, key: str, lock_type: str) -> bool:
        entry = self._locks.get(self._generate_lock_key(key, lock_type))
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        lock_type: str,
        timeout_seconds: Optional[float] = None
    ) -> AsyncIterator[None]:
        """
        Context manager holding the lock for `key` within `lock_type`.

        Raises:
            LockTimeoutError: if the lock could not be acquired in time
        """
        timeout = timeout_seconds or self.default_timeout
        lock_key = self._generate_lock_key(key, lock_type)
        entry = self._locks.get(lock_key)
        if entry is None:
            entry = self._locks[lock_key] = _LockEntry()
        entry.waiters += 1

        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Failed to acquire lock {lock_key} after {timeout}s timeout")
                raise LockTimeoutError(f"Timed out waiting for lock {lock_key}")

            logger.debug(f"Acquired lock {lock_key}")
            try:
                yield
            finally:
                entry.lock.release()
                logger.debug(f"Released lock {lock_key}")
        finally:
            entry.waiters -= 1
            if entry.waiters == 0 and self._locks.get(lock_key) is entry:
                del self._locks[lock_key]


lock_service = KeyedLockService()
