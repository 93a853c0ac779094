"""Per-device serialization of lifecycle operations within one process."""

import asyncio
import logging
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class DeviceLocks:
    """One asyncio.Lock per device ID.

    Locks are held weakly and disappear once no task holds or awaits them.
    Different devices never contend.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, device_id: str) -> asyncio.Lock:
        lock = self._locks.get(device_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[device_id] = lock
        return lock

    def is_locked(self, device_id: str) -> bool:
        lock = self._locks.get(device_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, device_id: str) -> AsyncIterator[None]:
        lock = self._lock_for(device_id)
        if lock.locked():
            logger.debug("device_lock_contended", extra={"device_id": device_id})
        async with lock:
            yield
