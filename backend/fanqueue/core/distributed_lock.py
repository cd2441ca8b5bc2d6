"""
Per-event mutual exclusion for queue mutations.

Allocation, renumbering and entry transitions on one event must never
interleave. Across workers this is a Redis SET-NX lock; when Redis is not
reachable the manager falls back to one asyncio.Lock per resource, which
serialises work inside a single process. Different events never contend.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fanqueue.core.cache import CacheService, get_cache
from fanqueue.exceptions import QueueBusyError

logger = logging.getLogger(__name__)


def event_resource(event_id) -> str:
    return f"event:{event_id}"


class DistributedLockManager:

    # Redis lock TTL (seconds); longer than any single queue operation
    DEFAULT_LOCK_TTL = 30

    # Maximum time to wait for lock acquisition (seconds)
    DEFAULT_ACQUIRE_TIMEOUT = 10

    RETRY_INTERVAL = 0.05

    def __init__(self, cache: Optional[CacheService] = None):
        self._cache = cache
        self._local_locks: dict[str, asyncio.Lock] = {}
        self._local_waiters: dict[str, int] = {}  # resource -> coroutines queued on the local lock
        self._active_locks: dict[str, str] = {}  # resource -> lock_id

    async def _get_cache(self) -> CacheService:
        if self._cache is None:
            self._cache = await get_cache()
        return self._cache

    def _get_local_lock(self, resource: str) -> asyncio.Lock:
        # No await between lookup and insert, so this is atomic on the event loop
        lock = self._local_locks.get(resource)
        if lock is None:
            lock = asyncio.Lock()
            self._local_locks[resource] = lock
        return lock

    def _release_local_lock(self, resource: str) -> None:
        local_lock = self._local_locks.get(resource)
        if local_lock is None:
            return
        if local_lock.locked():
            local_lock.release()
        # Nobody holds or waits for it, so drop it instead of keeping one lock per event forever
        if not self._local_waiters.get(resource) and not local_lock.locked():
            self._local_locks.pop(resource, None)
            self._local_waiters.pop(resource, None)

    async def _acquire_remote(self, cache: CacheService, resource: str, lock_id: str, ttl: int, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if await cache.acquire_lock(resource, lock_id, ttl):
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.RETRY_INTERVAL)

    async def acquire(
        self,
        resource: str,
        ttl: int = DEFAULT_LOCK_TTL,
        timeout: float = DEFAULT_ACQUIRE_TIMEOUT,
    ) -> tuple[bool, str]:
        """
        Acquire the lock for a resource.

        The in-process lock is always taken first so that coroutines of the
        same worker queue up locally instead of polling Redis.

        Returns:
            Tuple of (acquired, lock_id)
        """
        lock_id = str(uuid.uuid4())
        local_lock = self._get_local_lock(resource)
        self._local_waiters[resource] = self._local_waiters.get(resource, 0) + 1

        try:
            await asyncio.wait_for(local_lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timeout waiting for local lock on {resource}")
            return False, lock_id
        finally:
            self._local_waiters[resource] -= 1

        cache = await self._get_cache()
        if cache.connected:
            try:
                acquired = await self._acquire_remote(cache, resource, lock_id, ttl, timeout)
            except Exception as e:
                # Redis dropped mid-flight; the local lock still serialises this worker
                logger.warning(f"Distributed lock for {resource} unavailable ({e}), using local lock only")
                acquired = True
                lock_id = f"local:{lock_id}"

            if not acquired:
                self._release_local_lock(resource)
                logger.warning(f"Timeout waiting for distributed lock on {resource}")
                return False, lock_id
        else:
            lock_id = f"local:{lock_id}"

        self._active_locks[resource] = lock_id
        logger.debug(f"Acquired lock for {resource} ({lock_id[:14]})")
        return True, lock_id

    async def release(self, resource: str, lock_id: str) -> None:
        self._active_locks.pop(resource, None)

        try:
            if not lock_id.startswith("local:"):
                cache = await self._get_cache()
                released = await cache.release_lock(resource, lock_id)
                if not released:
                    logger.warning(f"Distributed lock for {resource} had already expired")
        finally:
            self._release_local_lock(resource)
            logger.debug(f"Released lock for {resource}")

    @asynccontextmanager
    async def lock(
        self,
        resource: str,
        ttl: int = DEFAULT_LOCK_TTL,
        timeout: float = DEFAULT_ACQUIRE_TIMEOUT
    ):
        """
        Usage:
            async with lock_manager.lock(event_resource(event_id)):
                # read-modify-write the event's queue

        Raises:
            asyncio.TimeoutError: If the lock cannot be acquired within timeout
        """
        acquired, lock_id = await self.acquire(resource, ttl, timeout)

        if not acquired:
            raise asyncio.TimeoutError(f"Could not acquire lock for {resource} within {timeout}s")

        try:
            yield lock_id
        finally:
            await self.release(resource, lock_id)

    def get_active_locks_count(self) -> int:
        return len(self._active_locks)


_lock_manager: Optional[DistributedLockManager] = None


def get_lock_manager() -> DistributedLockManager:
    """Get the global lock manager instance."""
    global _lock_manager
    if _lock_manager is None:
        _lock_manager = DistributedLockManager()
    return _lock_manager


@asynccontextmanager
async def event_lock(lock_manager: DistributedLockManager, event_id, timeout: float):
    """
    Critical section for one event's queue.

    Raises:
        QueueBusyError: if the event stays locked for longer than `timeout`
    """
    resource = event_resource(event_id)
    acquired, lock_id = await lock_manager.acquire(resource, timeout=timeout)
    if not acquired:
        logger.warning(f"Gave up waiting {timeout}s for {resource}")
        raise QueueBusyError()

    try:
        yield lock_id
    finally:
        await lock_manager.release(resource, lock_id)
