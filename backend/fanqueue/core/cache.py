"""
Redis-backed coordination store for the queue engine.
Provides:
- Cross-worker locks for the per-event critical section
- Background service heartbeats (notification sweep)
Falls back gracefully if Redis is unavailable.
"""
import json
import logging
import time
from typing import Any, Optional

import redis.asyncio as redis

from fanqueue.core.config import settings

logger = logging.getLogger(__name__)


class CacheService:
    """
    Thin async wrapper around Redis.
    Every method degrades to a no-op when the connection is down.
    """

    TTL_SERVICE_HEALTH = 300  # 5 minutes without a heartbeat means unhealthy

    PREFIX_DISTRIBUTED_LOCK = "lock"
    PREFIX_SERVICE_HEALTH = "service_health"

    def __init__(self, redis_url: Optional[str] = None):
        self._redis_url = redis_url or settings.REDIS_URL
        self._redis: Optional[redis.Redis] = None
        self._connected = False
        self._connection_attempted = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        if self._connection_attempted:
            return self._connected

        self._connection_attempted = True

        try:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5
            )
            await self._redis.ping()
            self._connected = True
            logger.info(f"Connected to Redis at {self._redis_url}")
            return True
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Falling back to in-process coordination.")
            self._connected = False
            self._redis = None
            return False

    async def close(self):
        if self._redis:
            await self._redis.close()
            self._connected = False

    def _make_key(self, prefix: str, *parts: str) -> str:
        return f"{prefix}:{':'.join(str(p) for p in parts)}"

    async def get(self, key: str) -> Optional[Any]:
        if not self._connected:
            return None

        try:
            value = await self._redis.get(key)
            if value:
                return json.loads(value)
            return None
        except Exception as e:
            logger.warning(f"Cache get failed for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool:
        if not self._connected:
            return False

        try:
            await self._redis.setex(key, ttl, json.dumps(value, default=str))
            return True
        except Exception as e:
            logger.warning(f"Cache set failed for {key}: {e}")
            return False

    # ==================== Distributed Locking ====================

    async def acquire_lock(self, resource: str, lock_id: str, ttl_seconds: int = 30) -> bool:
        """
        Try once to take the lock for `resource`.

        Returns:
            True if this caller now owns the lock, False if someone else does
        """
        if not self._connected:
            return False

        key = self._make_key(self.PREFIX_DISTRIBUTED_LOCK, resource)
        # SET NX with expiry so a crashed worker cannot hold an event forever
        result = await self._redis.set(key, lock_id, nx=True, ex=ttl_seconds)
        return result is not None

    async def release_lock(self, resource: str, lock_id: str) -> bool:
        """Release the lock only if `lock_id` still owns it."""
        if not self._connected:
            return False

        try:
            key = self._make_key(self.PREFIX_DISTRIBUTED_LOCK, resource)
            lua_script = """
            if redis.call("get", KEYS[1]) == ARGV[1] then
                return redis.call("del", KEYS[1])
            else
                return 0
            end
            """
            result = await self._redis.eval(lua_script, 1, key, lock_id)
            return result == 1
        except Exception as e:
            logger.warning(f"Lock release failed for {resource}: {e}")
            return False

    # ==================== Service Health ====================

    async def update_service_health(self, service_name: str, status: str, metrics: dict = None) -> bool:
        """
        Record a heartbeat for a background service.

        Args:
            service_name: Name of the service (e.g., "notification_scheduler")
            status: Current status ("running", "error", "stopped")
            metrics: Optional metrics dict (sweep_count, last_error, etc.)
        """
        key = self._make_key(self.PREFIX_SERVICE_HEALTH, service_name)
        health_data = {
            "status": status,
            "last_heartbeat": time.time(),
            "metrics": metrics or {}
        }
        return await self.set(key, health_data, self.TTL_SERVICE_HEALTH)

    async def get_service_health(self, service_name: str) -> Optional[dict]:
        key = self._make_key(self.PREFIX_SERVICE_HEALTH, service_name)
        return await self.get(key)


# Global cache instance
_cache_instance: Optional[CacheService] = None


async def get_cache() -> CacheService:
    """Get the global cache instance, initializing if needed."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = CacheService()
        await _cache_instance.connect()
    return _cache_instance


async def close_cache():
    global _cache_instance
    if _cache_instance:
        await _cache_instance.close()
        _cache_instance = None
