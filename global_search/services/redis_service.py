"""Redis service for version counters, result caching, locks and stats.

This module provides a centralized Redis client for:
- Per-index version counters (cache invalidation tokens)
- Federated search result caching (JSON with TTL)
- Distributed locks (index reconciliation)
- Counters and capped event lists (stats, failed job sink)

Shared by the API process and the arq workers.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio.lock import Lock

from ..config import settings

logger = logging.getLogger(__name__)


class RedisService:
    """
    Async Redis service shared by the query path and the write path.

    Features:
    - Connection pooling with automatic reconnection
    - JSON caching with TTL support
    - Atomic counters (INCR / HINCRBY)
    - Capped lists for events and failed jobs
    - Distributed locks
    """

    def __init__(self) -> None:
        """Initialize the Redis service (not connected yet)."""
        self._redis: Optional[aioredis.Redis] = None

    async def connect(self, url: Optional[str] = None) -> None:
        """Initialize Redis connection with connection pooling."""
        self._redis = aioredis.from_url(
            url or settings.redis_url,
            max_connections=settings.redis_max_connections,
            socket_timeout=settings.redis_socket_timeout,
            retry_on_timeout=settings.redis_retry_on_timeout,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()
        logger.info("Redis connected successfully")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.close()
            self._redis = None
        logger.info("Redis disconnected")

    @property
    def client(self) -> aioredis.Redis:
        """Get Redis client instance."""
        if self._redis is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._redis

    @property
    def is_connected(self) -> bool:
        """Check if Redis is connected."""
        return self._redis is not None

    # =========================================================================
    # Caching Methods
    # =========================================================================

    async def get(self, key: str) -> Optional[str]:
        """
        Get a string value from cache.

        Args:
            key: The cache key

        Returns:
            The cached value or None if not found
        """
        return await self.client.get(key)

    async def get_json(self, key: str) -> Optional[Any]:
        """
        Get and deserialize JSON from cache.

        Args:
            key: The cache key

        Returns:
            The cached value or None if not found
        """
        value = await self.client.get(key)
        return json.loads(value) if value else None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None
    ) -> None:
        """
        Set a value in cache with optional TTL.

        Args:
            key: The cache key
            value: The value to cache (dicts/lists will be JSON-serialized)
            ttl: Time-to-live in seconds (optional)
        """
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        if ttl:
            await self.client.setex(key, ttl, value)
        else:
            await self.client.set(key, value)

    async def delete(self, key: str) -> None:
        """Delete a key from cache."""
        await self.client.delete(key)

    # =========================================================================
    # Counter Methods
    # =========================================================================

    async def incr(self, key: str) -> int:
        """Atomically increment an integer key, creating it at 1."""
        return await self.client.incr(key)

    async def mget_int(self, keys: list[str]) -> list[int]:
        """
        Read several integer keys in one round trip.

        Missing or non-numeric keys read as 0.
        """
        if not keys:
            return []
        values = await self.client.mget(keys)
        result: list[int] = []
        for value in values:
            try:
                result.append(int(value) if value is not None else 0)
            except (TypeError, ValueError):
                result.append(0)
        return result

    async def hincr(self, key: str, field: str, amount: int = 1) -> int:
        """Atomically increment a field in a hash."""
        return await self.client.hincrby(key, field, amount)

    async def hgetall_int(self, key: str) -> dict[str, int]:
        """Read a hash of integer counters."""
        raw = await self.client.hgetall(key)
        return {field: int(value) for field, value in raw.items()}

    # =========================================================================
    # Capped List Methods
    # =========================================================================

    async def push_capped(self, key: str, item: dict, max_entries: int) -> None:
        """
        Push a JSON item to the head of a list, keeping only the newest entries.

        Args:
            key: The list key
            item: JSON-serializable dictionary
            max_entries: Maximum list length to keep
        """
        await self.client.lpush(key, json.dumps(item, default=str))
        await self.client.ltrim(key, 0, max_entries - 1)

    async def list_json(self, key: str, count: int = 100) -> list[dict]:
        """Read the newest ``count`` JSON items from a list."""
        raw = await self.client.lrange(key, 0, count - 1)
        return [json.loads(item) for item in raw]

    # =========================================================================
    # Locks
    # =========================================================================

    def lock(
        self,
        name: str,
        timeout: float,
        blocking_timeout: Optional[float] = None,
    ) -> Lock:
        """
        Get a distributed lock usable as ``async with``.

        Args:
            name: Lock key
            timeout: Seconds before the lock auto-expires
            blocking_timeout: Seconds to wait for acquisition (None = timeout)
        """
        return self.client.lock(
            name,
            timeout=timeout,
            blocking_timeout=blocking_timeout if blocking_timeout is not None else timeout,
        )

    # =========================================================================
    # Health Check
    # =========================================================================

    async def health_check(self) -> dict[str, Any]:
        """
        Get Redis health status and stats.

        Returns:
            Dictionary with connection status and memory info
        """
        try:
            if not self.is_connected:
                return {"status": "disconnected"}

            info = await self.client.info("memory")
            return {
                "status": "healthy",
                "used_memory_human": info.get("used_memory_human", "unknown"),
            }
        except Exception as e:
            return {"status": "error", "error": str(e)}


# Global singleton instance
redis_service = RedisService()


async def get_redis() -> RedisService:
    """FastAPI dependency for Redis service."""
    return redis_service


__all__ = [
    "RedisService",
    "redis_service",
    "get_redis",
]
