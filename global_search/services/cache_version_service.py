"""Per-index version counters used as cache-invalidation tokens.

Every successful write job against a physical index bumps its counter once.
Federated search reads the counters into its cache key, so a bump makes
every previously cached result for that index unreachable; the stale
entries simply expire with their TTL.
"""

import logging
from typing import Optional

from ..config import settings
from .redis_service import RedisService, redis_service

logger = logging.getLogger(__name__)


class IndexVersionStore:
    """Monotonic per-index counters stored in Redis."""

    def __init__(
        self,
        redis: Optional[RedisService] = None,
        prefix: Optional[str] = None,
    ) -> None:
        self.redis = redis or redis_service
        self.prefix = prefix if prefix is not None else settings.version_key_prefix

    def key(self, index_name: str) -> str:
        return f"{self.prefix}{index_name}"

    async def get(self, index_name: str) -> int:
        """Current version of one physical index (0 if never written)."""
        versions = await self.get_many([index_name])
        return versions[index_name]

    async def get_many(self, index_names: list[str]) -> dict[str, int]:
        """Current versions for several physical indexes in one round trip.

        Returns a dict preserving the order of ``index_names``.
        """
        values = await self.redis.mget_int([self.key(name) for name in index_names])
        return dict(zip(index_names, values))

    async def bump(self, index_name: str) -> int:
        """Atomically increment the version of a physical index.

        Without Redis there is no result cache to invalidate, so the bump is
        skipped and 0 returned.
        """
        if not self.redis.is_connected:
            logger.warning("Redis not connected, skipping version bump for %s", index_name)
            return 0
        version = await self.redis.incr(self.key(index_name))
        logger.debug("Index version bumped: index=%s version=%d", index_name, version)
        return version


index_version_store = IndexVersionStore()
