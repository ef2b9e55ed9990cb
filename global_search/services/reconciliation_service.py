"""Index structure reconciliation before writes.

Before documents are written, the physical index must exist and carry the
primary key the mapping declares:

- missing index        -> create it with the declared primary key
- wrong primary key    -> delete and recreate it (destructive: every
                          document in it is lost until the next full reindex)
- matching primary key -> nothing to do

After a create or recreate the index settings are polled until the engine
reports the declared key or the attempt ceiling is hit; exhaustion only
logs a warning and the caller proceeds.

Reconciliation of one physical index is serialized across processes with
a Redis lock so two workers can never interleave delete-and-recreate with
each other's writes.
"""

import asyncio
import logging
from typing import Optional

from ..config import Settings, settings as default_settings
from .meilisearch_service import (
    IndexNotFoundError,
    MeilisearchService,
    SearchEngineError,
    meilisearch_service,
)
from .redis_service import RedisService, redis_service
from .stats_service import StatsService, stats_service

logger = logging.getLogger(__name__)

# Reconciliation outcomes
OK = "ok"
CREATED = "created"
RECREATED = "recreated"


class IndexReconciler:
    """Ensures a physical index exists with the declared primary key."""

    def __init__(
        self,
        engine: Optional[MeilisearchService] = None,
        redis: Optional[RedisService] = None,
        stats: Optional[StatsService] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or default_settings
        self.engine = engine or meilisearch_service
        self.redis = redis or redis_service
        self.stats = stats or stats_service

    def lock_name(self, index_name: str) -> str:
        return f"{self.config.cache_prefix}lock:reconcile:{index_name}"

    async def reconcile(self, index_name: str, primary_key: str) -> str:
        """Bring ``index_name`` in line with ``primary_key``.

        Returns:
            "ok", "created" or "recreated"

        Raises:
            SearchEngineError: an engine call failed (the job is retried)
            redis.exceptions.LockError: the reconcile lock was not acquired in time
        """
        if not self.redis.is_connected:
            return await self._reconcile(index_name, primary_key)

        lock = self.redis.lock(
            self.lock_name(index_name), timeout=self.config.reconcile_lock_timeout
        )
        async with lock:
            return await self._reconcile(index_name, primary_key)

    async def _reconcile(self, index_name: str, primary_key: str) -> str:
        try:
            current = await self.engine.get_settings(index_name)
        except IndexNotFoundError:
            logger.info(
                "Index %s not found, creating it with primary key %r", index_name, primary_key
            )
            await self.engine.create_index(index_name, primary_key)
            await self.stats.index_created(index_name, primary_key)
            await self.wait_for_primary_key(index_name, primary_key)
            return CREATED

        existing = current.get("primaryKey")
        if existing == primary_key:
            return OK

        logger.warning(
            "Index %s has primary key %r, expected %r. Deleting and recreating it; "
            "its documents are lost until the next full reindex",
            index_name, existing, primary_key,
        )
        await self.engine.delete_index(index_name)
        await self.engine.create_index(index_name, primary_key)
        await self.stats.index_recreated(index_name, existing, primary_key)
        await self.wait_for_primary_key(index_name, primary_key)
        return RECREATED

    async def wait_for_primary_key(self, index_name: str, primary_key: str) -> bool:
        """Poll until the engine reports ``primary_key`` for the index.

        Returns:
            True when the key converged, False when the attempts ran out
        """
        interval = self.config.reconcile_poll_interval_ms / 1000
        attempts = self.config.reconcile_max_attempts

        for attempt in range(1, attempts + 1):
            try:
                current = await self.engine.get_settings(index_name)
                if current.get("primaryKey") == primary_key:
                    logger.debug(
                        "Index %s primary key converged after %d attempt(s)", index_name, attempt
                    )
                    return True
            except SearchEngineError as e:
                logger.debug("Polling %s (attempt %d) failed: %s", index_name, attempt, e)

            if attempt < attempts:
                await asyncio.sleep(interval)

        logger.warning(
            "Index %s did not report primary key %r after %d attempts; continuing",
            index_name, primary_key, attempts,
        )
        return False
