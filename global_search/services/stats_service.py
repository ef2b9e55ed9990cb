"""Operational counters and event lists for the search services.

Counters live in one Redis hash so every API process and worker shares
them. Recording is best-effort: a Redis outage is logged at debug level
and never interrupts searching or indexing.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..config import settings
from .redis_service import RedisService, redis_service

logger = logging.getLogger(__name__)

CACHE_HITS = "cache_hits"
CACHE_MISSES = "cache_misses"
FEDERATION_FAILURES = "federation_failures"
INDEX_CREATED = "index_created"
INDEX_RECREATED = "index_recreated"
JOBS_FAILED = "jobs_failed"
SEARCHES = "searches"
# Summed whole milliseconds, divided by SEARCHES for the average
SEARCH_TIME_MS = "search_time_ms"

COUNTERS = (
    CACHE_HITS,
    CACHE_MISSES,
    FEDERATION_FAILURES,
    INDEX_CREATED,
    INDEX_RECREATED,
    JOBS_FAILED,
    SEARCHES,
    SEARCH_TIME_MS,
)


class StatsService:
    """Shared counters plus capped lists of notable events."""

    def __init__(self, redis: Optional[RedisService] = None) -> None:
        self.redis = redis or redis_service

    @property
    def counters_key(self) -> str:
        return f"{settings.cache_prefix}stats"

    def events_key(self, kind: str) -> str:
        return f"{settings.cache_prefix}events:{kind}"

    async def increment(self, counter: str, amount: int = 1) -> None:
        if not self.redis.is_connected:
            return
        try:
            await self.redis.hincr(self.counters_key, counter, amount)
        except Exception as e:
            logger.debug("Failed to record stat %s: %s", counter, e)

    async def record_event(self, kind: str, **details: Any) -> None:
        """Append an event to the capped ``kind`` list."""
        if not self.redis.is_connected:
            return
        event = {"at": datetime.now(timezone.utc).isoformat(), **details}
        try:
            await self.redis.push_capped(
                self.events_key(kind), event, settings.stats_max_events
            )
        except Exception as e:
            logger.debug("Failed to record %s event: %s", kind, e)

    async def cache_hit(self) -> None:
        await self.increment(CACHE_HITS)

    async def cache_miss(self) -> None:
        await self.increment(CACHE_MISSES)

    async def federation_failure(self, index_name: str, error: str) -> None:
        await self.increment(FEDERATION_FAILURES)

    async def index_created(self, index_name: str, primary_key: str) -> None:
        await self.increment(INDEX_CREATED)

    async def index_recreated(
        self, index_name: str, old_primary_key: Optional[str], new_primary_key: str
    ) -> None:
        await self.increment(INDEX_RECREATED)
        await self.record_event(
            INDEX_RECREATED,
            index=index_name,
            old_primary_key=old_primary_key,
            new_primary_key=new_primary_key,
        )

    async def job_failed(self, payload: dict[str, Any], error: str) -> None:
        await self.increment(JOBS_FAILED)
        await self.record_event(JOBS_FAILED, payload=payload, error=error)

    async def search_completed(self, elapsed_ms: float) -> None:
        await self.increment(SEARCHES)
        await self.increment(SEARCH_TIME_MS, int(round(elapsed_ms)))

    async def get_stats(self) -> dict[str, Any]:
        """Counter snapshot with the derived cache hit rate and average search time.

        Returns zeroed counters when Redis is unavailable.
        """
        counters = {name: 0 for name in COUNTERS}
        recent_recreations: list[dict] = []
        recent_failures: list[dict] = []
        if self.redis.is_connected:
            try:
                counters.update(await self.redis.hgetall_int(self.counters_key))
                recent_recreations = await self.redis.list_json(
                    self.events_key(INDEX_RECREATED), count=10
                )
                recent_failures = await self.redis.list_json(
                    self.events_key(JOBS_FAILED), count=10
                )
            except Exception as e:
                logger.warning("Failed to read stats: %s", e)

        lookups = counters[CACHE_HITS] + counters[CACHE_MISSES]
        return {
            **counters,
            "cache_hit_rate": round(counters[CACHE_HITS] / lookups, 4) if lookups else 0.0,
            "avg_search_time_ms": (
                round(counters[SEARCH_TIME_MS] / counters[SEARCHES], 2) if counters[SEARCHES] else 0.0
            ),
            "recent_recreations": recent_recreations,
            "recent_job_failures": recent_failures,
        }


stats_service = StatsService()
