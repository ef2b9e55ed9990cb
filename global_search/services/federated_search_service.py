"""Federated search across several Meilisearch indexes.

One query fans out to every configured index concurrently. Hits are
weighted per index, merged into a single ranking and cached in Redis
under a key derived from the current index version counters, so any
completed write job makes older cache entries unreachable.

Request flow::

    search() -> cache check -> hit: return cached result
                            -> miss: fan out -> merge -> cache store -> return
"""

import asyncio
import hashlib
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from ..config import Settings, settings as default_settings
from ..schemas.search import SearchHit, SearchMeta, SearchResult
from .cache_version_service import IndexVersionStore, index_version_store
from .meilisearch_service import MeilisearchService, meilisearch_service
from .redis_service import RedisService, redis_service
from .stats_service import StatsService, stats_service
from .tenant_service import TenantContext

logger = logging.getLogger(__name__)

# Score multiplier for hits the engine annotated with match positions
MATCHED_SCORE = 1.0
UNMATCHED_SCORE = 0.5
# Lower bound applied to configured index weights
MIN_WEIGHT = 0.1

SINGLE_TENANT_SENTINEL = "__single__"


def hit_score(hit: dict[str, Any], weight: float) -> float:
    """Score of one hit: match quality times the (floored) index weight."""
    quality = MATCHED_SCORE if hit.get("_matchesPosition") else UNMATCHED_SCORE
    return quality * max(MIN_WEIGHT, weight)


def sort_timestamp(value: Any) -> float:
    """Epoch seconds for the tie-break field; 0 when missing or unparseable."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            try:
                return float(value)
            except ValueError:
                return 0.0
        return sort_timestamp(parsed)
    return 0.0


def build_cache_key(
    prefix: str,
    versions: list[tuple[str, int]],
    query: str,
    filters: dict[str, Any],
    base_indexes: list[str],
    limit: int,
    tenant: Optional[str],
) -> str:
    """Content hash over everything that can change a federated result.

    Args:
        prefix: Redis key prefix
        versions: Ordered (physical index, version) pairs
        query: Search query
        filters: Base index -> engine filter
        base_indexes: Ordered base index names
        limit: Result limit
        tenant: Tenant, or None in single-tenant mode
    """
    payload = [
        [[name, version] for name, version in versions],
        query,
        filters,
        list(base_indexes),
        limit,
        tenant if tenant else SINGLE_TENANT_SENTINEL,
    ]
    digest = hashlib.sha256(
        json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode()
    ).hexdigest()
    return f"{prefix}search:{digest}"


class FederatedSearchService:
    """Fans one query out to every federated index and merges the hits."""

    def __init__(
        self,
        engine: Optional[MeilisearchService] = None,
        versions: Optional[IndexVersionStore] = None,
        redis: Optional[RedisService] = None,
        stats: Optional[StatsService] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or default_settings
        self.engine = engine or meilisearch_service
        self.versions = versions or index_version_store
        self.redis = redis or redis_service
        self.stats = stats or stats_service
        self.tenants = TenantContext(self.config)

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            limit = self.config.federation_default_limit
        return max(1, min(int(limit), self.config.federation_max_limit))

    @property
    def cache_available(self) -> bool:
        return self.config.cache_enabled and self.redis.is_connected

    async def search(
        self,
        query: str,
        filters_by_index: Optional[dict[str, Any]] = None,
        limit: Optional[int] = None,
        tenant: Optional[str] = None,
    ) -> SearchResult:
        """Search every federated index and return one merged ranking.

        A failing or slow index is excluded from the result and reported in
        ``meta.failed_indexes``; the request itself never fails because of it.

        Raises:
            ConfigurationError: multi-tenancy is on and no tenant resolves
        """
        query = (query or "").strip()
        limit = self.clamp_limit(limit)
        weights = self.config.federation_weights

        if not query or not weights:
            return SearchResult.empty(query, limit)

        start = time.perf_counter()
        tenant = self.tenants.resolve_tenant(tenant)
        filters = {k: v for k, v in (filters_by_index or {}).items() if v}
        base_indexes = list(weights)
        physical = self.tenants.resolver.resolve_many(base_indexes, tenant)

        cache_key = await self._cache_key(physical, query, filters, base_indexes, limit, tenant)
        if cache_key is not None:
            cached = await self._cache_get(cache_key)
            if cached is not None:
                await self._record_timing(query, start)
                return cached

        result = await self._fan_out(query, filters, limit, weights, physical)

        if cache_key is not None and result.hits:
            await self._cache_set(cache_key, result)
        await self._record_timing(query, start)
        return result

    async def warm(
        self,
        queries: Iterable[str],
        limit: Optional[int] = None,
        tenant: Optional[str] = None,
    ) -> dict[str, int]:
        """Run each query once so its result lands in the cache.

        Blank and repeated queries are skipped. A failing query is logged and
        counted, and the remaining queries still run.
        """
        unique = list(dict.fromkeys(q.strip() for q in queries if q and q.strip()))
        warmed = failed = 0
        for query in unique:
            try:
                await self.search(query, {}, limit, tenant)
            except Exception as e:
                logger.warning("Cache warming failed for query %r: %s", query, e)
                failed += 1
            else:
                warmed += 1
        logger.info("Warmed search cache with %d queries (%d failed)", warmed, failed)
        return {"warmed": warmed, "failed": failed}

    async def _record_timing(self, query: str, start: float) -> None:
        elapsed_ms = (time.perf_counter() - start) * 1000
        if elapsed_ms > self.config.slow_search_threshold_ms:
            logger.warning("Slow federated search for %r: %.1fms", query, elapsed_ms)
        await self.stats.search_completed(elapsed_ms)

    # ---- Cache ----

    async def _cache_key(
        self,
        physical: dict[str, str],
        query: str,
        filters: dict[str, Any],
        base_indexes: list[str],
        limit: int,
        tenant: Optional[str],
    ) -> Optional[str]:
        if not self.cache_available:
            return None
        try:
            versions = await self.versions.get_many(list(physical.values()))
        except Exception as e:
            logger.warning("Failed to read index versions, bypassing cache: %s", e)
            return None
        return build_cache_key(
            self.config.cache_prefix,
            list(versions.items()),
            query,
            filters,
            base_indexes,
            limit,
            tenant,
        )

    async def _cache_get(self, key: str) -> Optional[SearchResult]:
        try:
            cached = await self.redis.get_json(key)
        except Exception as e:
            logger.warning("Search cache read failed: %s", e)
            return None

        if cached is None:
            await self.stats.cache_miss()
            return None

        try:
            result = SearchResult.model_validate(cached)
        except ValidationError as e:
            logger.warning("Discarding malformed search cache entry %s: %s", key, e)
            await self.stats.cache_miss()
            try:
                await self.redis.delete(key)
            except Exception as err:
                logger.warning("Failed to delete search cache entry %s: %s", key, err)
            return None

        logger.debug("Search cache hit: %s", key)
        await self.stats.cache_hit()
        return result

    async def _cache_set(self, key: str, result: SearchResult) -> None:
        try:
            await self.redis.set(key, result.model_dump(mode="json"), ttl=self.config.cache_ttl)
        except Exception as e:
            logger.warning("Search cache write failed: %s", e)

    # ---- Fan-out and merge ----

    async def _search_one(
        self,
        base: str,
        index_name: str,
        query: str,
        limit: int,
        filter: Any,
    ) -> tuple[str, Optional[dict[str, Any]]]:
        start = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self.engine.search(index_name, query, limit, filter=filter),
                timeout=self.config.meilisearch_timeout,
            )
        except Exception as e:
            logger.warning("Federated search on index %s failed: %s", index_name, e)
            await self.stats.federation_failure(index_name, str(e))
            return base, None

        logger.debug(
            "Searched %s in %.1fms", index_name, (time.perf_counter() - start) * 1000
        )
        return base, response

    async def _fan_out(
        self,
        query: str,
        filters: dict[str, Any],
        limit: int,
        weights: dict[str, float],
        physical: dict[str, str],
    ) -> SearchResult:
        # Cancelling the caller cancels every per-index task with it
        responses = await asyncio.gather(
            *(
                self._search_one(base, index_name, query, limit, filters.get(base))
                for base, index_name in physical.items()
            )
        )

        hits: list[SearchHit] = []
        total = 0
        searched: list[str] = []
        failed: list[str] = []
        for base, response in responses:
            if response is None:
                failed.append(base)
                continue
            searched.append(base)
            total += int(response.get("estimatedTotalHits") or 0)
            for hit in response.get("hits") or []:
                hits.append({**hit, "_index": base, "_score": hit_score(hit, weights[base])})

        sort_field = self.config.federation_sort_field
        hits.sort(key=lambda h: (-h["_score"], -sort_timestamp(h.get(sort_field))))

        return SearchResult(
            hits=hits[:limit],
            meta=SearchMeta(
                total=total,
                indexes_searched=searched,
                failed_indexes=failed,
                query=query,
                limit=limit,
            ),
        )


federated_search_service = FederatedSearchService()


def get_federated_search() -> FederatedSearchService:
    """FastAPI dependency for the federated search service."""
    return federated_search_service
