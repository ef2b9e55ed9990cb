"""Federated search API endpoints.

Public:
- GET /api/search              federated search across every configured index
- GET /api/search/health       engine health plus per-index document counts
- GET /api/search/stats        cache and indexing counters

Admin (``X-Admin-Key`` header must equal ``ADMIN_API_KEY``):
- POST /api/search/index          queue an index job
- POST /api/search/delete         queue a delete job
- POST /api/search/reindex        queue a full reindex, or one base index
- POST /api/search/warm-cache     run a list of queries to fill the result cache
- POST /api/search/flush          delete every document of one index
- POST /api/search/sync-settings  push configured index settings
"""

import json
import logging
import secrets
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse

from ..config import settings
from ..exceptions import ConfigurationError
from ..schemas.job import (
    FlushRequest,
    JobAccepted,
    RecordsRequest,
    ReindexRequest,
    TenantRequest,
    WarmCacheRequest,
)
from ..schemas.search import SearchRequestMeta, SearchResponse
from ..services.federated_search_service import FederatedSearchService, get_federated_search
from ..services.indexing_service import IndexingPipeline, get_indexing_pipeline
from ..services.meilisearch_service import (
    MeilisearchService,
    SearchEngineError,
    get_search_engine,
)
from ..services.queue_service import JobDispatcher, get_job_dispatcher
from ..services.redis_service import RedisService, get_redis
from ..services.stats_service import stats_service
from ..services.tenant_service import TenantContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/search", tags=["search"])


async def require_admin(x_admin_key: Optional[str] = Header(default=None)) -> None:
    """Reject admin calls without the configured key (or when none is configured)."""
    if not settings.admin_api_key or not x_admin_key or not secrets.compare_digest(
        x_admin_key, settings.admin_api_key
    ):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Invalid admin key")


def _parse_filters(filters: Optional[str]) -> dict[str, Any]:
    if not filters:
        return {}
    try:
        parsed = json.loads(filters)
    except json.JSONDecodeError:
        raise HTTPException(400, "filters must be a JSON object")
    if not isinstance(parsed, dict):
        raise HTTPException(400, "filters must be a JSON object of index -> filter")
    return parsed


@router.get("", response_model=SearchResponse)
async def search_endpoint(
    q: str = Query(..., max_length=255),
    limit: Optional[int] = Query(default=None, ge=1),
    tenant: Optional[str] = Query(default=None, max_length=100),
    filters: Optional[str] = Query(default=None, description="JSON object of index -> filter"),
    service: FederatedSearchService = Depends(get_federated_search),
):
    """Search every federated index and return one ranked list.

    An index that fails or times out is left out of the result; the
    request still succeeds.
    """
    filters_by_index = _parse_filters(filters)
    limit = service.clamp_limit(limit)

    try:
        result = await service.search(q, filters_by_index, limit, tenant)
    except ConfigurationError as e:
        raise HTTPException(400, str(e))

    logger.info(
        "Search: query=%r tenant=%s hits=%d total=%d failed=%s",
        q, tenant, len(result.hits), result.meta.total, result.meta.failed_indexes,
    )
    return SearchResponse(
        data=result,
        meta=SearchRequestMeta(query=q, limit=limit, filters=filters_by_index, tenant=tenant),
    )


@router.get("/health")
async def search_health_endpoint(
    tenant: Optional[str] = Query(default=None, max_length=100),
    engine: MeilisearchService = Depends(get_search_engine),
    redis: RedisService = Depends(get_redis),
):
    """Engine status and document counts for every federated index."""
    result: dict[str, Any] = {"redis": await redis.health_check(), "indexes": {}}
    try:
        result["status"] = await engine.health()
    except SearchEngineError as e:
        result["status"] = "unavailable"
        result["error"] = str(e)
        return JSONResponse(status_code=503, content=result)

    tenants = TenantContext(settings)
    for base in settings.federation_weights:
        try:
            index_name = tenants.index_name(base, tenant)
            result["indexes"][base] = await engine.get_stats(index_name)
        except (SearchEngineError, ConfigurationError) as e:
            result["indexes"][base] = {"error": str(e)}
    return result


@router.get("/stats")
async def search_stats_endpoint():
    """Cache hit rate, federation failures, index recreations and failed jobs."""
    return await stats_service.get_stats()


# ---- Admin ----


@router.post(
    "/index",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobAccepted,
    dependencies=[Depends(require_admin)],
)
async def index_records_endpoint(
    body: RecordsRequest,
    dispatcher: JobDispatcher = Depends(get_job_dispatcher),
):
    try:
        job_id = await dispatcher.dispatch_index(body.source_type, body.ids, body.tenant)
    except ConfigurationError as e:
        raise HTTPException(400, str(e))
    return JobAccepted(job_id=job_id)


@router.post(
    "/delete",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobAccepted,
    dependencies=[Depends(require_admin)],
)
async def delete_records_endpoint(
    body: RecordsRequest,
    dispatcher: JobDispatcher = Depends(get_job_dispatcher),
):
    try:
        job_id = await dispatcher.dispatch_delete(body.source_type, body.ids, body.tenant)
    except ConfigurationError as e:
        raise HTTPException(400, str(e))
    return JobAccepted(job_id=job_id)


@router.post(
    "/reindex",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=JobAccepted,
    dependencies=[Depends(require_admin)],
)
async def reindex_endpoint(
    body: ReindexRequest,
    dispatcher: JobDispatcher = Depends(get_job_dispatcher),
):
    try:
        job_id = await dispatcher.dispatch_reindex(body.tenant, body.base_index)
    except ConfigurationError as e:
        raise HTTPException(400, str(e))
    return JobAccepted(job_id=job_id)


@router.post("/warm-cache", dependencies=[Depends(require_admin)])
async def warm_cache_endpoint(
    body: WarmCacheRequest,
    search: FederatedSearchService = Depends(get_federated_search),
):
    """Run each query once so later identical searches hit the cache."""
    return await search.warm(body.queries, body.limit, body.tenant)


@router.post("/flush", dependencies=[Depends(require_admin)])
async def flush_index_endpoint(
    body: FlushRequest,
    pipeline: IndexingPipeline = Depends(get_indexing_pipeline),
):
    try:
        flushed = await pipeline.flush_index(body.index, body.tenant)
    except ConfigurationError as e:
        raise HTTPException(400, str(e))
    except SearchEngineError as e:
        logger.error("Flush of %s failed: %s", body.index, e)
        raise HTTPException(503, "Search engine unavailable")
    return {"index": body.index, "flushed": flushed}


@router.post("/sync-settings", dependencies=[Depends(require_admin)])
async def sync_settings_endpoint(
    body: TenantRequest,
    pipeline: IndexingPipeline = Depends(get_indexing_pipeline),
):
    try:
        synced = await pipeline.sync_settings(body.tenant)
    except ConfigurationError as e:
        raise HTTPException(400, str(e))
    except SearchEngineError as e:
        logger.error("Settings sync failed: %s", e)
        raise HTTPException(503, "Search engine unavailable")
    return {"synced": synced}
