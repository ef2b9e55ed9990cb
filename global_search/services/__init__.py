"""Search, indexing and cache services."""

from .cache_version_service import IndexVersionStore, index_version_store
from .federated_search_service import FederatedSearchService, federated_search_service
from .indexing_service import IndexingPipeline, indexing_pipeline
from .mapping_service import MappingRegistry, build_registry
from .meilisearch_service import (
    IndexNotFoundError,
    MeilisearchService,
    SearchEngineError,
    meilisearch_service,
)
from .queue_service import JobDispatcher, job_dispatcher
from .reconciliation_service import IndexReconciler
from .record_source import RecordSource, SqlAlchemyRecordSource
from .redis_service import RedisService, redis_service
from .stats_service import StatsService, stats_service
from .tenant_service import IndexNameResolver, TenantContext, normalize_tenant
from .transformer_service import (
    DocumentTransformer,
    register_computed,
    register_transformation,
)

__all__ = [
    "DocumentTransformer",
    "FederatedSearchService",
    "IndexNameResolver",
    "IndexNotFoundError",
    "IndexReconciler",
    "IndexVersionStore",
    "IndexingPipeline",
    "JobDispatcher",
    "MappingRegistry",
    "MeilisearchService",
    "RecordSource",
    "RedisService",
    "SearchEngineError",
    "SqlAlchemyRecordSource",
    "StatsService",
    "TenantContext",
    "build_registry",
    "federated_search_service",
    "index_version_store",
    "indexing_pipeline",
    "job_dispatcher",
    "meilisearch_service",
    "normalize_tenant",
    "redis_service",
    "register_computed",
    "register_transformation",
    "stats_service",
]
