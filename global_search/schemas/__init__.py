"""Pydantic schemas."""

from .job import (
    FlushRequest,
    IndexJob,
    JobAccepted,
    RecordsRequest,
    ReindexRequest,
    TenantRequest,
    WarmCacheRequest,
)
from .mapping import ComputedField, FederatedIndex, MappingConfig, RelationshipConfig
from .search import SearchHit, SearchMeta, SearchResponse, SearchResult

__all__ = [
    "ComputedField",
    "FederatedIndex",
    "FlushRequest",
    "IndexJob",
    "JobAccepted",
    "MappingConfig",
    "RecordsRequest",
    "ReindexRequest",
    "RelationshipConfig",
    "SearchHit",
    "SearchMeta",
    "SearchResponse",
    "SearchResult",
    "TenantRequest",
    "WarmCacheRequest",
]
