"""Pydantic schemas for federated search results."""

from typing import Any

from pydantic import BaseModel, Field

# A hit is the engine document plus ``_index`` (base index name) and ``_score``.
SearchHit = dict[str, Any]


class SearchMeta(BaseModel):
    """Summary of a federated search."""

    total: int = Field(0, description="Sum of each index's estimated total hits")
    indexes_searched: list[str] = Field(default_factory=list)
    failed_indexes: list[str] = Field(default_factory=list)
    query: str = ""
    limit: int = 0


class SearchResult(BaseModel):
    """Merged, ranked hits across every federated index."""

    hits: list[SearchHit] = Field(default_factory=list)
    meta: SearchMeta = Field(default_factory=SearchMeta)

    @classmethod
    def empty(cls, query: str, limit: int) -> "SearchResult":
        return cls(hits=[], meta=SearchMeta(total=0, query=query, limit=limit))


class SearchRequestMeta(BaseModel):
    """Echo of the request parameters returned by the HTTP surface."""

    query: str
    limit: int
    filters: dict[str, Any] = Field(default_factory=dict)
    tenant: str | None = None


class SearchResponse(BaseModel):
    """HTTP response envelope for ``GET /api/search``."""

    success: bool = True
    data: SearchResult
    meta: SearchRequestMeta
