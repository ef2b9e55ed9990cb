"""Pydantic schemas for indexing jobs and admin requests."""

from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class IndexJob(BaseModel):
    """A unit of indexing work consumed once by a worker."""

    action: Literal["index", "delete"] = "index"
    source_type: str = Field(..., min_length=1)
    record_ids: list[str] = Field(..., min_length=1)
    tenant: Optional[str] = None
    attempt: int = Field(1, ge=1)

    @field_validator("record_ids", mode="before")
    @classmethod
    def _stringify_and_dedupe(cls, value):
        # Ordered set semantics: keep first occurrence.
        if isinstance(value, (list, tuple)):
            return list(dict.fromkeys(str(v) for v in value))
        return value


class RecordsRequest(BaseModel):
    """Body for the admin index/delete endpoints."""

    source_type: str = Field(..., min_length=1, examples=["product"])
    ids: list[str] = Field(..., min_length=1, max_length=10_000)
    tenant: Optional[str] = None


class TenantRequest(BaseModel):
    """Body for admin endpoints scoped by an optional tenant."""

    tenant: Optional[str] = None


class ReindexRequest(BaseModel):
    """Body for ``POST /api/search/reindex``."""

    tenant: Optional[str] = None
    base_index: Optional[str] = Field(None, min_length=1, examples=["products"])


class WarmCacheRequest(BaseModel):
    """Body for ``POST /api/search/warm-cache``."""

    queries: list[str] = Field(..., min_length=1, max_length=500)
    limit: Optional[int] = Field(None, ge=1)
    tenant: Optional[str] = None


class FlushRequest(BaseModel):
    """Body for ``POST /api/search/flush``."""

    index: str = Field(..., min_length=1, examples=["products"])
    tenant: Optional[str] = None


class JobAccepted(BaseModel):
    """Response for endpoints that enqueue work."""

    status: str = "queued"
    job_id: Optional[str] = None
