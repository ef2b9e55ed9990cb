"""Enqueue indexing jobs onto the arq queue.

Source types and tenants are validated here, so configuration errors
reach the caller immediately instead of failing inside a worker.
"""

import logging
from typing import Any, Optional
from urllib.parse import urlparse

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from ..config import Settings, settings as default_settings
from ..schemas.job import IndexJob
from .mapping_service import MappingRegistry, build_registry
from .tenant_service import TenantContext

logger = logging.getLogger(__name__)

INDEX_RECORDS_JOB = "index_records_job"
DELETE_RECORDS_JOB = "delete_records_job"
REINDEX_ALL_JOB = "reindex_all_job"


# Format: redis://host:port/db or redis://:password@host:port/db
def parse_redis_url(url: str) -> RedisSettings:
    """Parse Redis URL into ARQ RedisSettings."""
    parsed = urlparse(url)
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=int(parsed.path.lstrip("/") or 0),
    )


class JobDispatcher:
    """Puts index/delete/reindex jobs on the search queue."""

    def __init__(
        self,
        pool: Optional[ArqRedis] = None,
        registry: Optional[MappingRegistry] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or default_settings
        self._pool = pool
        self._registry = registry
        self.tenants = TenantContext(self.config)

    @property
    def registry(self) -> MappingRegistry:
        if self._registry is None:
            self._registry = build_registry()
        return self._registry

    async def connect(self) -> None:
        self._pool = await create_pool(
            parse_redis_url(self.config.redis_url),
            default_queue_name=self.config.pipeline_queue_name,
        )
        logger.info("Job queue connected: queue=%s", self.config.pipeline_queue_name)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> ArqRedis:
        if self._pool is None:
            raise RuntimeError("Job queue not connected. Call connect() first.")
        return self._pool

    async def _enqueue(self, function: str, *args: Any) -> Optional[str]:
        job = await self.pool.enqueue_job(
            function, *args, _queue_name=self.config.pipeline_queue_name
        )
        job_id = job.job_id if job else None
        logger.debug("Enqueued %s job_id=%s", function, job_id)
        return job_id

    def _job(self, action: str, source_type: str, ids: list[Any], tenant: Optional[str]) -> IndexJob:
        self.registry.for_source(source_type)
        return IndexJob(
            action=action,
            source_type=source_type,
            record_ids=ids,
            tenant=self.tenants.resolve_tenant(tenant),
        )

    async def dispatch_index(
        self, source_type: str, ids: list[Any], tenant: Optional[str] = None
    ) -> Optional[str]:
        """Queue an index job. Returns the arq job id."""
        job = self._job("index", source_type, ids, tenant)
        return await self._enqueue(INDEX_RECORDS_JOB, job.model_dump())

    async def dispatch_delete(
        self, source_type: str, ids: list[Any], tenant: Optional[str] = None
    ) -> Optional[str]:
        """Queue a delete job. Returns the arq job id."""
        job = self._job("delete", source_type, ids, tenant)
        return await self._enqueue(DELETE_RECORDS_JOB, job.model_dump())

    async def dispatch_reindex(
        self, tenant: Optional[str] = None, base_index: Optional[str] = None
    ) -> Optional[str]:
        """Queue a reindex of every mapping, or of one base index.

        Every tenant is covered when none is given.
        """
        if base_index is not None:
            self.registry.for_index(base_index)
        return await self._enqueue(REINDEX_ALL_JOB, {"tenant": tenant, "base_index": base_index})


job_dispatcher = JobDispatcher()


def get_job_dispatcher() -> JobDispatcher:
    """FastAPI dependency for the job dispatcher."""
    return job_dispatcher
