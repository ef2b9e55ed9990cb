"""
ARQ Worker Configuration

Processes indexing jobs from the Redis-backed search queue.

Retry policy:
- ConfigurationError: permanent failure right away, never retried
- Any other error: retried via ``arq.Retry`` until ``job_max_attempts``,
  with a fixed or exponential delay
- An attempt running past 90% of ``job_timeout`` raises ``JobTimeoutError``
  and is retried like any other error
- Exhausted jobs are logged with their payload, pushed to the
  ``{cache_prefix}jobs:failed`` list and raise ``JobPermanentFailure``

Run with:
    arq global_search.worker.WorkerSettings
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from arq import Retry

from .config import settings
from .database import dispose_engine
from .exceptions import ConfigurationError, JobPermanentFailure, JobTimeoutError
from .schemas.job import IndexJob
from .services.indexing_service import indexing_pipeline
from .services.meilisearch_service import meilisearch_service
from .services.queue_service import parse_redis_url
from .services.record_source import build_record_source
from .services.redis_service import redis_service
from .services.stats_service import stats_service

logger = logging.getLogger(__name__)

# Share of arq's job_timeout a job may run before it counts as a failed attempt
JOB_TIMEOUT_HEADROOM = 0.9


def failed_jobs_key() -> str:
    return f"{settings.cache_prefix}jobs:failed"


def operation_timeout() -> float:
    """Seconds one job attempt may run.

    Shorter than arq's ``job_timeout`` so a slow attempt fails inside
    ``run_with_retry`` (retried, then recorded) instead of being cancelled
    by arq.
    """
    return settings.job_timeout * JOB_TIMEOUT_HEADROOM


def retry_delay(attempt: int) -> float:
    """Seconds to wait before retrying after failed ``attempt`` (1-based)."""
    if settings.job_retry_backoff == "exponential":
        return settings.job_retry_delay * 2 ** (attempt - 1)
    return settings.job_retry_delay


async def record_permanent_failure(
    payload: dict[str, Any], error: BaseException, attempt: int
) -> None:
    """Log a terminal job failure and keep it in the failure sink."""
    logger.error(
        "Job permanently failed after %d attempt(s): payload=%s error=%s",
        attempt, payload, error,
        exc_info=error,
    )
    entry = {
        "payload": payload,
        "error": f"{type(error).__name__}: {error}",
        "attempts": attempt,
        "failed_at": datetime.now(timezone.utc).isoformat(),
    }
    if redis_service.is_connected:
        try:
            await redis_service.push_capped(
                failed_jobs_key(), entry, settings.failed_jobs_max_entries
            )
        except Exception as e:
            logger.error("Failed to record failed job in Redis: %s", e)
    await stats_service.job_failed(payload, str(error))


async def _run_attempt(operation: Callable[[], Awaitable[Any]]) -> Any:
    timeout = operation_timeout()
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise JobTimeoutError(f"Job attempt did not finish within {timeout:.1f}s") from e


async def run_with_retry(
    ctx: dict[str, Any],
    payload: dict[str, Any],
    operation: Callable[[], Awaitable[Any]],
) -> Any:
    """Run one job attempt, translating failures into arq retries."""
    attempt = ctx.get("job_try", 1)
    try:
        return await _run_attempt(operation)
    except ConfigurationError as e:
        await record_permanent_failure(payload, e, attempt)
        raise JobPermanentFailure(f"Configuration error: {e}", payload) from e
    except Exception as e:
        if attempt < settings.job_max_attempts:
            delay = retry_delay(attempt)
            logger.warning(
                "Job attempt %d/%d failed, retrying in %.1fs: %s",
                attempt, settings.job_max_attempts, delay, e,
            )
            raise Retry(defer=delay) from e
        await record_permanent_failure(payload, e, attempt)
        raise JobPermanentFailure(
            f"Job failed after {attempt} attempt(s): {e}", payload
        ) from e


# =============================================================================
# Jobs
# =============================================================================

async def index_records_job(ctx: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    """Transform and write records to their tenant index."""
    job = IndexJob.model_validate({**payload, "attempt": ctx.get("job_try", 1)})
    written = await run_with_retry(
        ctx,
        payload,
        lambda: indexing_pipeline.index_records(job.source_type, job.record_ids, job.tenant),
    )
    return {"source_type": job.source_type, "written": written}


async def delete_records_job(ctx: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    """Remove documents for deleted records."""
    job = IndexJob.model_validate({**payload, "attempt": ctx.get("job_try", 1)})
    deleted = await run_with_retry(
        ctx,
        payload,
        lambda: indexing_pipeline.delete_records(job.source_type, job.record_ids, job.tenant),
    )
    return {"source_type": job.source_type, "deleted": deleted}


async def reindex_all_job(ctx: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
    """Reindex every mapping, or one base index (every tenant when none is given)."""
    totals = await run_with_retry(
        ctx,
        payload,
        lambda: indexing_pipeline.reindex_all(payload.get("tenant"), payload.get("base_index")),
    )
    return {"indexes": totals}


# =============================================================================
# Startup/Shutdown Hooks
# =============================================================================

async def startup(ctx: dict[str, Any]) -> None:
    """Initialize resources when worker starts."""
    logger.info("ARQ worker starting up...")

    try:
        await redis_service.connect()
        logger.info("Redis connected for ARQ worker")
    except Exception as e:
        logger.warning(f"Redis connection failed in ARQ worker: {e}")

    await meilisearch_service.init()

    if indexing_pipeline.source is None:
        indexing_pipeline.source = build_record_source()
    if indexing_pipeline.source is None:
        logger.warning("No source models configured; index jobs will fail permanently")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when worker stops."""
    logger.info("ARQ worker shutting down...")

    await meilisearch_service.close()
    await dispose_engine()
    await redis_service.disconnect()


# =============================================================================
# Worker Settings
# =============================================================================

class WorkerSettings:
    """ARQ worker configuration."""

    # Redis connection
    redis_settings = parse_redis_url(settings.redis_url)
    queue_name = settings.pipeline_queue_name

    # Job functions that can be called via arq.enqueue_job()
    functions = [
        index_records_job,
        delete_records_job,
        reindex_all_job,
    ]

    # Lifecycle hooks
    on_startup = startup
    on_shutdown = shutdown

    # Worker behavior
    max_jobs = settings.worker_max_jobs
    max_tries = settings.job_max_attempts
    job_timeout = settings.job_timeout
    keep_result = 3600  # Keep results for 1 hour

    # Health check
    health_check_interval = 30
