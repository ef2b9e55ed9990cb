"""FastAPI application entry point."""

import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from . import __version__
from .config import settings
from .database import dispose_engine
from .routers import search_router
from .services.indexing_service import indexing_pipeline
from .services.meilisearch_service import meilisearch_service
from .services.queue_service import job_dispatcher
from .services.record_source import build_record_source
from .services.redis_service import redis_service

# Configure logging to show errors
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown tasks."""
    # Startup
    logger.info("Connecting to Redis...")
    try:
        await redis_service.connect()
        await job_dispatcher.connect()
        logger.info("Redis connected")
    except Exception as e:
        if settings.redis_required:
            logger.error(f"Redis connection failed and REDIS_REQUIRED=true: {e}")
            raise RuntimeError(f"Redis is required but connection failed: {e}")
        logger.warning(f"Redis connection failed, search results will not be cached: {e}")

    await meilisearch_service.init()

    if indexing_pipeline.source is None:
        indexing_pipeline.source = build_record_source()

    yield

    # Shutdown
    await job_dispatcher.close()
    await meilisearch_service.close()
    await dispose_engine()

    logger.info("Disconnecting from Redis...")
    await redis_service.disconnect()


# Create FastAPI application
app = FastAPI(
    title="Global Search API",
    description="Federated search across Meilisearch indexes with tenant-scoped indexing",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Global exception handler to log errors
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log all unhandled exceptions with full traceback."""
    logger.error(f"Unhandled exception on {request.method} {request.url}:")
    logger.error(f"Exception type: {type(exc).__name__}")
    logger.error(f"Traceback:\n{traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# Include API routers
app.include_router(search_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring."""
    redis_health = await redis_service.health_check()
    return {
        "status": "healthy",
        "redis": redis_health,
        "meilisearch": "initialized" if meilisearch_service.is_initialized else "pending",
        "queue": "connected" if job_dispatcher.is_connected else "disconnected",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("global_search.main:app", host=settings.host, port=settings.port)
