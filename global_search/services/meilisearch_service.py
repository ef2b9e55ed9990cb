"""Meilisearch client wrapper used by federation and indexing.

Provides:
- Client lifecycle (init/close) with a module-level singleton
- Search, document writes and deletes, index create/delete
- Settings read (including the index primary key) and update
- Health and per-index stats

Every call is bounded by ``settings.meilisearch_timeout``. Write calls
optionally wait for the engine task to finish and raise if it failed, so
callers only bump cache versions once documents are actually visible.
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional, TypeVar

from meilisearch_python_sdk import AsyncClient
from meilisearch_python_sdk.errors import MeilisearchApiError
from meilisearch_python_sdk.models.settings import MeilisearchSettings

from ..config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

INDEX_NOT_FOUND_CODE = "index_not_found"


class SearchEngineError(Exception):
    """A search engine call failed, timed out or was rejected."""

    pass


class IndexNotFoundError(SearchEngineError):
    """The requested index does not exist."""

    pass


def _is_not_found(exc: MeilisearchApiError) -> bool:
    code = getattr(exc, "code", "") or ""
    if code == INDEX_NOT_FOUND_CODE:
        return True
    return getattr(exc, "status_code", None) == 404 and "not found" in str(exc).lower()


class MeilisearchService:
    """Thin async facade over ``meilisearch_python_sdk.AsyncClient``."""

    def __init__(
        self,
        client: Optional[AsyncClient] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.config = config or default_settings
        self._client = client

    async def init(self) -> None:
        """Create the client. Called during app/worker startup."""
        if self._client is not None:
            return

        if not self.config.meilisearch_api_key:
            logger.warning(
                "meilisearch_api_key is empty -- Meilisearch is unauthenticated. "
                "Set MEILISEARCH_API_KEY in production."
            )

        self._client = AsyncClient(
            url=self.config.meilisearch_url,
            api_key=self.config.meilisearch_api_key or None,
            timeout=int(self.config.meilisearch_timeout),
        )
        logger.info("Meilisearch client initialized: url=%s", self.config.meilisearch_url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            raise RuntimeError("Meilisearch not initialized")
        return self._client

    @property
    def is_initialized(self) -> bool:
        return self._client is not None

    async def _call(
        self,
        operation: str,
        index: str,
        awaitable: Awaitable[T],
        timeout: Optional[float] = None,
    ) -> T:
        """Run one engine call under a timeout, normalizing errors."""
        limit = timeout if timeout is not None else self.config.meilisearch_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=limit)
        except asyncio.TimeoutError as exc:
            raise SearchEngineError(f"{operation} on {index!r} timed out after {limit}s") from exc
        except MeilisearchApiError as exc:
            if _is_not_found(exc):
                raise IndexNotFoundError(f"Index {index!r} not found") from exc
            raise SearchEngineError(f"{operation} on {index!r} failed: {exc}") from exc
        except SearchEngineError:
            raise
        except Exception as exc:
            raise SearchEngineError(f"{operation} on {index!r} failed: {exc}") from exc

    async def _wait_for_task(self, operation: str, index: str, task_info: Any) -> Any:
        """Block until an engine task finishes when task waiting is enabled."""
        if not self.config.meilisearch_wait_for_tasks:
            return task_info

        timeout_ms = self.config.meilisearch_task_timeout_ms
        result = await self._call(
            f"{operation} (task wait)",
            index,
            self.client.wait_for_task(task_info.task_uid, timeout_in_ms=timeout_ms),
            timeout=timeout_ms / 1000 + self.config.meilisearch_timeout,
        )
        if getattr(result, "status", None) == "failed":
            raise SearchEngineError(f"{operation} on {index!r} failed: {result.error}")
        return result

    # ---- Search ----

    async def search(
        self,
        index: str,
        query: str,
        limit: int,
        filter: Optional[str | list] = None,
    ) -> dict[str, Any]:
        """Search one index.

        Returns:
            ``{"hits": [...], "estimatedTotalHits": int}``; hits carry
            ``_matchesPosition`` when the engine matched query terms.
        """
        results = await self._call(
            "search",
            index,
            self.client.index(index).search(
                query,
                limit=limit,
                filter=filter,
                show_matches_position=True,
            ),
        )
        return {
            "hits": list(results.hits),
            "estimatedTotalHits": results.estimated_total_hits or 0,
        }

    # ---- Documents ----

    async def add_documents(
        self,
        index: str,
        documents: list[dict[str, Any]],
        primary_key: Optional[str] = None,
    ) -> Any:
        task_info = await self._call(
            "add_documents",
            index,
            self.client.index(index).add_documents(documents, primary_key=primary_key),
        )
        return await self._wait_for_task("add_documents", index, task_info)

    async def delete_documents(self, index: str, ids: list[str]) -> Any:
        task_info = await self._call(
            "delete_documents",
            index,
            self.client.index(index).delete_documents([str(i) for i in ids]),
        )
        return await self._wait_for_task("delete_documents", index, task_info)

    async def delete_all_documents(self, index: str) -> Any:
        task_info = await self._call(
            "delete_all_documents",
            index,
            self.client.index(index).delete_all_documents(),
        )
        return await self._wait_for_task("delete_all_documents", index, task_info)

    # ---- Indexes ----

    async def create_index(self, index: str, primary_key: str) -> None:
        await self._call(
            "create_index",
            index,
            self.client.create_index(index, primary_key=primary_key),
        )
        logger.info("Created index %s (primary key %r)", index, primary_key)

    async def delete_index(self, index: str) -> bool:
        deleted = await self._call(
            "delete_index",
            index,
            self.client.delete_index_if_exists(index),
        )
        logger.info("Deleted index %s (existed=%s)", index, deleted)
        return deleted

    async def get_settings(self, index: str) -> dict[str, Any]:
        """Index settings plus its primary key.

        Raises:
            IndexNotFoundError: the index does not exist
        """
        meili_index = await self._call("get_index", index, self.client.get_index(index))
        index_settings = await self._call("get_settings", index, meili_index.get_settings())
        return {
            "primaryKey": meili_index.primary_key,
            **index_settings.model_dump(by_alias=True, exclude_none=True),
        }

    async def update_settings(self, index: str, index_settings: dict[str, Any]) -> Any:
        body = MeilisearchSettings.model_validate(index_settings)
        task_info = await self._call(
            "update_settings",
            index,
            self.client.index(index).update_settings(body),
        )
        return await self._wait_for_task("update_settings", index, task_info)

    # ---- Health ----

    async def health(self) -> str:
        health = await self._call("health", "*", self.client.health())
        return health.status

    async def get_stats(self, index: str) -> dict[str, Any]:
        stats = await self._call("get_stats", index, self.client.index(index).get_stats())
        return {
            "numberOfDocuments": stats.number_of_documents,
            "isIndexing": stats.is_indexing,
        }


# Global singleton instance
meilisearch_service = MeilisearchService()


def get_search_engine() -> MeilisearchService:
    """FastAPI dependency for the search engine client."""
    return meilisearch_service
