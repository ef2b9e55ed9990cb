"""Shared pytest fixtures for search service tests."""

from typing import Any, Optional

import pytest

from global_search.config import Settings
from global_search.services.cache_version_service import IndexVersionStore
from global_search.services.meilisearch_service import IndexNotFoundError, SearchEngineError
from global_search.services.redis_service import RedisService
from global_search.services.stats_service import StatsService
from global_search.services.transformer_service import clear_registries


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from any local .env file."""
    overrides.setdefault("reconcile_poll_interval_ms", 0)
    return Settings(_env_file=None, **overrides)


# =============================================================================
# Fake Redis
# =============================================================================


class FakeLock:
    """Async lock stand-in recording acquisitions."""

    def __init__(self, redis: "FakeRedis", name: str) -> None:
        self.redis = redis
        self.name = name

    async def __aenter__(self) -> "FakeLock":
        self.redis.locks_acquired.append(self.name)
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None


class FakeRedis:
    """In-memory subset of the redis.asyncio client used by RedisService."""

    def __init__(self) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}
        self.locks_acquired: list[str] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis down")

    async def ping(self) -> bool:
        self._check()
        return True

    async def close(self) -> None:
        return None

    async def get(self, key: str) -> Optional[str]:
        self._check()
        value = self.data.get(key)
        return None if value is None else str(value)

    async def set(self, key: str, value: Any) -> None:
        self._check()
        self.data[key] = value

    async def setex(self, key: str, ttl: int, value: Any) -> None:
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def incr(self, key: str) -> int:
        self._check()
        self.data[key] = int(self.data.get(key, 0)) + 1
        return self.data[key]

    async def mget(self, keys: list[str]) -> list[Optional[str]]:
        self._check()
        return [None if self.data.get(k) is None else str(self.data[k]) for k in keys]

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        self._check()
        bucket = self.data.setdefault(key, {})
        bucket[field] = int(bucket.get(field, 0)) + amount
        return bucket[field]

    async def hgetall(self, key: str) -> dict[str, str]:
        self._check()
        return {k: str(v) for k, v in self.data.get(key, {}).items()}

    async def lpush(self, key: str, *values: str) -> int:
        self._check()
        items = self.data.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def ltrim(self, key: str, start: int, end: int) -> None:
        self._check()
        items = self.data.get(key, [])
        self.data[key] = items[start:end + 1]

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        self._check()
        items = self.data.get(key, [])
        return items[start:end + 1]

    async def info(self, section: str = "") -> dict[str, Any]:
        self._check()
        return {"used_memory_human": "1.00M"}

    def lock(self, name: str, timeout: float, blocking_timeout: Optional[float] = None) -> FakeLock:
        return FakeLock(self, name)


# =============================================================================
# Fake search engine
# =============================================================================


class FakeSearchEngine:
    """In-memory engine implementing the MeilisearchService interface.

    ``responses`` / ``failures`` script search results per physical index.
    Indexes listed in ``never_converge`` report no primary key after a
    create. ``fail_writes`` rejects that many add_documents calls.
    """

    def __init__(self) -> None:
        self.indexes: dict[str, dict[str, Any]] = {}
        self.responses: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple] = []
        self.never_converge: set[str] = set()
        self.fail_writes = 0

    def add_index(self, name: str, primary_key: Optional[str], documents: Optional[list] = None) -> None:
        docs = {str(d[primary_key]): d for d in documents or []} if primary_key else {}
        self.indexes[name] = {"primaryKey": primary_key, "documents": docs, "settings": {}}

    def documents(self, name: str) -> dict[str, dict]:
        return self.indexes[name]["documents"]

    def calls_named(self, operation: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == operation]

    def _index(self, name: str) -> dict[str, Any]:
        if name not in self.indexes:
            raise IndexNotFoundError(f"Index {name!r} not found")
        return self.indexes[name]

    async def search(self, index: str, query: str, limit: int, filter=None) -> dict[str, Any]:
        self.calls.append(("search", index, query, limit, filter))
        if index in self.failures:
            raise self.failures[index]
        response = self.responses.get(index, {"hits": [], "estimatedTotalHits": 0})
        return {
            "hits": [dict(h) for h in response["hits"][:limit]],
            "estimatedTotalHits": response["estimatedTotalHits"],
        }

    async def add_documents(self, index: str, documents: list[dict], primary_key=None) -> None:
        self.calls.append(("add_documents", index, len(documents)))
        if self.fail_writes:
            self.fail_writes -= 1
            raise SearchEngineError("write rejected")
        target = self.indexes.setdefault(
            index, {"primaryKey": primary_key, "documents": {}, "settings": {}}
        )
        pk = primary_key or target["primaryKey"]
        for doc in documents:
            target["documents"][str(doc[pk])] = doc

    async def delete_documents(self, index: str, ids: list[str]) -> None:
        self.calls.append(("delete_documents", index, list(ids)))
        target = self._index(index)
        for doc_id in ids:
            target["documents"].pop(str(doc_id), None)

    async def delete_all_documents(self, index: str) -> None:
        self.calls.append(("delete_all_documents", index))
        self._index(index)["documents"].clear()

    async def create_index(self, index: str, primary_key: str) -> None:
        self.calls.append(("create_index", index, primary_key))
        self.indexes[index] = {
            "primaryKey": None if index in self.never_converge else primary_key,
            "documents": {},
            "settings": {},
        }

    async def delete_index(self, index: str) -> bool:
        self.calls.append(("delete_index", index))
        return self.indexes.pop(index, None) is not None

    async def get_settings(self, index: str) -> dict[str, Any]:
        self.calls.append(("get_settings", index))
        target = self._index(index)
        return {"primaryKey": target["primaryKey"], **target["settings"]}

    async def update_settings(self, index: str, index_settings: dict[str, Any]) -> None:
        self.calls.append(("update_settings", index, index_settings))
        self._index(index)["settings"].update(index_settings)

    async def health(self) -> str:
        return "available"

    async def get_stats(self, index: str) -> dict[str, Any]:
        target = self._index(index)
        return {"numberOfDocuments": len(target["documents"]), "isIndexing": False}


# =============================================================================
# Fake record source
# =============================================================================


class InMemoryRecordSource:
    """RecordSource over plain dict records, keyed by ``id``."""

    def __init__(self, records: dict[str, list[dict]]) -> None:
        self.records = records
        self.chunks_fetched: list[int] = []

    async def fetch_by_ids(self, source_type: str, ids: list[str], chunk_size: int = 100):
        by_id = {str(r["id"]): r for r in self.records.get(source_type, [])}
        for start in range(0, len(ids), chunk_size):
            chunk = [by_id[i] for i in ids[start:start + chunk_size] if i in by_id]
            self.chunks_fetched.append(len(chunk))
            yield chunk

    async def iter_ids(self, source_type: str, chunk_size: int = 1000):
        ids = [str(r["id"]) for r in self.records.get(source_type, [])]
        for start in range(0, len(ids), chunk_size):
            yield ids[start:start + chunk_size]

    async def count(self, source_type: str) -> int:
        return len(self.records.get(source_type, []))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_transform_registries():
    """Custom transformations/functions never leak between tests."""
    clear_registries()
    yield
    clear_registries()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def redis(fake_redis: FakeRedis) -> RedisService:
    """RedisService wired to the in-memory fake."""
    service = RedisService()
    service._redis = fake_redis
    return service


@pytest.fixture
def versions(redis: RedisService) -> IndexVersionStore:
    return IndexVersionStore(redis=redis, prefix="ms:index:")


@pytest.fixture
def stats(redis: RedisService) -> StatsService:
    return StatsService(redis=redis)


@pytest.fixture
def engine() -> FakeSearchEngine:
    return FakeSearchEngine()


@pytest.fixture
def disconnected_redis() -> RedisService:
    """A RedisService that never connected."""
    return RedisService()
