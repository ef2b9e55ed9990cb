"""Tests for the Redis service and the index version store."""

import pytest

from global_search.services.cache_version_service import IndexVersionStore


# ============================================================================
# Redis service
# ============================================================================


class TestRedisService:
    """Tests for RedisService helpers against the in-memory fake."""

    def test_client_requires_connection(self, disconnected_redis):
        assert disconnected_redis.is_connected is False
        with pytest.raises(RuntimeError):
            disconnected_redis.client

    @pytest.mark.asyncio
    async def test_json_roundtrip_with_ttl(self, redis, fake_redis):
        await redis.set("k", {"a": 1}, ttl=60)
        assert await redis.get_json("k") == {"a": 1}
        assert fake_redis.ttls["k"] == 60

    @pytest.mark.asyncio
    async def test_get_json_missing(self, redis):
        assert await redis.get_json("missing") is None

    @pytest.mark.asyncio
    async def test_mget_int_defaults_to_zero(self, redis, fake_redis):
        fake_redis.data["a"] = "4"
        fake_redis.data["b"] = "garbage"
        assert await redis.mget_int(["a", "b", "c"]) == [4, 0, 0]
        assert await redis.mget_int([]) == []

    @pytest.mark.asyncio
    async def test_hash_counters(self, redis):
        await redis.hincr("stats", "hits")
        await redis.hincr("stats", "hits", 2)
        assert await redis.hgetall_int("stats") == {"hits": 3}

    @pytest.mark.asyncio
    async def test_push_capped_keeps_newest(self, redis):
        for i in range(5):
            await redis.push_capped("events", {"n": i}, max_entries=3)
        assert [e["n"] for e in await redis.list_json("events")] == [4, 3, 2]

    @pytest.mark.asyncio
    async def test_health_check(self, redis, disconnected_redis):
        assert (await redis.health_check())["status"] == "healthy"
        assert (await disconnected_redis.health_check())["status"] == "disconnected"


# ============================================================================
# Version store
# ============================================================================


class TestIndexVersionStore:
    """Tests for per-index version counters."""

    @pytest.mark.asyncio
    async def test_unwritten_index_is_version_zero(self, versions):
        assert await versions.get("products") == 0

    @pytest.mark.asyncio
    async def test_bump_is_monotonic(self, versions):
        assert await versions.bump("products") == 1
        assert await versions.bump("products") == 2
        assert await versions.get("products") == 2

    @pytest.mark.asyncio
    async def test_counters_are_independent(self, versions):
        await versions.bump("products_acme")
        assert await versions.get_many(["products_acme", "products_globex"]) == {
            "products_acme": 1,
            "products_globex": 0,
        }

    @pytest.mark.asyncio
    async def test_get_many_preserves_order(self, versions):
        await versions.bump("b")
        result = await versions.get_many(["b", "a"])
        assert list(result) == ["b", "a"]

    @pytest.mark.asyncio
    async def test_key_prefix(self, redis, fake_redis):
        store = IndexVersionStore(redis=redis, prefix="ms:index:")
        await store.bump("pages")
        assert fake_redis.data["ms:index:pages"] == 1

    @pytest.mark.asyncio
    async def test_bump_skipped_without_redis(self, disconnected_redis, caplog):
        store = IndexVersionStore(redis=disconnected_redis, prefix="ms:index:")

        assert await store.bump("products") == 0
        assert "skipping version bump for products" in caplog.text
