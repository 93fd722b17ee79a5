"""Tests for the two-tier cache (in-memory LRU + CacheManager)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from src.services.cache import CacheManager, InMemoryCacheBackend, stable_hash


# -----------------------------------------------------------------------
# InMemoryCacheBackend tests
# -----------------------------------------------------------------------


class TestInMemoryCacheBackend:
    """Test the in-memory LRU cache backend."""

    async def test_get_set_basic(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"value1")
        assert await cache.get("key1") == b"value1", "get should return the value that was set"

    async def test_get_missing_key_returns_none(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        assert await cache.get("nonexistent") is None

    async def test_set_overwrites_existing(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"original")
        await cache.set("key1", b"updated")
        assert await cache.get("key1") == b"updated"
        assert cache.size == 1

    async def test_delete_removes_key(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"value1")
        await cache.delete("key1")
        assert await cache.get("key1") is None, "get should return None after delete"

    async def test_delete_nonexistent_key_no_error(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.delete("nonexistent")  # should not raise

    async def test_delete_prefix(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("pm-kisan:v1:aaaa", b"1")
        await cache.set("pm-kisan:v2:bbbb", b"2")
        await cache.set("pmay-g:v1:cccc", b"3")

        removed = await cache.delete_prefix("pm-kisan:")

        assert removed == 2
        assert await cache.get("pmay-g:v1:cccc") == b"3", "other schemes must be untouched"

    async def test_lru_eviction(self) -> None:
        """When max_size is reached, the least-recently-used entry is evicted."""
        cache = InMemoryCacheBackend(max_size=3)
        await cache.set("a", b"1")
        await cache.set("b", b"2")
        await cache.set("c", b"3")
        await cache.set("d", b"4")

        assert cache.size == 3, "size should remain at max_size after eviction"
        assert await cache.get("a") is None, "LRU entry 'a' should have been evicted"
        assert await cache.get("d") == b"4"

    async def test_lru_access_promotes_entry(self) -> None:
        cache = InMemoryCacheBackend(max_size=3)
        await cache.set("a", b"1")
        await cache.set("b", b"2")
        await cache.set("c", b"3")

        # Access 'a' to promote it.
        await cache.get("a")

        await cache.set("d", b"4")
        assert await cache.get("b") is None, "'b' should be evicted as LRU after 'a' was accessed"
        assert await cache.get("a") == b"1"

    async def test_ttl_expiration(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"value1", ttl_seconds=0)
        await asyncio.sleep(0.01)
        assert await cache.get("key1") is None, "entry with TTL=0 should expire almost immediately"

    async def test_ttl_not_expired_within_window(self) -> None:
        cache = InMemoryCacheBackend(max_size=100)
        await cache.set("key1", b"value1", ttl_seconds=60)
        assert await cache.get("key1") == b"value1"


# -----------------------------------------------------------------------
# stable_hash tests
# -----------------------------------------------------------------------


class TestStableHash:
    def test_deterministic(self) -> None:
        assert stable_hash("Widows aged 40 to 79") == stable_hash("Widows aged 40 to 79")

    def test_different_inputs_different_hashes(self) -> None:
        assert stable_hash("input one") != stable_hash("input two")

    def test_hash_length(self) -> None:
        assert len(stable_hash("any string")) == 16, "stable_hash should return 16 hex characters"


# -----------------------------------------------------------------------
# CacheManager tests
# -----------------------------------------------------------------------


class TestCacheManager:
    """CacheManager with Redis disabled (in-memory tier only)."""

    async def test_in_memory_when_no_redis(self) -> None:
        mgr = CacheManager(redis_url=None, namespace="test:")
        await mgr.set("key1", {"data": "value"})
        assert await mgr.get("key1") == {"data": "value"}
        assert mgr.backend_name == "memory"

    async def test_namespace_key_prefixing(self) -> None:
        mgr = CacheManager(redis_url=None, namespace="myns:")
        assert mgr._make_key("foo") == "myns:foo", "key should be prefixed with namespace"

    async def test_get_returns_default_for_missing_key(self) -> None:
        mgr = CacheManager(redis_url=None)
        assert await mgr.get("missing", default="fallback") == "fallback"

    async def test_hit_and_miss_counters(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr.get("missing")
        await mgr.set("present", [1, 2])
        await mgr.get("present")
        assert (mgr.hits, mgr.misses) == (1, 1)

    async def test_set_and_get_interpretation_payload(self) -> None:
        mgr = CacheManager(redis_url=None)
        payload = {
            "scheme_id": "ignwps",
            "version": 2,
            "confidence": 0.75,
            "predicates": [{"kind": "age_range", "minimum": 40.0, "maximum": 79.0}],
            "notes": [],
        }
        await mgr.set("ignwps:v2:abcd", payload, ttl_seconds=3600)
        assert await mgr.get("ignwps:v2:abcd") == payload

    async def test_delete(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr.set("key1", "val1")
        await mgr.delete("key1")
        assert await mgr.get("key1") is None

    async def test_delete_prefix_respects_namespace(self) -> None:
        interpretations = CacheManager(redis_url=None, namespace="interp:")
        await interpretations.set("ignwps:v1:aaaa", 1)
        await interpretations.set("ignwps:v2:bbbb", 2)
        await interpretations.set("igndps:v1:cccc", 3)

        assert await interpretations.delete_prefix("ignwps:") == 2
        assert await interpretations.get("igndps:v1:cccc") == 3

    async def test_corrupt_entry_is_a_miss(self) -> None:
        mgr = CacheManager(redis_url=None)
        await mgr._fallback.set("broken", b"{not json")
        assert await mgr.get("broken", default="fallback") == "fallback"

    async def test_for_namespace_constructor(self) -> None:
        mgr = CacheManager.for_namespace("yojana:interpretation:")
        assert mgr._make_key("pm-kisan") == "yojana:interpretation:pm-kisan"

    async def test_close_without_redis(self) -> None:
        await CacheManager(redis_url=None).close()  # should not raise


class TestRedisFallback:
    async def test_unreachable_redis_uses_memory(self) -> None:
        mgr = CacheManager(redis_url=None, namespace="fb:")
        fake_redis = AsyncMock()
        fake_redis.ping.return_value = False
        mgr._redis = fake_redis

        await mgr.set("k", "v")

        assert await mgr.get("k") == "v"
        assert mgr.backend_name == "memory"
        fake_redis.set.assert_not_awaited()

    async def test_redis_error_flips_to_memory(self) -> None:
        mgr = CacheManager(redis_url=None, namespace="fb:")
        fake_redis = AsyncMock()
        fake_redis.ping.return_value = True
        fake_redis.set.side_effect = ConnectionError("connection reset")
        mgr._redis = fake_redis

        await mgr.set("k", "v")

        assert mgr.backend_name == "memory", "a failing Redis call must fall back"
        assert await mgr.get("k") == "v"
