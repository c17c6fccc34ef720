"""Tests for the LRU/TTL cache layer."""

import asyncio
import threading
import time

import pytest

from xianfeast.app.core.cache import AppCaches, CacheKeys, CacheManager, _CacheEntry, cached
from xianfeast.app.core.config import Settings


@pytest.fixture
def cache(clock):
    return CacheManager(max_size=3, default_ttl=10, name="test", clock=clock)


class TestCacheEntry:
    """Tests for the internal _CacheEntry class."""

    def test_entry_expired_at_expiry_instant(self):
        entry = _CacheEntry(value=1, expires_at=100.0, created_at=90.0, last_accessed=90.0)
        assert not entry.is_expired(99.9)
        assert entry.is_expired(100.0)


class TestGetSet:
    """Round trips and expiry."""

    def test_set_and_get(self, cache):
        cache.set("key1", {"name": "Noodles"})
        assert cache.get("key1") == {"name": "Noodles"}

    def test_get_nonexistent_key(self, cache):
        assert cache.get("missing") is None
        assert cache.get("missing", "fallback") == "fallback"

    def test_overwrite_replaces_value(self, cache):
        cache.set("key1", "a")
        cache.set("key1", "b")
        assert cache.get("key1") == "b"
        assert len(cache) == 1

    def test_ttl_expiration(self, cache, clock):
        cache.set("key1", "v", ttl=0.001)
        clock.advance(0.002)

        assert cache.get("key1") is None
        stats = cache.get_stats()
        assert stats.misses == 1
        assert stats.hits == 0

    def test_expired_entry_removed_on_get(self, cache, clock):
        cache.set("key1", "v", ttl=5)
        clock.advance(5)

        assert cache.get("key1") is None
        assert "key1" not in cache.keys()

    def test_default_ttl_used(self, cache, clock):
        cache.set("key1", "v")
        clock.advance(9)
        assert cache.get("key1") == "v"
        clock.advance(1)
        assert cache.get("key1") is None

    def test_per_entry_ttl_override(self, cache, clock):
        cache.set("short", 1, ttl=1)
        cache.set("long", 2, ttl=100)
        clock.advance(50)

        assert cache.get("short") is None
        assert cache.get("long") == 2

    @pytest.mark.parametrize("ttl", [0, -5])
    def test_non_positive_ttl_not_cached(self, cache, ttl):
        cache.set("key1", "old")
        cache.set("key1", "new", ttl=ttl)

        assert cache.get("key1") is None
        assert len(cache) == 0

    def test_none_key_rejected(self, cache):
        with pytest.raises(TypeError):
            cache.get(None)
        with pytest.raises(TypeError):
            cache.set(None, 1)

    def test_stored_none_value_is_a_hit(self, cache):
        cache.set("key1", None)
        assert cache.get("key1", "fallback") is None
        assert cache.get_stats().hits == 1

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            CacheManager(max_size=0)
        with pytest.raises(ValueError):
            CacheManager(default_ttl=0)


class TestLRUEviction:
    """Capacity-bounded eviction."""

    def test_capacity_two_scenario(self, clock):
        cache = CacheManager(max_size=2, default_ttl=1, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)

        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_exactly_one_eviction_when_full(self, cache):
        for key in ("a", "b", "c"):
            cache.set(key, key)
        cache.set("d", "d")

        assert len(cache) == 3
        assert cache.get_stats().evictions == 1
        assert cache.keys() == ["b", "c", "d"]

    def test_set_refreshes_recency(self, cache):
        for key in ("a", "b", "c"):
            cache.set(key, key)
        cache.set("a", "a2")
        cache.set("d", "d")

        assert cache.has("a")
        assert not cache.has("b")

    def test_overwrite_at_capacity_does_not_evict(self, cache):
        for key in ("a", "b", "c"):
            cache.set(key, key)
        cache.set("b", "b2")

        assert len(cache) == 3
        assert cache.get_stats().evictions == 0

    def test_miss_does_not_refresh_recency(self, cache):
        for key in ("a", "b", "c"):
            cache.set(key, key)
        cache.get("zzz")
        cache.set("d", "d")

        assert not cache.has("a")


class TestStats:
    """Hit/miss accounting."""

    def test_hit_rate_zero_without_accesses(self, cache):
        stats = cache.get_stats()
        assert stats.hit_rate == 0.0
        assert stats.size == 0

    def test_hit_rate(self, cache):
        cache.set("a", 1)
        for _ in range(3):
            cache.get("a")
        cache.get("b")

        stats = cache.get_stats()
        assert stats.hits == 3
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(0.75)
        assert stats.size == 1

    def test_has_does_not_touch_stats(self, cache):
        cache.set("a", 1)
        assert cache.has("a")
        assert "b" not in cache
        assert cache.get_stats().hits == 0
        assert cache.get_stats().misses == 0

    def test_to_dict(self, cache):
        cache.set("a", 1)
        cache.get("a")
        assert cache.get_stats().to_dict() == {
            "hits": 1, "misses": 0, "evictions": 0, "size": 1, "hit_rate": 1.0,
        }


class TestMaintenanceOps:
    """delete / clear / cleanup."""

    def test_delete(self, cache):
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.get("a") is None

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_cleanup_removes_only_expired(self, cache, clock):
        cache.set("a", 1, ttl=1)
        cache.set("b", 2, ttl=1)
        cache.set("c", 3, ttl=100)
        clock.advance(2)

        assert cache.cleanup() == 2
        assert cache.keys() == ["c"]
        assert cache.get_stats().misses == 0

    def test_expired_entry_still_counts_toward_capacity_until_cleaned(self, cache, clock):
        cache.set("a", 1, ttl=1)
        cache.set("b", 2)
        cache.set("c", 3)
        clock.advance(2)
        cache.cleanup()
        cache.set("d", 4)

        assert cache.get_stats().evictions == 0


class TestGetOrSet:
    """Async memoization helpers."""

    @pytest.mark.asyncio
    async def test_get_or_set_fetches_once(self, cache):
        calls = []

        async def fetch():
            calls.append(1)
            return "value"

        assert await cache.get_or_set("k", fetch) == "value"
        assert await cache.get_or_set("k", fetch) == "value"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_get_or_set_refetches_after_expiry(self, cache, clock):
        values = iter(["first", "second"])

        async def fetch():
            return next(values)

        assert await cache.get_or_set("k", fetch, ttl=1) == "first"
        clock.advance(1)
        assert await cache.get_or_set("k", fetch, ttl=1) == "second"

    @pytest.mark.asyncio
    async def test_cached_decorator(self, cache):
        calls = []

        @cached(cache, lambda stall_id: CacheKeys.stall(stall_id))
        async def load_stall(stall_id: str) -> dict:
            calls.append(stall_id)
            await asyncio.sleep(0)
            return {"id": stall_id}

        assert await load_stall("s-1") == {"id": "s-1"}
        assert await load_stall("s-1") == {"id": "s-1"}
        assert await load_stall("s-2") == {"id": "s-2"}
        assert calls == ["s-1", "s-2"]
        assert cache.has("stall:s-1")
        assert load_stall.__name__ == "load_stall"


class TestAppCaches:
    """Named, independent instances."""

    def test_built_from_settings(self):
        caches = AppCaches.from_settings(Settings(cache_orders_max_size=7, cache_orders_ttl_seconds=30))

        assert caches.orders.max_size == 7
        assert caches.orders.default_ttl == 30
        assert caches.stalls.default_ttl == 600
        assert caches.products.max_size == 2000
        assert [name for name, _ in caches.items()] == [
            "stalls", "products", "orders", "businesses", "users",
        ]

    def test_instances_are_independent(self):
        caches = AppCaches.from_settings(Settings())
        caches.stalls.set("shared", 1)

        assert caches.products.get("shared") is None
        caches.products.clear()
        assert caches.stalls.get("shared") == 1

    def test_cleanup_reports_per_instance(self, clock):
        caches = AppCaches.from_settings(Settings(), clock=clock)
        caches.orders.set("o", 1, ttl=1)
        clock.advance(2)

        removed = caches.cleanup()

        assert removed["orders"] == 1
        assert removed["stalls"] == 0


class TestCacheKeys:
    def test_key_formats(self):
        assert CacheKeys.stall("1") == "stall:1"
        assert CacheKeys.stalls_by_business("b") == "stalls:business:b"
        assert CacheKeys.products_by_stall("s") == "products:stall:s"
        assert CacheKeys.orders_by_customer("c") == "orders:customer:c"
        assert CacheKeys.user_by_email("a@b.c") == "user:email:a@b.c"
        assert CacheKeys.stalls_with_products() == "stalls:with-products"


class TestThreadSafety:
    def test_concurrent_sets_respect_capacity(self):
        cache = CacheManager(max_size=50, default_ttl=60, clock=time.time)

        def worker(prefix):
            for i in range(200):
                cache.set(f"{prefix}:{i}", i)
                cache.get(f"{prefix}:{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        stats = cache.get_stats()
        assert stats.size == 50
        assert stats.evictions == 800 - 50
