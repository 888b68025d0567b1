"""Tests for geometry_cache.py: keys, LRU eviction, refcounts, threading."""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import numpy as np
import pytest

from member_geometry.config import CacheConfig
from member_geometry.geometry_cache import GeometryCache, cache_key, estimate_size


class _Solid:
    def __init__(self, n=10):
        self.vertices = np.zeros((n, 3))
        self.faces = np.zeros((n, 3), dtype=np.int64)


class TestCacheKey:
    def test_format(self):
        assert cache_key("H", {"b": 2, "a": 1}, 3000) == "H[a:1.00|b:2.00]@L3000"

    def test_insertion_order_irrelevant(self):
        a = cache_key("BOX", {"width": 200, "height": 300, "wallThickness": 9}, 4000.0)
        b = cache_key("BOX", {"wallThickness": 9, "height": 300, "width": 200}, 4000.0)
        assert a == b

    def test_rounding(self):
        assert cache_key("H", {"a": 1.004}, 3000.2) == cache_key("H", {"a": 1.0}, 3000.0)
        assert cache_key("H", {"a": 1.01}, 3000) != cache_key("H", {"a": 1.0}, 3000)

    def test_none_dropped_strings_kept(self):
        key = cache_key("PILE", {"a": None, "kind": "ExtendedFoot", "d": 1000}, 10000)
        assert key == "PILE[d:1000.00|kind:ExtendedFoot]@L10000"

    def test_estimate_size(self):
        solid = _Solid(100)
        assert estimate_size(solid) == 100 * 3 * 8 * 2
        assert estimate_size(object()) == 1024


class TestGeometryCache:
    def test_miss_then_hit(self):
        cache = GeometryCache()
        assert cache.get("k") is None
        solid = _Solid()
        assert cache.set("k", solid) is solid
        assert cache.get("k") is solid
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(0.5)
        assert stats["entries"] == 1

    def test_first_insert_wins(self):
        cache = GeometryCache()
        first, second = _Solid(), _Solid()
        cache.set("k", first)
        assert cache.set("k", second) is first

    def test_get_or_create_calls_factory_once(self):
        cache = GeometryCache()
        calls = []

        def factory():
            calls.append(1)
            return _Solid()

        a = cache.get_or_create("k", factory)
        b = cache.get_or_create("k", factory)
        assert a is b
        assert len(calls) == 1

    def test_evicts_least_recently_used(self):
        cache = GeometryCache(CacheConfig(max_entries=2))
        cache.set("a", _Solid())
        time.sleep(0.001)
        cache.set("b", _Solid())
        cache.set("c", _Solid())
        assert "a" not in cache
        assert "b" in cache and "c" in cache
        assert cache.stats()["evictions"] == 1

    def test_shared_entries_not_evicted(self):
        cache = GeometryCache(CacheConfig(max_entries=2))
        cache.set("a", _Solid())
        cache.get("a")  # refcount 2
        time.sleep(0.001)
        cache.set("b", _Solid())
        cache.set("c", _Solid())
        assert "a" in cache
        assert "b" not in cache

    def test_release_makes_evictable(self):
        cache = GeometryCache(CacheConfig(max_entries=1))
        cache.set("a", _Solid())
        cache.get("a")
        cache.release("a")
        cache.set("b", _Solid())
        assert "a" not in cache
        assert len(cache) == 1

    def test_grows_when_everything_shared(self, caplog):
        cache = GeometryCache(CacheConfig(max_entries=1))
        cache.set("a", _Solid())
        cache.get("a")
        cache.set("b", _Solid())
        assert len(cache) == 2
        assert "every entry is shared" in caplog.text

    def test_release_trims_overflow(self):
        cache = GeometryCache(CacheConfig(max_entries=2))
        for key in ("a", "b", "c", "d"):
            cache.set(key, _Solid())
            cache.get(key)
            time.sleep(0.001)
        assert len(cache) == 4
        for key in ("a", "b", "c", "d"):
            cache.release(key)
        assert len(cache) == 2
        assert "c" in cache and "d" in cache

    def test_release_unknown_or_none_key(self):
        cache = GeometryCache()
        cache.set("a", _Solid())
        cache.release(None)
        cache.release("missing")
        assert len(cache) == 1

    def test_release_result_covers_secondaries(self):
        cache = GeometryCache(CacheConfig(max_entries=1))
        for key in ("body", "plate"):
            cache.set(key, _Solid())
            cache.get(key)
        result = SimpleNamespace(
            cache_key="body",
            secondary_profiles=(SimpleNamespace(cache_key="plate"),),
        )
        cache.release_result(result)
        assert len(cache) == 1

    def test_byte_ceiling(self):
        cache = GeometryCache(CacheConfig(max_entries=100, max_bytes=5000, min_entry_bytes=1024))
        for i in range(10):
            cache.set(f"k{i}", object())
            time.sleep(0.0005)
        stats = cache.stats()
        assert stats["total_bytes"] <= 5000
        assert stats["entries"] == 4
        assert "k9" in cache

    def test_disabled(self):
        cache = GeometryCache(CacheConfig(enabled=False))
        solid = _Solid()
        assert cache.set("k", solid) is solid
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_set_enabled_false_clears(self):
        cache = GeometryCache()
        cache.set("k", _Solid())
        cache.set_enabled(False)
        assert not cache.enabled
        assert len(cache) == 0
        cache.set_enabled(True)
        cache.set("k", _Solid())
        assert "k" in cache

    def test_clear_resets_stats(self):
        cache = GeometryCache()
        cache.set("k", _Solid())
        cache.get("k")
        cache.clear()
        assert cache.stats() == {
            "entries": 0,
            "total_bytes": 0,
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "hit_rate": 0.0,
            "enabled": True,
        }

    def test_thread_safety(self):
        cache = GeometryCache(CacheConfig(max_entries=1000))
        created = []
        lock = threading.Lock()

        def factory():
            with lock:
                created.append(1)
            return _Solid()

        def work(i):
            return cache.get_or_create(f"k{i % 20}", factory)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(work, range(400)))

        assert len(cache) == 20
        for i in range(20):
            assert all(r is results[i] for r in results[i::20])
        stats = cache.stats()
        assert stats["hits"] + stats["misses"] == 400
