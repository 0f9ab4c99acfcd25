"""Tests for the bounded TTL cache and its sweeper."""

import threading

import pytest
from fastapi.testclient import TestClient

from teamcoach.app import create_app
from teamcoach.cache import CacheSweeper, TTLCache
from teamcoach.config import get_settings
from teamcoach.stores import build_stores
from tests.helpers import FakeClock


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(ttl_seconds=300, max_entries=3, clock=clock, name="test")


class TestExpiry:
    """An entry is a hit only while younger than the TTL."""

    def test_hit_before_ttl(self, cache, clock):
        cache.set("a", 1)
        clock.advance(299.9)
        assert cache.get("a") == 1

    def test_miss_at_exact_ttl(self, cache, clock):
        cache.set("a", 1)
        clock.advance(300)
        assert cache.get("a") is None

    def test_expired_entry_is_removed_on_read(self, cache, clock):
        cache.set("a", 1)
        clock.advance(301)
        cache.get("a")
        assert len(cache) == 0

    def test_overwrite_restarts_ttl(self, cache, clock):
        cache.set("a", 1)
        clock.advance(200)
        cache.set("a", 2)
        clock.advance(200)
        assert cache.get("a") == 2

    def test_purge_expired_counts_removed(self, cache, clock):
        cache.set("a", 1)
        cache.set("b", 2)
        clock.advance(150)
        cache.set("c", 3)
        clock.advance(160)
        assert cache.purge_expired() == 2
        assert "c" in cache


class TestEviction:
    """Capacity is enforced by evicting the least recently used entry."""

    def test_evicts_least_recently_inserted(self, cache):
        for key in ("a", "b", "c", "d"):
            cache.set(key, key)
        assert len(cache) == 3
        assert cache.get("a") is None
        assert cache.get("d") == "d"

    def test_read_refreshes_recency(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        cache.get("a")
        cache.set("d", 4)
        assert cache.get("a") == 1
        assert cache.get("b") is None

    def test_size_never_exceeds_capacity(self, clock):
        cache = TTLCache(ttl_seconds=60, max_entries=10, clock=clock)
        for i in range(100):
            cache.set(f"k{i}", i)
            assert len(cache) <= 10


class TestInvalidation:
    def test_invalidate_removes_key(self, cache):
        cache.set("a", 1)
        assert cache.invalidate("a") is True
        assert cache.get("a") is None

    def test_invalidate_missing_key(self, cache):
        assert cache.invalidate("missing") is False

    def test_invalidate_prefix(self, clock):
        cache = TTLCache(ttl_seconds=60, max_entries=10, clock=clock)
        cache.set("account:1", 1)
        cache.set("account:2", 2)
        cache.set("subject:1", "1")
        assert cache.invalidate_prefix("account:") == 2
        assert "subject:1" in cache

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.clear() == 2
        assert len(cache) == 0


class TestStaleFill:
    """A fill started before an invalidation must not land afterwards."""

    def test_fill_after_invalidation_is_dropped(self, cache):
        epoch = cache.begin_fill()
        # A writer commits and invalidates while the reader is still loading
        cache.invalidate("a")
        cache.set("a", "stale", epoch=epoch)
        assert cache.get("a") is None

    def test_fill_without_invalidation_lands(self, cache):
        epoch = cache.begin_fill()
        cache.set("a", "fresh", epoch=epoch)
        assert cache.get("a") == "fresh"

    def test_unguarded_set_always_lands(self, cache):
        cache.begin_fill()
        cache.invalidate("x")
        cache.set("a", 1)
        assert cache.get("a") == 1


class TestStats:
    def test_hits_and_misses(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.get("b")
        stats = cache.stats
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["name"] == "test"


class TestConfiguration:
    @pytest.mark.parametrize("ttl", [0, -1])
    def test_rejects_non_positive_ttl(self, ttl):
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=ttl)

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            TTLCache(max_entries=0)

    def test_sweeper_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            CacheSweeper([], interval_seconds=0)


class TestConcurrency:
    def test_parallel_writers_respect_capacity(self):
        cache = TTLCache(ttl_seconds=60, max_entries=50)

        def writer(offset: int) -> None:
            for i in range(200):
                cache.set(f"{offset}:{i}", i)
                cache.get(f"{offset}:{i // 2}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) <= 50


class TestSweeper:
    def test_sweep_once_purges_every_cache(self, clock):
        first = TTLCache(ttl_seconds=10, clock=clock)
        second = TTLCache(ttl_seconds=10, clock=clock)
        first.set("a", 1)
        second.set("b", 2)
        clock.advance(11)

        sweeper = CacheSweeper([first, second], interval_seconds=60)
        assert sweeper.sweep_once() == 2

    def test_failing_cache_does_not_stop_sweep(self, clock):
        class Broken(TTLCache):
            def purge_expired(self) -> int:
                raise RuntimeError("boom")

        good = TTLCache(ttl_seconds=10, clock=clock)
        good.set("a", 1)
        clock.advance(11)

        sweeper = CacheSweeper([Broken(clock=clock, name="broken"), good], interval_seconds=60)
        assert sweeper.sweep_once() == 1

    def test_start_and_stop(self):
        sweeper = CacheSweeper([TTLCache()], interval_seconds=60)
        sweeper.start()
        assert sweeper.running
        sweeper.stop(timeout=2)
        assert not sweeper.running


class TestSweeperWiring:
    def test_positive_interval_builds_sweeper(self, monkeypatch, clock):
        monkeypatch.setenv("CACHE_SWEEP_INTERVAL_SECONDS", "30")
        stores = build_stores(get_settings(), clock=clock)

        assert stores.sweeper is not None
        assert stores.sweeper.interval_seconds == 30

    def test_zero_interval_disables_sweeper(self, monkeypatch, clock):
        monkeypatch.setenv("CACHE_SWEEP_INTERVAL_SECONDS", "0")
        stores = build_stores(get_settings(), clock=clock)

        assert stores.sweeper is None
        assert len(stores.caches) == 3

    def test_app_starts_without_sweeper(self, monkeypatch, clock):
        monkeypatch.setenv("CACHE_SWEEP_INTERVAL_SECONDS", "0")
        stores = build_stores(get_settings(), clock=clock)
        app = create_app(skip_auth_middleware=True, stores=stores)

        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
