"""Unit tests for ExpiringCache."""
import asyncio
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

from unittest.mock import AsyncMock
from services.expiring_cache import ExpiringCache


class FakeClock:
    """Manually advanced time source."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestExpiringCache:
    """Test suite for ExpiringCache."""

    def test_get_before_and_after_expiry(self):
        """Test that entries disappear once their ttl has passed."""
        clock = FakeClock()
        cache = ExpiringCache(ttl_seconds=10, clock=clock)
        cache.set("k", "v")

        assert cache.get("k") == "v"
        assert "k" in cache
        clock.now += 10
        assert cache.get("k") is None
        assert "k" not in cache

    def test_per_entry_ttl(self):
        """Test that an explicit ttl overrides the default."""
        clock = FakeClock()
        cache = ExpiringCache(ttl_seconds=10, clock=clock)
        cache.set("short", 1, ttl_seconds=1)
        cache.set("long", 2)

        clock.now += 5
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_invalidate_and_clear(self):
        """Test removing one entry and all entries."""
        cache = ExpiringCache(ttl_seconds=10)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")
        cache.invalidate("missing")
        assert cache.get("a") is None
        assert len(cache) == 1

        cache.clear()
        assert len(cache) == 0

    def test_eviction_prefers_expired_then_oldest(self):
        """Test that the size cap evicts expired entries first, then the oldest."""
        clock = FakeClock()
        cache = ExpiringCache(ttl_seconds=10, max_entries=2, clock=clock)
        cache.set("old", 1, ttl_seconds=1)
        cache.set("keep", 2)
        clock.now += 2

        cache.set("new", 3)
        assert cache.get("keep") == 2
        assert len(cache) == 2

        cache.set("newest", 4)
        assert cache.get("keep") is None
        assert cache.get("new") == 3
        assert cache.get("newest") == 4

    def test_get_or_load_caches_value(self):
        """Test that a loaded value is served from the cache afterwards."""
        cache = ExpiringCache(ttl_seconds=10)
        loader = AsyncMock(return_value=[1, 2])

        assert asyncio.run(cache.get_or_load("k", loader)) == [1, 2]
        assert asyncio.run(cache.get_or_load("k", loader)) == [1, 2]
        loader.assert_awaited_once()

    def test_get_or_load_caches_empty_list(self):
        """Test that an empty result is still a cached answer."""
        cache = ExpiringCache(ttl_seconds=10)
        loader = AsyncMock(return_value=[])

        asyncio.run(cache.get_or_load("k", loader))
        asyncio.run(cache.get_or_load("k", loader))
        loader.assert_awaited_once()

    def test_get_or_load_does_not_cache_none(self):
        """Test that a None result is retried on the next call."""
        cache = ExpiringCache(ttl_seconds=10)
        loader = AsyncMock(return_value=None)

        assert asyncio.run(cache.get_or_load("k", loader)) is None
        asyncio.run(cache.get_or_load("k", loader))
        assert loader.await_count == 2

    def test_failed_loader_serves_stale_value(self):
        """Test that a failing loader falls back to the expired entry."""
        clock = FakeClock()
        cache = ExpiringCache(ttl_seconds=10, clock=clock)
        cache.set("k", "stale")
        clock.now += 20

        loader = AsyncMock(side_effect=RuntimeError("db down"))
        assert asyncio.run(cache.get_or_load("k", loader)) == "stale"

    def test_failed_loader_without_stale_value(self):
        """Test that a failing loader with nothing cached gives None."""
        cache = ExpiringCache(ttl_seconds=10)
        loader = AsyncMock(side_effect=RuntimeError("db down"))
        assert asyncio.run(cache.get_or_load("k", loader)) is None
