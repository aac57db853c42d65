"""
Unit tests for the TTL validation cache.
"""
import asyncio
from datetime import datetime, timedelta

import pytest

from meeting_agent.domain.cache.validation_cache import ValidationCache


class TestValidationCache:
    """Tests for get/set, expiry and eviction."""

    @pytest.mark.asyncio
    async def test_set_and_get(self):
        cache = ValidationCache()
        await cache.set("alice@example.com", {"exists": True})

        assert await cache.get("alice@example.com") == {"exists": True}
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_miss_returns_none(self):
        cache = ValidationCache()

        assert await cache.get("missing") is None
        assert cache.get_stats()["total_validations"] == 1

    @pytest.mark.asyncio
    async def test_expired_entry_is_removed(self):
        """An expired entry reads as a miss and is dropped from the map."""
        cache = ValidationCache()
        await cache.set("key", "value", ttl=0)
        cache._entries["key"].expiry = datetime.utcnow() - timedelta(seconds=1)

        assert await cache.get("key") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_has_does_not_count_hits(self):
        cache = ValidationCache()
        await cache.set("key", "value")

        assert await cache.has("key") is True
        assert await cache.has("other") is False
        assert cache.get_stats()["total_validations"] == 0

    @pytest.mark.asyncio
    async def test_eviction_removes_earliest_expiry(self):
        """Overflowing the cache evicts 20% of max_size, earliest expiry first."""
        cache = ValidationCache(ttl=300, max_size=10)
        for index in range(10):
            await cache.set(f"key-{index}", index, ttl=100 + index)
        await cache.set("key-new", 99, ttl=1000)

        assert len(cache) == 9
        assert await cache.has("key-0") is False
        assert await cache.has("key-1") is False
        assert await cache.has("key-2") is True
        assert await cache.has("key-new") is True

    @pytest.mark.asyncio
    async def test_size_never_exceeds_max(self):
        cache = ValidationCache(max_size=5)
        for index in range(50):
            await cache.set(f"key-{index}", index)

        assert len(cache) <= 5

    @pytest.mark.asyncio
    async def test_delete_and_clear(self):
        cache = ValidationCache()
        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.get("a")

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False

        await cache.clear()
        assert len(cache) == 0
        assert cache.get_stats()["hit_rate"] == 0.0

    @pytest.mark.asyncio
    async def test_get_or_set_calls_factory_once(self):
        cache = ValidationCache()
        calls = []

        async def factory():
            calls.append(1)
            return "built"

        assert await cache.get_or_set("key", factory) == "built"
        assert await cache.get_or_set("key", factory) == "built"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_clear_expired_and_expiring_keys(self):
        cache = ValidationCache()
        await cache.set("stale", 1)
        await cache.set("soon", 2, ttl=30)
        await cache.set("later", 3, ttl=3600)
        cache._entries["stale"].expiry = datetime.utcnow() - timedelta(seconds=1)

        assert await cache.get_expiring_keys(within_seconds=60) == ["soon"]
        assert await cache.clear_expired() == 1
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_stats(self):
        cache = ValidationCache(max_size=50)
        await cache.set("a", 1)
        await cache.get("a")
        await cache.get("b")
        cache.record_validation_time(10.0)
        cache.record_validation_time(30.0)
        stats = cache.get_stats()

        assert stats["size"] == 1
        assert stats["max_size"] == 50
        assert stats["hit_rate"] == 0.5
        assert stats["cache_efficiency"] == 50.0
        assert stats["average_validation_time"] == 20.0

    @pytest.mark.asyncio
    async def test_concurrent_writers(self):
        """Concurrent sets from many tasks keep the map consistent."""
        cache = ValidationCache(max_size=20)
        await asyncio.gather(*(cache.set(f"key-{index}", index) for index in range(100)))

        assert len(cache) <= 20
