"""Tests for the read cache."""

from datetime import timedelta

import pytest

from jobwatch.core.datetime_utils import utc_now
from jobwatch.services import query_cache as query_cache_module
from jobwatch.services.query_cache import QueryCache, get_query_cache, reset_query_cache

pytestmark = pytest.mark.asyncio


class CountingLoader:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> dict:
        self.calls += 1
        return {"calls": self.calls}


class TestQueryCache:
    async def test_first_read_hits_database(self):
        cache = QueryCache(ttl_seconds=60)
        loader = CountingLoader()

        value, source = await cache.get_or_load(("by_id", "a"), loader)

        assert value == {"calls": 1}
        assert source == "database"

    async def test_second_read_hits_cache(self):
        cache = QueryCache(ttl_seconds=60)
        loader = CountingLoader()

        await cache.get_or_load(("by_id", "a"), loader)
        value, source = await cache.get_or_load(("by_id", "a"), loader)

        assert source == "cache"
        assert value == {"calls": 1}
        assert loader.calls == 1

    async def test_skip_cache_forces_fresh_read(self):
        """Should bypass the cache and refresh it with the new value."""
        cache = QueryCache(ttl_seconds=60)
        loader = CountingLoader()

        await cache.get_or_load(("by_id", "a"), loader)
        value, source = await cache.get_or_load(("by_id", "a"), loader, skip_cache=True)
        cached, cached_source = await cache.get_or_load(("by_id", "a"), loader)

        assert source == "database-forced"
        assert value == {"calls": 2}
        assert cached_source == "cache"
        assert cached == {"calls": 2}

    async def test_keys_are_independent(self):
        cache = QueryCache(ttl_seconds=60)
        loader = CountingLoader()

        await cache.get_or_load(("by_id", "a"), loader)
        _, source = await cache.get_or_load(("by_id", "b"), loader)

        assert source == "database"
        assert cache.cache_size() == 2

    async def test_entries_expire(self, monkeypatch):
        """Should reload once the TTL has passed."""
        cache = QueryCache(ttl_seconds=5)
        loader = CountingLoader()
        await cache.get_or_load("key", loader)

        later = utc_now() + timedelta(seconds=6)
        monkeypatch.setattr(query_cache_module, "utc_now", lambda: later)
        _, source = await cache.get_or_load("key", loader)

        assert source == "database"
        assert loader.calls == 2

    async def test_zero_ttl_disables_caching(self):
        cache = QueryCache(ttl_seconds=0)
        loader = CountingLoader()

        await cache.get_or_load("key", loader)
        _, source = await cache.get_or_load("key", loader)

        assert source == "database"
        assert cache.cache_size() == 0

    async def test_invalidate_clears_everything(self):
        cache = QueryCache(ttl_seconds=60)
        loader = CountingLoader()
        await cache.get_or_load("a", loader)
        await cache.get_or_load("b", loader)

        cache.invalidate()

        assert cache.cache_size() == 0


class TestSharedCache:
    async def test_singleton_until_reset(self):
        reset_query_cache()
        first = get_query_cache()

        assert get_query_cache() is first

        reset_query_cache()
        assert get_query_cache() is not first
        reset_query_cache()
