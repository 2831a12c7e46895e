"""Process-local TTL cache for read responses.

Callers that just mutated an execution pass `skipCache=true` to read the
store directly; every mutation also clears the cache, so stale entries only
survive mutations made by other processes, and only for the TTL.
"""

from collections.abc import Awaitable, Callable, Hashable
from datetime import datetime, timedelta
from typing import Any

from jobwatch.config import get_settings
from jobwatch.core.datetime_utils import utc_now
from jobwatch.schemas.common import ReadSource


class QueryCache:
    """TTL cache keyed by (operation, parameters)."""

    def __init__(self, ttl_seconds: float = 5.0) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._cache: dict[Hashable, tuple[Any, datetime]] = {}

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Awaitable[Any]],
        skip_cache: bool = False,
    ) -> tuple[Any, ReadSource]:
        """
        Return a cached value or load it.

        Args:
            key: Hashable cache key (operation name plus parameters)
            loader: Coroutine factory reading the authoritative store
            skip_cache: Bypass lookup; the fresh value still refreshes the cache

        Returns:
            (value, source) where source is "cache", "database" or "database-forced"
        """
        if not skip_cache:
            cached = self._get_cached(key)
            if cached is not None:
                return cached, "cache"

        value = await loader()
        if self._ttl.total_seconds() > 0:
            self._cache[key] = (value, utc_now())
        return value, "database-forced" if skip_cache else "database"

    def _get_cached(self, key: Hashable) -> Any | None:
        """Get cached value if not expired."""
        cached = self._cache.get(key)
        if cached:
            value, cached_at = cached
            if utc_now() - cached_at < self._ttl:
                return value
            del self._cache[key]
        return None

    def invalidate(self) -> None:
        """Drop every cached entry (called after any mutation)."""
        self._cache.clear()

    def cache_size(self) -> int:
        """Return current cache size."""
        return len(self._cache)


_cache_instance: QueryCache | None = None


def get_query_cache() -> QueryCache:
    """Get the shared cache instance."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = QueryCache(ttl_seconds=get_settings().query_cache_ttl_seconds)
    return _cache_instance


def reset_query_cache() -> None:
    """Reset the cache instance. Useful for testing."""
    global _cache_instance
    _cache_instance = None
