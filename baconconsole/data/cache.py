"""In-memory TTL cache for chain reads, partitioned by RPC endpoint."""

import logging
import time
from collections import OrderedDict
from functools import wraps
from typing import Any, Callable, Hashable

from ..core.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 256

MISSING = object()

CacheKey = tuple[str, Hashable]


class SimpleCache:
    """
    TTL cache with LRU eviction.

    Keys are (namespace, key) pairs so all entries of one RPC endpoint can be
    dropped at once. Single event loop only; not thread-safe.
    """

    def __init__(self, default_ttl: float | None = None, max_size: int = DEFAULT_MAX_SIZE):
        self._entries: OrderedDict[CacheKey, tuple[Any, float]] = OrderedDict()
        self.default_ttl = default_ttl or get_settings().delegate_cache_ttl_seconds
        self.max_size = max_size

    def get(self, namespace: str, key: Hashable) -> Any:
        """Cached value, or MISSING when absent or expired."""
        entry = self._entries.get((namespace, key))
        if entry is None:
            return MISSING
        value, expires_at = entry
        if time.monotonic() >= expires_at:
            del self._entries[(namespace, key)]
            return MISSING
        self._entries.move_to_end((namespace, key))
        return value

    def set(self, namespace: str, key: Hashable, value: Any, ttl: float | None = None) -> None:
        self._entries.pop((namespace, key), None)
        while len(self._entries) >= self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache full, evicted {evicted[0]} entry")
        self._entries[(namespace, key)] = (value, time.monotonic() + (ttl or self.default_ttl))

    def invalidate(self, namespace: str) -> int:
        """Drop every entry of a namespace. Returns how many were dropped."""
        stale = [k for k in self._entries if k[0] == namespace]
        for k in stale:
            del self._entries[k]
        if stale:
            logger.debug(f"Invalidated {len(stale)} cached reads for {namespace}")
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    @property
    def size(self) -> int:
        return len(self._entries)


_cache = SimpleCache()


def cached(ttl: float | None = None) -> Callable:
    """
    Cache an async provider method by its arguments.

    The namespace is the instance's cache_namespace (its RPC base URL), so
    providers pointed at different nodes never share results. Exceptions
    propagate and nothing is stored for them.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(self: Any, *args: Hashable) -> Any:
            namespace = getattr(self, "cache_namespace", type(self).__name__)
            key = (func.__qualname__, args)

            value = _cache.get(namespace, key)
            if value is not MISSING:
                return value

            value = await func(self, *args)
            _cache.set(namespace, key, value, ttl)
            return value

        return wrapper

    return decorator


def get_cache() -> SimpleCache:
    """Get the global cache instance."""
    return _cache
