"""Explicit cache for read queries, keyed by logical query identity.

Keys are tuples such as ``("notifications", 7)``. Writers never lock entries;
they invalidate the keys their change affects and the next read reloads.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Hashable, Iterable

from flask import current_app

logger = logging.getLogger(__name__)

CacheKey = tuple[Hashable, ...]


def _as_key(key: Hashable | CacheKey) -> CacheKey:
    return key if isinstance(key, tuple) else (key,)


class QueryCache:
    def __init__(self) -> None:
        self._entries: dict[CacheKey, Any] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable | CacheKey, default: Any = None) -> Any:
        with self._lock:
            return self._entries.get(_as_key(key), default)

    def set(self, key: Hashable | CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[_as_key(key)] = value

    def __contains__(self, key: Hashable | CacheKey) -> bool:
        with self._lock:
            return _as_key(key) in self._entries

    def fetch(self, key: Hashable | CacheKey, loader: Callable[[], Any]) -> Any:
        """Return the cached value, loading and storing it on a miss.

        The loader runs outside the lock; two concurrent misses both load and
        the last one stored wins.
        """
        cache_key = _as_key(key)
        with self._lock:
            if cache_key in self._entries:
                self.hits += 1
                return self._entries[cache_key]
            self.misses += 1
        value = loader()
        with self._lock:
            self._entries[cache_key] = value
        return value

    def invalidate(self, prefix: Hashable | CacheKey) -> int:
        """Drop every entry whose key starts with ``prefix``; returns how many went."""
        cache_prefix = _as_key(prefix)
        size = len(cache_prefix)
        with self._lock:
            doomed = [key for key in self._entries if key[:size] == cache_prefix]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Invalidated %d cache entries under %r", len(doomed), cache_prefix)
        return len(doomed)

    def invalidate_many(self, prefixes: Iterable[Hashable | CacheKey]) -> int:
        return sum(self.invalidate(prefix) for prefix in prefixes)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def get_query_cache() -> QueryCache:
    return current_app.extensions["query_cache"]


__all__ = ["CacheKey", "QueryCache", "get_query_cache"]
