from __future__ import annotations

import os
import threading
from typing import Any

from cachetools import TTLCache


def _bounded_env_int(name: str, default: int, lo: int, hi: int) -> int:
    try:
        value = int(os.getenv(name, str(default)) or default)
    except ValueError:
        value = default
    return max(lo, min(hi, value))


class LookupCache:
    """Process-local TTL cache for small, rarely-changing lookups (role index)."""

    def __init__(self, *, ttl: int, maxsize: int):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any:
        with self._lock:
            val = self._cache.get(key)
            if val is None:
                self._misses += 1
            else:
                self._hits += 1
            return val

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = value

    def drop_prefix(self, prefix: str) -> int:
        if not prefix:
            return 0
        with self._lock:
            keys = [k for k in list(self._cache.keys()) if str(k).startswith(prefix)]
            for k in keys:
                self._cache.pop(k, None)
        return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "maxsize": self._cache.maxsize,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total * 100, 2) if total else 0.0,
            }


_cache = LookupCache(
    ttl=_bounded_env_int("CACHE_TTL_SECONDS", 60, 1, 3600),
    maxsize=_bounded_env_int("CACHE_MAX_ITEMS", 1000, 100, 100_000),
)


def cache_get(key: str) -> Any:
    return _cache.get(key)


def cache_set(key: str, value: Any) -> None:
    _cache.set(key, value)


def cache_invalidate_prefix(prefix: str) -> int:
    return _cache.drop_prefix(str(prefix or ""))


def cache_clear() -> None:
    _cache.clear()


def cache_stats() -> dict[str, Any]:
    return _cache.stats()
