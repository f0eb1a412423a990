"""In-memory TTL cache backing the local Session Store.

LRU cache with per-entry TTL. Suitable for single-instance deployments;
multi-instance deployments should point the Session Store at Redis.
"""

from __future__ import annotations

import asyncio
import time

from collections import OrderedDict
from typing import Any


class TTLCache:
    """In-memory cache with TTL and max size.

    Safe for concurrent asyncio tasks (uses asyncio.Lock). Operations are
    O(1) and touch a single key, so the lock is held only briefly.
    """

    def __init__(self, max_size: int = 1000, default_ttl: float = 60.0) -> None:
        """Initialize cache.

        Args:
            max_size: Maximum number of entries (LRU eviction when exceeded)
            default_ttl: Default time-to-live in seconds
        """
        self._cache: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _live_entry(self, key: str) -> tuple[Any, float] | None:
        """Return the entry for key, dropping it if expired. Caller holds the lock."""
        entry = self._cache.get(key)
        if entry is None:
            return None
        if time.monotonic() > entry[1]:
            del self._cache[key]
            return None
        return entry

    async def get(self, key: str) -> Any | None:
        """Get value from cache if not expired."""
        async with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            self._hits += 1
            return entry[0]

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Set value in cache with TTL."""
        ttl = ttl if ttl is not None else self._default_ttl
        expires_at = time.monotonic() + ttl

        async with self._lock:
            self._cache.pop(key, None)

            while len(self._cache) >= self._max_size:
                self._cache.popitem(last=False)
                self._evictions += 1

            self._cache[key] = (value, expires_at)

    async def delete(self, key: str) -> bool:
        """Remove entry from cache. Returns True if a live entry was removed."""
        async with self._lock:
            return self._live_entry(key) is not None and self._cache.pop(key, None) is not None

    async def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = time.monotonic()
        async with self._lock:
            expired = [key for key, (_, expires_at) in self._cache.items() if now > expires_at]
            for key in expired:
                del self._cache[key]
            return len(expired)

    async def clear(self) -> None:
        """Clear all entries."""
        async with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        total = self._hits + self._misses
        hit_rate = self._hits / total if total > 0 else 0.0
        return {
            "size": len(self._cache),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "evictions": self._evictions,
            "hit_rate": f"{hit_rate:.1%}",
        }
