"""
Memory Cache Backend Module

In-process cache backend with LRU eviction and per-entry TTL. Used in
development, in tests and as the default when no Redis is configured.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, TypeVar

from .base import CacheBackend, CacheResult
from .entry import CacheEntry

logger = logging.getLogger(__name__)

K = TypeVar('K')
V = TypeVar('V')


class MemoryCacheBackend(CacheBackend[K, V]):
    """
    In-memory cache backend implementation.

    Entries live in an ``OrderedDict`` ordered by recency of use; when
    ``max_size`` is reached the least recently used entry is evicted.
    Expired entries are dropped lazily on access and in bulk by
    ``cleanup_expired``.
    """

    def __init__(self, max_size: int = 10000, name: str = "memory",
                 clock: Callable[[], float] = time.monotonic):
        self._cache: "OrderedDict[K, CacheEntry[V]]" = OrderedDict()
        self._lock = threading.RLock()
        self._max_size = max_size
        self._name = name
        self._clock = clock

        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @property
    def name(self) -> str:
        return self._name

    async def get(self, key: K) -> CacheResult[V]:
        with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._misses += 1
                return CacheResult(success=True, hit=False, source=self.name)

            if entry.is_expired():
                del self._cache[key]
                self._expirations += 1
                self._misses += 1
                return CacheResult(success=True, hit=False, source=self.name)

            self._cache.move_to_end(key)
            self._hits += 1
            return CacheResult(
                success=True,
                value=entry.access(),
                hit=True,
                ttl=entry.remaining_ttl(),
                source=self.name
            )

    async def set(self, key: K, value: V, ttl: int = 0) -> CacheResult[V]:
        with self._lock:
            if key not in self._cache and len(self._cache) >= self._max_size:
                self._evict_entries()
            self._cache[key] = CacheEntry(value, ttl=ttl, clock=self._clock)
            self._cache.move_to_end(key)
            return CacheResult(success=True, value=value, ttl=ttl, source=self.name)

    async def delete(self, key: K) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    async def has(self, key: K) -> bool:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return False
            if entry.is_expired():
                del self._cache[key]
                self._expirations += 1
                return False
            return True

    async def clear(self) -> bool:
        with self._lock:
            self._cache.clear()
            return True

    async def cleanup_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._cache[key]
            self._expirations += len(expired_keys)
        if expired_keys:
            logger.debug(f"Removed {len(expired_keys)} expired entries from {self.name}")
        return len(expired_keys)

    async def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                'backend': 'memory',
                'size': len(self._cache),
                'max_size': self._max_size,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / total if total > 0 else 0.0,
                'evictions': self._evictions,
                'expirations': self._expirations
            }

    def _evict_entries(self) -> None:
        while len(self._cache) >= self._max_size:
            self._cache.popitem(last=False)
            self._evictions += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
