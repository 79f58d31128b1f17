"""
Base Cache Module

Core interface for cache backends. The cache only ever holds derived,
regenerable views, so backends are free to lose entries at any time.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

K = TypeVar('K')
V = TypeVar('V')


@dataclass
class CacheResult(Generic[V]):
    """
    Result of a cache operation.

    Attributes:
        success: Whether the operation was successful
        value: The value retrieved or stored
        hit: Whether the value was found in cache (for get operations)
        ttl: Time-to-live in seconds of the entry
        source: Name of the backend that answered
        error: Optional error message if the operation failed
    """
    success: bool
    value: Optional[V] = None
    hit: bool = False
    ttl: Optional[int] = None
    source: Optional[str] = None
    error: Optional[str] = None


class CacheBackend(Generic[K, V], ABC):
    """
    Abstract interface for cache backends.

    Implementations raise ``CacheError`` when the underlying store is
    unreachable; a missing or expired key is a normal miss.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the name of this cache backend."""

    @abstractmethod
    async def get(self, key: K) -> CacheResult[V]:
        """Retrieve a value; ``hit`` is False when absent or expired."""

    @abstractmethod
    async def set(self, key: K, value: V, ttl: int = 0) -> CacheResult[V]:
        """Store a value; ``ttl`` of 0 means no expiration."""

    @abstractmethod
    async def delete(self, key: K) -> bool:
        """Delete a key, returning whether it existed."""

    @abstractmethod
    async def has(self, key: K) -> bool:
        """Check whether a live entry exists for ``key``."""

    @abstractmethod
    async def clear(self) -> bool:
        """Remove every entry owned by this backend."""

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Drop expired entries, returning how many were removed."""

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        """Return backend statistics including ``hits``, ``misses`` and ``hit_rate``."""

    async def close(self) -> None:
        """Release any connections held by the backend."""
