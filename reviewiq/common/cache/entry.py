"""
Cache Entry Module

Value wrapper used by the in-process backend to track expiry and access.
"""

import time
from typing import Callable, Generic, Optional, TypeVar

V = TypeVar('V')


class CacheEntry(Generic[V]):
    """A cached value with its expiry time and access counters."""

    def __init__(self, value: V, ttl: int = 0, clock: Callable[[], float] = time.monotonic):
        self.value = value
        self.ttl = ttl
        self._clock = clock
        self.created_at = clock()
        self.expires_at: Optional[float] = self.created_at + ttl if ttl > 0 else None
        self.last_accessed = self.created_at
        self.access_count = 0

    def is_expired(self, current_time: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        now = self._clock() if current_time is None else current_time
        return now >= self.expires_at

    def remaining_ttl(self) -> Optional[int]:
        if self.expires_at is None:
            return None
        return max(0, int(self.expires_at - self._clock()))

    def access(self) -> V:
        self.last_accessed = self._clock()
        self.access_count += 1
        return self.value

    def __repr__(self) -> str:
        return f"CacheEntry(ttl={self.ttl}, access_count={self.access_count})"
