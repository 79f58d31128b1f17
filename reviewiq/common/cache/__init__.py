"""
Caching System

Pluggable cache backends for derived scheduling views.

Components:
- CacheBackend: async backend interface
- MemoryCacheBackend: in-process LRU with TTL
- RedisCacheBackend: shared cache on redis.asyncio
- KeyBuilder: namespaced, versioned key construction
"""

from reviewiq.common.config import CacheConfig, RedisConfig
from .base import CacheBackend, CacheResult
from .entry import CacheEntry
from .key_builder import KeyBuilder
from .memory import MemoryCacheBackend
from .redis import RedisCacheBackend


def create_cache_backend(cache_config: CacheConfig, redis_config: RedisConfig) -> CacheBackend:
    """Build the backend selected by ``cache_config.backend``."""
    if cache_config.backend == "redis":
        return RedisCacheBackend(config=redis_config)
    return MemoryCacheBackend(max_size=cache_config.max_size)


__all__ = [
    'CacheBackend',
    'CacheResult',
    'CacheEntry',
    'KeyBuilder',
    'MemoryCacheBackend',
    'RedisCacheBackend',
    'create_cache_backend',
]
