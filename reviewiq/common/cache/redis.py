"""
Redis Cache Backend Module

Distributed cache backend on ``redis.asyncio``. Values are stored as
JSON under a key prefix; expiry is delegated to Redis (``SETEX``).
"""

import json
import logging
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from reviewiq.common.config import RedisConfig
from reviewiq.common.exceptions import CacheError
from .base import CacheBackend, CacheResult

logger = logging.getLogger(__name__)


class RedisCacheBackend(CacheBackend[str, Any]):
    """
    Redis cache backend implementation.

    Connection failures surface as ``CacheError`` so that callers can
    treat reads as misses and count failed writes.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        config: Optional[RedisConfig] = None,
        name: str = "redis"
    ):
        config = config or RedisConfig()
        self._key_prefix = config.key_prefix
        self._name = name
        if redis_client is not None:
            self._redis = redis_client
        else:
            self._redis = redis.Redis(
                host=config.host,
                port=config.port,
                db=config.db,
                password=config.password,
                socket_timeout=config.socket_timeout,
                decode_responses=True
            )

        self._hits = 0
        self._misses = 0

    @property
    def name(self) -> str:
        return self._name

    def _build_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def get(self, key: str) -> CacheResult[Any]:
        try:
            data = await self._redis.get(self._build_key(key))
        except RedisError as e:
            raise CacheError(f"Redis get failed for {key}", cause=e) from e

        if data is None:
            self._misses += 1
            return CacheResult(success=True, hit=False, source=self.name)

        try:
            value = json.loads(data)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            self._misses += 1
            return CacheResult(success=False, hit=False, source=self.name, error=str(e))

        self._hits += 1
        return CacheResult(success=True, value=value, hit=True, source=self.name)

    async def set(self, key: str, value: Any, ttl: int = 0) -> CacheResult[Any]:
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            raise CacheError(f"Value for {key} is not JSON serialisable", cause=e) from e

        try:
            if ttl > 0:
                await self._redis.setex(self._build_key(key), ttl, payload)
            else:
                await self._redis.set(self._build_key(key), payload)
        except RedisError as e:
            raise CacheError(f"Redis set failed for {key}", cause=e) from e
        return CacheResult(success=True, value=value, ttl=ttl, source=self.name)

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(self._build_key(key)))
        except RedisError as e:
            raise CacheError(f"Redis delete failed for {key}", cause=e) from e

    async def has(self, key: str) -> bool:
        try:
            return bool(await self._redis.exists(self._build_key(key)))
        except RedisError as e:
            raise CacheError(f"Redis exists failed for {key}", cause=e) from e

    async def clear(self) -> bool:
        try:
            keys = [key async for key in self._redis.scan_iter(match=f"{self._key_prefix}*")]
            if keys:
                await self._redis.delete(*keys)
        except RedisError as e:
            raise CacheError("Redis clear failed", cause=e) from e
        return True

    async def cleanup_expired(self) -> int:
        # Redis evicts expired keys itself
        return 0

    async def get_stats(self) -> Dict[str, Any]:
        total = self._hits + self._misses
        stats = {
            'backend': 'redis',
            'hits': self._hits,
            'misses': self._misses,
            'hit_rate': self._hits / total if total > 0 else 0.0,
        }
        try:
            stats['size'] = await self._redis.dbsize()
        except RedisError as e:
            logger.warning(f"Could not read Redis size: {e}")
        return stats

    async def close(self) -> None:
        await self._redis.aclose()
