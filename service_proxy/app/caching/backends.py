"""
Key-value backends for the edge cache.

The edge cache only needs ``get``/``set``/``ping``/``close``. Expiry belongs to
the backend: Redis expires keys itself; the memory backend drops entries
lazily on read.
"""

import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import redis.asyncio as redis

from shared.errors import CacheBackendError
from shared.logging import get_logger


class CacheBackend(ABC):
    """Minimal async key-value store with per-key TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        ...

    @abstractmethod
    async def set(self, key: str, value: bytes, ttl: int) -> None:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCacheBackend(CacheBackend):
    """In-process backend for single-node runs and tests."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[bytes, float]] = {}

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        # Plain assignment: concurrent writers to one key resolve last-write-wins
        self._entries[key] = (value, self._clock() + ttl)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """Redis backend; keys expire through ``SET ... EX``."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self.logger = get_logger("proxy.cache_backend")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def get(self, key: str) -> Optional[bytes]:
        try:
            redis_client = await self._get_redis()
            return await redis_client.get(key)
        except redis.RedisError as exc:
            raise CacheBackendError("get", str(exc), details={"key": key}) from exc

    async def set(self, key: str, value: bytes, ttl: int) -> None:
        try:
            redis_client = await self._get_redis()
            await redis_client.set(key, value, ex=ttl)
        except redis.RedisError as exc:
            raise CacheBackendError("set", str(exc), details={"key": key}) from exc

    async def ping(self) -> bool:
        try:
            redis_client = await self._get_redis()
            return bool(await redis_client.ping())
        except redis.RedisError as exc:
            self.logger.warning("Redis ping failed", error=str(exc))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def create_backend(kind: str, redis_url: str) -> CacheBackend:
    """Build the backend named in configuration."""
    if kind == "redis":
        return RedisCacheBackend(redis_url)
    if kind == "memory":
        return MemoryCacheBackend()
    raise ValueError(f"Unknown cache backend: {kind}")
