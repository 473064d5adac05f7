"""
Redis cache backend for the Policy Engine Service.
"""

import re
from typing import Optional

import redis.asyncio as redis

from shared.errors import CacheBackendError
from shared.logging import get_logger
from .backends import CacheBackend

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def escape_pattern(prefix: str) -> str:
    """Escape glob metacharacters for use in a SCAN MATCH pattern."""
    return _GLOB_SPECIAL.sub(r"\\\1", prefix)


class RedisCacheBackend(CacheBackend):
    """Redis-backed cache; every key lives under the engine namespace."""

    def __init__(self, redis_url: str, namespace: str = "policy_engine:",
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.namespace = namespace
        self.logger = get_logger("policy_engine.cache.redis")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis cache."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30
                )

            # Test connection
            await self.redis.ping()

            self.logger.info("Redis cache started", namespace=self.namespace)

        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise CacheBackendError("Failed to start Redis cache", {"error": str(e)})

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache stopped")

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _client(self) -> redis.Redis:
        if self.redis is None:
            raise CacheBackendError("Redis cache not started")
        return self.redis

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client().get(self._key(key))
        except CacheBackendError:
            raise
        except Exception as e:
            raise CacheBackendError("Redis get failed", {"key": key, "error": str(e)})

    async def set(self, key: str, value: str, ttl_seconds: float) -> None:
        try:
            await self._client().set(self._key(key), value, ex=max(1, int(ttl_seconds)))
        except CacheBackendError:
            raise
        except Exception as e:
            raise CacheBackendError("Redis set failed", {"key": key, "error": str(e)})

    async def delete_by_prefix(self, prefix: str) -> int:
        pattern = f"{escape_pattern(self._key(prefix))}*"
        try:
            client = self._client()
            deleted = 0
            batch = []
            async for key in client.scan_iter(match=pattern, count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await client.delete(*batch)
                    batch = []
            if batch:
                deleted += await client.delete(*batch)
        except CacheBackendError:
            raise
        except Exception as e:
            raise CacheBackendError("Redis prefix delete failed", {"prefix": prefix, "error": str(e)})

        self.logger.info("Deleted cache entries by prefix", prefix=prefix, count=deleted)
        return deleted

    async def delete_all(self) -> int:
        return await self.delete_by_prefix("")

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._client().ping()
            return True
        except Exception as e:
            self.logger.error("Redis health check failed", error=str(e))
            return False
