"""
Key/value cache clients backing the ephemeral result-cache tier.

Two interchangeable clients expose the same `get(key)` / `set(key, value)`
contract over JSON-serialisable values:

- CacheClient: Redis (redis.asyncio) connection pool, for deployments where
  the "device" cache is a per-node Redis.
- InMemoryCacheClient: process-local dictionary, for single-process
  deployments and tests.

Cache failures never fail a request: reads degrade to a miss and writes
report False.
"""
import asyncio
import copy
import json
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import RedisError

from eduquest.core.logging import get_logger

logger = get_logger(__name__)

_redis_pool: Optional[Redis] = None


async def initialize_redis(redis_url: str) -> bool:
    """
    Initialize Redis connection pool.

    Returns:
        True if initialization successful, False otherwise
    """
    global _redis_pool

    try:
        logger.info("redis_initializing", url=redis_url)

        _redis_pool = aioredis.from_url(
            redis_url,
            max_connections=20,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            decode_responses=True,
        )

        await _redis_pool.ping()

        logger.info("redis_initialized")
        return True

    except (RedisError, OSError) as e:
        logger.error(
            "redis_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        _redis_pool = None
        return False


async def close_redis() -> None:
    """Close Redis connection pool."""
    global _redis_pool

    if _redis_pool:
        try:
            await _redis_pool.aclose()
            logger.info("redis_closed")
        except RedisError as e:
            logger.error(
                "redis_close_failed",
                error=str(e),
                exc_info=True,
            )
        finally:
            _redis_pool = None


def get_redis_client() -> Optional[Redis]:
    """Get Redis client (for use in async context)."""
    return _redis_pool


class CacheClient:
    """
    Redis-backed key/value client.

    Values are stored JSON-encoded. A `ttl` of None stores the key without
    server-side expiry.
    """

    def __init__(self, redis_client: Optional[Redis] = None):
        self._redis = redis_client

    @property
    def redis(self) -> Optional[Redis]:
        return self._redis if self._redis is not None else get_redis_client()

    async def get(self, key: str) -> Optional[Any]:
        """
        Get value from cache.

        Returns:
            Cached value if found, None if miss or error
        """
        client = self.redis
        if client is None:
            return None

        try:
            value = await client.get(key)
        except RedisError as e:
            logger.warning(
                "cache_get_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        if value is None:
            return None

        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning("cache_get_undecodable", key=key)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Set value in cache.

        Args:
            key: Cache key
            value: Value to cache (JSON serialized)
            ttl: Optional time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        client = self.redis
        if client is None:
            return False

        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning("cache_set_unserializable", key=key, error=str(e))
            return False

        try:
            if ttl:
                await client.setex(key, ttl, serialized)
            else:
                await client.set(key, serialized)
            return True
        except RedisError as e:
            logger.warning(
                "cache_set_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False


class InMemoryCacheClient:
    """Process-local key/value client with the CacheClient contract."""

    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            value = self._data.get(key)
        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        # ttl is accepted for contract parity; entries are pruned on read by the caller.
        async with self._lock:
            self._data[key] = copy.deepcopy(value)
        return True

    def __len__(self) -> int:
        return len(self._data)

