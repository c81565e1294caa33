"""
Unit tests for the key/value cache clients backing the ephemeral tier.
"""
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from eduquest.core.cache import CacheClient, InMemoryCacheClient, close_redis, initialize_redis


@pytest.mark.asyncio
async def test_cache_client_get_set():
    """Test cache client get and set operations."""
    with patch("eduquest.core.cache.get_redis_client") as mock_get_redis:
        mock_redis = AsyncMock()
        mock_get_redis.return_value = mock_redis

        cache = CacheClient()

        # No ttl: stored without server-side expiry
        success = await cache.set("test_key", {"data": "value"})
        assert success is True
        mock_redis.set.assert_awaited_once_with("test_key", '{"data": "value"}')

        success = await cache.set("test_key", {"data": "value"}, 300)
        assert success is True
        mock_redis.setex.assert_awaited_once_with("test_key", 300, '{"data": "value"}')

        mock_redis.get = AsyncMock(return_value='{"data": "value"}')
        result = await cache.get("test_key")
        assert result == {"data": "value"}


@pytest.mark.asyncio
async def test_cache_client_without_redis():
    """Reads miss and writes report failure when Redis is not initialized."""
    with patch("eduquest.core.cache.get_redis_client", return_value=None):
        cache = CacheClient()

        assert await cache.get("test_key") is None
        assert await cache.set("test_key", "value") is False


@pytest.mark.asyncio
async def test_cache_client_redis_errors_degrade():
    mock_redis = AsyncMock()
    mock_redis.get = AsyncMock(side_effect=RedisConnectionError("connection reset"))
    mock_redis.set = AsyncMock(side_effect=RedisConnectionError("connection reset"))
    cache = CacheClient(mock_redis)

    assert await cache.get("test_key") is None
    assert await cache.set("test_key", ["a"]) is False


@pytest.mark.asyncio
async def test_cache_client_undecodable_value():
    mock_redis = AsyncMock()
    mock_redis.get = AsyncMock(return_value="not-json{")

    assert await CacheClient(mock_redis).get("test_key") is None


@pytest.mark.asyncio
async def test_cache_client_unserializable_value():
    mock_redis = AsyncMock()

    assert await CacheClient(mock_redis).set("test_key", {1, 2}) is False
    mock_redis.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_in_memory_client_copies_values():
    client = InMemoryCacheClient()
    value = {"value": ["Biology"]}

    assert await client.set("k", value) is True
    value["value"].append("mutated")
    stored = await client.get("k")

    assert stored == {"value": ["Biology"]}
    assert len(client) == 1
    assert await client.get("missing") is None


@pytest.mark.asyncio
async def test_initialize_redis_failure_returns_false():
    with patch("eduquest.core.cache.aioredis.from_url") as mock_from_url:
        mock_pool = AsyncMock()
        mock_pool.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        mock_from_url.return_value = mock_pool

        assert await initialize_redis("redis://localhost:6379") is False


@pytest.mark.asyncio
async def test_initialize_and_close_redis():
    with patch("eduquest.core.cache.aioredis.from_url") as mock_from_url:
        mock_pool = AsyncMock()
        mock_from_url.return_value = mock_pool

        assert await initialize_redis("redis://localhost:6379") is True
        await close_redis()

        mock_pool.aclose.assert_awaited_once()
