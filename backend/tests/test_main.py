"""
Tests for process startup and shutdown wiring.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from eduquest import main
from eduquest.core.cache import CacheClient, InMemoryCacheClient
from eduquest.core.config import Settings
from eduquest.services.ai.cache import SupabaseDurableTier
from eduquest.services.ai.notifications import get_notification_throttle
from eduquest.services.ai.service import AIService, get_ai_service, set_ai_service


@pytest.fixture(autouse=True)
def reset_service():
    yield
    set_ai_service(None)


@pytest.mark.asyncio
async def test_startup_without_backing_stores():
    settings = Settings(fallback_api_key="system-key", log_json=False, notification_cooldown_seconds=2.5)

    service = await main.startup(settings)

    assert isinstance(service, AIService)
    assert get_ai_service() is service
    assert isinstance(service._cache._ephemeral._client, InMemoryCacheClient)
    assert service._cache._durable is None
    assert get_notification_throttle().cooldown_seconds == 2.5

    await main.shutdown()


@pytest.mark.asyncio
async def test_build_result_cache_with_redis_and_supabase():
    settings = Settings(redis_url="redis://cache:6379", supabase_url="https://db.test", supabase_key="key")
    redis_client = AsyncMock()

    with patch.object(main, "initialize_redis", AsyncMock(return_value=True)), \
            patch.object(main, "get_redis_client", return_value=redis_client), \
            patch.object(main, "get_supabase_client", return_value=MagicMock()):
        cache = await main.build_result_cache(settings)

    assert isinstance(cache._ephemeral._client, CacheClient)
    assert isinstance(cache._durable, SupabaseDurableTier)
    assert cache.ephemeral_ttl_seconds == settings.ephemeral_ttl_seconds


@pytest.mark.asyncio
async def test_build_result_cache_redis_unreachable():
    settings = Settings(redis_url="redis://cache:6379")

    with patch.object(main, "initialize_redis", AsyncMock(return_value=False)):
        cache = await main.build_result_cache(settings)

    assert isinstance(cache._ephemeral._client, InMemoryCacheClient)
