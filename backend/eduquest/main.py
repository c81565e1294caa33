"""
Process lifecycle for the AI layer: wire logging, tracing and the cache
tiers, then install the process-wide AIService.

Usage from the host application:

    service = await startup()
    ...
    await shutdown()
"""
from typing import Optional

from .core.cache import CacheClient, InMemoryCacheClient, close_redis, get_redis_client, initialize_redis
from .core.config import Settings, get_settings
from .core.database import get_supabase_client
from .core.logging import configure_logging, get_logger
from .core.tracing import configure_tracing, shutdown_tracing
from .services.ai.cache import EphemeralTier, SupabaseDurableTier, TwoTierResultCache
from .services.ai.notifications import NotificationThrottle, set_notification_throttle
from .services.ai.service import AIService, set_ai_service

logger = get_logger(__name__)


async def build_result_cache(settings: Settings) -> TwoTierResultCache:
    """Redis-backed ephemeral tier when reachable, Supabase durable tier when configured."""
    ephemeral_client = InMemoryCacheClient()
    if settings.redis_url:
        if await initialize_redis(settings.redis_url):
            ephemeral_client = CacheClient(get_redis_client())
        else:
            logger.warning(
                "app_startup_redis_unavailable",
                message="Using the in-process ephemeral cache instead.",
            )

    durable = None
    supabase = get_supabase_client(settings)
    if supabase is not None:
        durable = SupabaseDurableTier(supabase)
    else:
        logger.warning(
            "app_startup_durable_cache_unavailable",
            message="Results will only be cached in the ephemeral tier.",
        )

    return TwoTierResultCache(
        EphemeralTier(ephemeral_client),
        durable,
        ephemeral_ttl_seconds=settings.ephemeral_ttl_seconds,
        durable_stale_seconds=settings.durable_stale_seconds,
    )


async def startup(settings: Optional[Settings] = None) -> AIService:
    """Initialize services and install the process-wide AIService."""
    settings = settings or get_settings()
    configure_logging(log_level=settings.log_level, json_output=settings.log_json)
    if settings.otlp_endpoint:
        configure_tracing(otlp_endpoint=settings.otlp_endpoint)

    logger.info("app_startup_started")
    service = AIService(settings, cache=await build_result_cache(settings))
    set_ai_service(service)
    set_notification_throttle(NotificationThrottle.from_settings(settings))
    logger.info(
        "app_startup_completed",
        fallback_key_configured=bool(settings.fallback_api_key),
    )
    return service


async def shutdown() -> None:
    """Cleanup resources on application shutdown."""
    logger.info("app_shutdown_started")
    set_ai_service(None)
    set_notification_throttle(None)
    shutdown_tracing()
    await close_redis()
    logger.info("app_shutdown_completed")
