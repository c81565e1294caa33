"""
Supabase connection for the durable result-cache tier.
"""
from typing import Optional

from supabase import Client, create_client

from eduquest.core.config import Settings
from eduquest.core.logging import get_logger

logger = get_logger(__name__)


def get_supabase_client(settings: Settings) -> Optional[Client]:
    """Create and return Supabase client instance, or None when unconfigured."""
    supabase_url = settings.supabase_url
    supabase_key = settings.supabase_key

    if not supabase_url or not supabase_key:
        logger.warning(
            "supabase_credentials_missing",
            message="Check SUPABASE_URL and SUPABASE_SERVICE_KEY in .env"
        )
        return None

    if not supabase_url.startswith("http"):
        logger.error(
            "supabase_url_invalid",
            url=supabase_url,
            message="Should start with http:// or https://"
        )
        return None

    try:
        logger.info("supabase_client_creating", url_prefix=supabase_url[:30])
        client = create_client(supabase_url, supabase_key)
        logger.info("supabase_client_created")
        return client
    except Exception as e:
        logger.error(
            "supabase_client_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return None
