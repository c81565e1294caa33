"""
Runtime configuration for the AI orchestration layer.

Settings are read from the process environment once, after loading an
optional `.env` file from the repository root. The operator-wide fallback
credential lives here and is handed to the service explicitly; no other
module reads it from the environment.

Environment configuration:
- AI_FALLBACK_API_KEY (or API_KEY): operator-wide Gemini credential
- GEMINI_API_BASE / GEMINI_MODEL / GEMINI_PRO_MODEL
- OPENAI_API_BASE / OPENAI_MODEL / OPENAI_VISION_MODEL
- LLM_HTTP_TIMEOUT_SECONDS: transport timeout for a single HTTP call
- AI_OPERATION_TIMEOUT_SECONDS: per-provider deadline (default 120)
- AI_DOCUMENT_TIMEOUT_SECONDS: deadline for large documents (default 300)
- AI_MAX_ATTEMPTS / AI_CURRICULUM_MAX_ATTEMPTS
- AI_BACKOFF_BASE_SECONDS / AI_BACKOFF_JITTER_SECONDS
- CACHE_EPHEMERAL_TTL_SECONDS / CACHE_DURABLE_STALE_SECONDS
- NOTIFICATION_COOLDOWN_SECONDS
- REDIS_URL, SUPABASE_URL, SUPABASE_SERVICE_KEY (or SUPABASE_KEY)
- LOG_LEVEL, LOG_JSON, OTEL_EXPORTER_OTLP_ENDPOINT
"""
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from eduquest.core.logging import get_logger

logger = get_logger(__name__)

ENV_PATH = Path(__file__).parent.parent.parent.parent / ".env"

DAY_SECONDS = 24 * 60 * 60


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Tunables for provider calls, retries, caching and notifications."""

    fallback_api_key: Optional[str] = None

    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.5-flash"
    gemini_pro_model: str = "gemini-2.5-pro"
    openai_api_base: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_vision_model: str = "gpt-4o"
    http_timeout_seconds: float = Field(300.0, gt=0)

    operation_timeout_seconds: float = Field(120.0, gt=0)
    document_timeout_seconds: float = Field(300.0, gt=0)
    max_attempts: int = Field(5, ge=1)
    curriculum_max_attempts: int = Field(3, ge=1)
    backoff_base_seconds: float = Field(1.0, gt=0)
    backoff_jitter_seconds: float = Field(1.0, ge=0)

    ephemeral_ttl_seconds: float = Field(7 * DAY_SECONDS, gt=0)
    durable_stale_seconds: float = Field(90 * DAY_SECONDS, gt=0)

    notification_cooldown_seconds: float = Field(10.0, ge=0)

    redis_url: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    log_level: str = "INFO"
    log_json: bool = True
    otlp_endpoint: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment (after loading `.env`)."""
        if ENV_PATH.exists():
            load_dotenv(ENV_PATH)
            logger.info("env_loaded", env_path=str(ENV_PATH))

        fallback_key = os.getenv("AI_FALLBACK_API_KEY") or os.getenv("API_KEY")
        if not fallback_key:
            logger.warning(
                "fallback_api_key_missing",
                message="AI features will require a user-provided key",
            )

        return cls(
            fallback_api_key=fallback_key or None,
            gemini_api_base=os.getenv("GEMINI_API_BASE", cls.model_fields["gemini_api_base"].default),
            gemini_model=os.getenv("GEMINI_MODEL", cls.model_fields["gemini_model"].default),
            gemini_pro_model=os.getenv("GEMINI_PRO_MODEL", cls.model_fields["gemini_pro_model"].default),
            openai_api_base=os.getenv("OPENAI_API_BASE", cls.model_fields["openai_api_base"].default),
            openai_model=os.getenv("OPENAI_MODEL", cls.model_fields["openai_model"].default),
            openai_vision_model=os.getenv("OPENAI_VISION_MODEL", cls.model_fields["openai_vision_model"].default),
            http_timeout_seconds=_env_float("LLM_HTTP_TIMEOUT_SECONDS", 300.0),
            operation_timeout_seconds=_env_float("AI_OPERATION_TIMEOUT_SECONDS", 120.0),
            document_timeout_seconds=_env_float("AI_DOCUMENT_TIMEOUT_SECONDS", 300.0),
            max_attempts=_env_int("AI_MAX_ATTEMPTS", 5),
            curriculum_max_attempts=_env_int("AI_CURRICULUM_MAX_ATTEMPTS", 3),
            backoff_base_seconds=_env_float("AI_BACKOFF_BASE_SECONDS", 1.0),
            backoff_jitter_seconds=_env_float("AI_BACKOFF_JITTER_SECONDS", 1.0),
            ephemeral_ttl_seconds=_env_float("CACHE_EPHEMERAL_TTL_SECONDS", 7 * DAY_SECONDS),
            durable_stale_seconds=_env_float("CACHE_DURABLE_STALE_SECONDS", 90 * DAY_SECONDS),
            notification_cooldown_seconds=_env_float("NOTIFICATION_COOLDOWN_SECONDS", 10.0),
            redis_url=os.getenv("REDIS_URL") or None,
            supabase_url=os.getenv("SUPABASE_URL") or None,
            supabase_key=os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", True),
            otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings accessor."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (used by tests after changing the environment)."""
    global _settings
    _settings = None
