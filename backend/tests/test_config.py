"""
Unit tests for settings loading.
"""
import os

import pytest
from pydantic import ValidationError

from eduquest.core import config


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Isolated environment and no repository .env file."""
    monkeypatch.setattr(os, "environ", {"PATH": os.environ.get("PATH", "")})
    monkeypatch.setattr(config, "ENV_PATH", tmp_path / ".env")
    config.reset_settings()
    yield tmp_path
    config.reset_settings()


def test_defaults(clean_env):
    settings = config.Settings.from_env()

    assert settings.fallback_api_key is None
    assert settings.operation_timeout_seconds == 120.0
    assert settings.document_timeout_seconds == 300.0
    assert settings.max_attempts == 5
    assert settings.curriculum_max_attempts == 3
    assert settings.ephemeral_ttl_seconds == 7 * 24 * 60 * 60
    assert settings.durable_stale_seconds == 90 * 24 * 60 * 60
    assert settings.notification_cooldown_seconds == 10.0


def test_environment_overrides(clean_env):
    os.environ.update({
        "AI_FALLBACK_API_KEY": "system-key",
        "AI_OPERATION_TIMEOUT_SECONDS": "45",
        "AI_MAX_ATTEMPTS": "2",
        "GEMINI_MODEL": "gemini-test",
        "LOG_JSON": "false",
        "SUPABASE_KEY": "anon-key",
    })

    settings = config.Settings.from_env()

    assert settings.fallback_api_key == "system-key"
    assert settings.operation_timeout_seconds == 45.0
    assert settings.max_attempts == 2
    assert settings.gemini_model == "gemini-test"
    assert settings.log_json is False
    assert settings.supabase_key == "anon-key"


def test_api_key_alias(clean_env):
    os.environ["API_KEY"] = "legacy-key"

    assert config.Settings.from_env().fallback_api_key == "legacy-key"


def test_dotenv_file_is_loaded(clean_env):
    (clean_env / ".env").write_text("AI_FALLBACK_API_KEY=from-dotenv\nREDIS_URL=redis://cache:6379\n")

    settings = config.Settings.from_env()

    assert settings.fallback_api_key == "from-dotenv"
    assert settings.redis_url == "redis://cache:6379"


def test_invalid_values_rejected(clean_env):
    os.environ["AI_MAX_ATTEMPTS"] = "0"

    with pytest.raises(ValidationError):
        config.Settings.from_env()


def test_get_settings_is_cached(clean_env):
    assert config.get_settings() is config.get_settings()
