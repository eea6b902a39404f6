"""
Tests for configuration management.
"""

import pytest

from shared.config import ConfigError, Settings


def test_settings_load_from_environment(monkeypatch):
    """Test that settings load correctly from environment variables."""
    monkeypatch.setenv("ENVIRONMENT", "staging")
    monkeypatch.setenv("VIDEO_PROVIDER", "replicate")
    monkeypatch.setenv("REPLICATE_API_TOKEN", "r8_test123456789012345678901234567890")
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379")
    monkeypatch.setenv("DEFAULT_MAX_RETRIES", "5")
    monkeypatch.setenv("COMPOSITE_FAIL_ON_CLIP_FAILURE", "true")

    settings = Settings(_env_file=None)

    assert settings.environment == "staging"
    assert settings.video_provider == "replicate"
    assert settings.redis_url == "redis://localhost:6379"
    assert settings.default_max_retries == 5
    assert settings.composite_fail_on_clip_failure is True


def test_settings_defaults(monkeypatch):
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)

    settings = Settings(_env_file=None)

    assert settings.default_max_retries == 3
    assert settings.completed_retention_seconds == 3600
    assert settings.failed_retention_seconds == 86400
    assert settings.stream_tick_seconds == 0.5
    assert settings.stream_max_duration_seconds == 300.0
    assert settings.progress_bands == (25, 50, 85)
    assert settings.webhook_secret is None


def test_settings_validates_urls(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "invalid-url")
    with pytest.raises(ConfigError, match="URL must be a valid HTTP/HTTPS URL"):
        Settings(_env_file=None)


def test_settings_validates_redis_url(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "http://localhost:6379")
    with pytest.raises(ConfigError, match="REDIS_URL must start with redis://"):
        Settings(_env_file=None)


def test_settings_validates_replicate_token(monkeypatch):
    monkeypatch.setenv("REPLICATE_API_TOKEN", "invalid_token")
    with pytest.raises(ConfigError, match="REPLICATE_API_TOKEN must start with 'r8_'"):
        Settings(_env_file=None)


def test_settings_validates_jwt_secret_length(monkeypatch):
    monkeypatch.setenv("SUPABASE_JWT_SECRET", "short")
    with pytest.raises(ConfigError, match="at least 32 characters"):
        Settings(_env_file=None)


def test_settings_rejects_negative_retries(monkeypatch):
    monkeypatch.setenv("DEFAULT_MAX_RETRIES", "-1")
    with pytest.raises(ConfigError, match="must not be negative"):
        Settings(_env_file=None)


def test_progress_bands_must_increase(monkeypatch):
    monkeypatch.setenv("PROGRESS_BAND_AUDIO", "20")

    settings = Settings(_env_file=None)

    with pytest.raises(ConfigError, match="strictly increasing"):
        settings.progress_bands
