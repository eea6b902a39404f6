"""
Configuration management.

Centralized environment variable management and validation.
"""

from typing import Literal, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from shared.errors import ConfigError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,  # Allow case-insensitive env var matching
        extra="ignore"
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Durable job record store
    # JOB_STORE_BACKEND: "supabase" persists composites in Postgres, "memory" keeps them in-process
    job_store_backend: Literal["memory", "supabase"] = "memory"
    supabase_url: Optional[str] = None
    supabase_service_key: Optional[str] = None
    composite_jobs_table: str = "composite_jobs"
    composite_clips_table: str = "composite_clips"

    # Redis status cache (optional)
    redis_url: Optional[str] = None
    status_cache_ttl_seconds: int = 5

    # JWT configuration
    supabase_jwt_secret: Optional[str] = None
    auth_disabled: bool = False  # Local development only

    # Frontend configuration
    frontend_url: str = "http://localhost:3000"

    # Remote video provider
    video_provider: Literal["fal", "replicate"] = "fal"
    fal_api_key: Optional[str] = None
    fal_model: str = "fal-ai/kling-video/v2.1/standard/text-to-video"
    fal_queue_url: str = "https://queue.fal.run"
    replicate_api_token: Optional[str] = None
    replicate_model: str = "kwaivgi/kling-v2.1"
    provider_timeout_seconds: float = 30.0

    # Webhooks
    # WEBHOOK_SECRET: shared HMAC secret; inbound webhooks are rejected when unset
    webhook_secret: Optional[str] = None
    webhook_base_url: Optional[str] = None

    # Ephemeral job queue
    default_max_retries: int = 3
    completed_retention_seconds: int = 3600  # 1 hour
    failed_retention_seconds: int = 86400  # 24 hours
    eviction_interval_seconds: int = 300  # 5 minutes

    # Status reconciler
    poll_interval_seconds: float = 30.0
    poll_batch_size: int = 50
    dispatch_interval_seconds: float = 5.0
    max_concurrent_submissions: int = 5

    # Progress broadcaster
    stream_tick_seconds: float = 0.5
    stream_poll_every: int = 3  # Trigger a provider poll every Nth tick
    stream_max_duration_seconds: float = 300.0
    progress_band_script: int = 25
    progress_band_audio: int = 50
    progress_band_video: int = 85
    max_remaining_estimate_seconds: int = 300
    default_remaining_estimate_seconds: int = 30

    # Pipeline coordinator
    max_clip_duration_seconds: int = 10
    default_target_duration_seconds: int = 30
    seconds_per_clip_estimate: int = 60
    stitch_estimate_seconds: int = 30
    composite_fail_on_clip_failure: bool = False

    @field_validator("supabase_url", "webhook_base_url")
    @classmethod
    def validate_http_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate optional HTTP(S) URLs."""
        if v and not v.startswith(("http://", "https://")):
            raise ConfigError(f"URL must be a valid HTTP/HTTPS URL: {v}")
        return v or None

    @field_validator("frontend_url", "fal_queue_url")
    @classmethod
    def validate_required_http_url(cls, v: str) -> str:
        """Validate required HTTP(S) URLs."""
        if not v.startswith(("http://", "https://")):
            raise ConfigError(f"URL must be a valid HTTP/HTTPS URL: {v}")
        return v.rstrip("/")

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v and not v.startswith(("redis://", "rediss://")):
            raise ConfigError("REDIS_URL must start with redis:// or rediss://")
        return v or None

    @field_validator("replicate_api_token")
    @classmethod
    def validate_replicate_api_token(cls, v: Optional[str]) -> Optional[str]:
        """Validate Replicate API token format."""
        if v and not v.startswith("r8_"):
            raise ConfigError("REPLICATE_API_TOKEN must start with 'r8_'")
        return v or None

    @field_validator("supabase_jwt_secret")
    @classmethod
    def validate_supabase_jwt_secret(cls, v: Optional[str]) -> Optional[str]:
        """Validate Supabase JWT secret format."""
        if v and len(v) < 32:
            raise ConfigError("SUPABASE_JWT_SECRET must be at least 32 characters")
        return v or None

    @field_validator("default_max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Retry budget must not be negative."""
        if v < 0:
            raise ConfigError(f"DEFAULT_MAX_RETRIES must not be negative: {v}")
        return v

    @field_validator("stream_poll_every", "max_concurrent_submissions", "poll_batch_size")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate counters that must be at least 1."""
        if v < 1:
            raise ConfigError(f"Value must be at least 1: {v}")
        return v

    @property
    def progress_bands(self) -> tuple:
        """Upper bounds of the script, audio and video progress bands."""
        bands = (self.progress_band_script, self.progress_band_audio, self.progress_band_video)
        if not 0 < bands[0] < bands[1] < bands[2] < 100:
            raise ConfigError(f"Progress bands must be strictly increasing within 0-100: {bands}")
        return bands


# Singleton instance
try:
    settings = Settings()
except Exception as e:
    # Re-raise as ConfigError for consistency
    if isinstance(e, ConfigError):
        raise
    raise ConfigError(f"Failed to load configuration: {str(e)}") from e
