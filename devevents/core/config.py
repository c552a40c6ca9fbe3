"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file

Rate limit presets read the same variable names the booking frontend uses
(``RATE_LIMIT_AUTH``, ``RATE_LIMIT_AUTH_WINDOW``, ...), so one env file can
serve both.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and os.getenv("TESTING") != "true":
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    rate_limit_enabled: bool = Field(
        True,
        description="Enforce rate limits on decorated routes",
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers on allowed responses",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(
        None,
        description="Log file path when output=file",
    )
    max_bytes: int = Field(
        10 * 1024 * 1024,
        description="Rotate log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated log files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to accept and echo the correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class RedisSettings(BaseSettings):
    """Shared store connection for distributed rate limiting.

    Leaving ``url`` unset is not an error: limits are then enforced by the
    in-process fallback only.
    """

    url: str | None = Field(
        None,
        description="Redis connection URL (redis:// or rediss://)",
    )
    token: str | None = Field(
        None,
        description="Access token, sent as the Redis password",
    )
    timeout_seconds: float = Field(
        0.5,
        description="Upper bound on a single rate limit round trip",
        gt=0,
    )
    key_prefix: str = Field(
        "ratelimit",
        description="Namespace prepended to every counter key",
    )

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Per-preset limits and fallback housekeeping."""

    auth: int = Field(5, description="Authentication attempts per window", ge=1)
    auth_window: int = Field(60, description="Authentication window (seconds)", ge=1)
    public_api: int = Field(100, description="Public read requests per window", ge=1)
    public_api_window: int = Field(60, description="Public read window (seconds)", ge=1)
    payment: int = Field(10, description="Payment/booking actions per window", ge=1)
    payment_window: int = Field(60, description="Payment window (seconds)", ge=1)
    create_event: int = Field(5, description="Event creations per window", ge=1)
    create_event_window: int = Field(300, description="Event creation window (seconds)", ge=1)
    admin: int = Field(50, description="Admin actions per window", ge=1)
    admin_window: int = Field(60, description="Admin window (seconds)", ge=1)

    sweep_interval_seconds: int = Field(
        300,
        description="How often expired in-memory counters are swept",
        ge=1,
    )
    session_cookies: str = Field(
        "next-auth.session-token,__Secure-next-auth.session-token",
        description="Comma-separated cookie names that carry a session token",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    @property
    def session_cookie_names(self) -> tuple[str, ...]:
        return tuple(name.strip() for name in self.session_cookies.split(",") if name.strip())


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if values are out of range.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
settings = Settings()
