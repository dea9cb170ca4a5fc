"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

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


# Nested BaseSettings don't inherit env_file, so populate os.environ first
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


StoreBackend = Literal["auto", "local", "shared", "tiered"]


class StoreSettings(BaseSettings):
    """Key-value store selection and tuning.

    The backend is resolved once at startup: ``auto`` picks the shared
    (Redis) store when ``redis_url`` is set and the local store otherwise.
    """

    backend: StoreBackend = Field(
        "auto",
        description="Store backend: auto, local, shared (Redis) or tiered (local near-cache + Redis)",
    )
    redis_url: str | None = Field(
        None,
        description="Connection URL of the shared store, e.g. redis://localhost:6379/0",
    )
    namespace: str = Field(
        "",
        description="Optional prefix applied to every key in the shared store",
    )
    default_ttl_seconds: int = Field(
        600,
        description="TTL used when a caller passes no TTL (or zero)",
        ge=1,
    )
    sweep_interval_seconds: float = Field(
        120.0,
        description="How often the local store purges expired keys",
        gt=0,
    )
    max_keys: int | None = Field(
        None,
        description="Upper bound on local store size (least recently used keys are evicted)",
        ge=1,
    )
    max_scan_keys: int = Field(
        10_000,
        description="Maximum number of keys a single scan returns",
        ge=1,
    )
    operation_timeout_seconds: float = Field(
        5.0,
        description="Shared store calls slower than this are treated as unavailable",
        gt=0,
    )
    local_ttl_seconds: int = Field(
        60,
        description="TTL of the local near-cache in tiered mode",
        ge=1,
    )

    model_config = SettingsConfigDict(
        env_prefix="STORE_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """Response cache behaviour."""

    enabled: bool = Field(
        True,
        description="Enable response caching for GET requests",
    )
    key_prefix: str = Field(
        "cache",
        description="Key prefix for cached responses (must differ from the quota prefix)",
    )
    default_ttl_seconds: int = Field(
        300,
        description="TTL of cached responses when the route policy sets none",
        ge=1,
    )
    body_digest_length: int = Field(
        100,
        description="Number of body fingerprint characters embedded in cache keys",
        ge=0,
    )
    personalized_path_patterns: list[str] = Field(
        default_factory=lambda: ["/dashboard"],
        description="Path fragments whose authenticated reads are never cached",
    )
    route_ttls: dict[str, int] = Field(
        default_factory=dict,
        description="Per-route TTL overrides keyed by path glob",
    )
    collection_patterns: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "donations": ["/api/donations*", "/api/search*", "/api/analytics*"],
            "funding": ["/api/funding*", "/api/analytics*"],
            "users": ["/api/users*", "/api/search*", "/api/volunteers*"],
            "posts": ["/api/posts*"],
            "notifications": ["/api/notifications*"],
        },
        description="Path globs invalidated when a handler reports a mutated collection",
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Quota enforcement configuration."""

    enabled: bool = Field(
        True,
        description="Enable admission control",
    )
    key_prefix: str = Field(
        "quota",
        description="Key prefix for quota counters (must differ from the cache prefix)",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers on responses",
    )
    window_seconds: int = Field(
        900,
        description="Window of the general API quota in seconds",
        ge=1,
    )
    role_limits: dict[str, int] = Field(
        default_factory=lambda: {
            "admin": 500,
            "volunteer": 200,
            "donor": 100,
            "user": 50,
        },
        description="General API quota per role tier",
    )
    anonymous_limit: int = Field(
        50,
        description="General API quota for unauthenticated callers",
        ge=1,
    )
    default_limit: int = Field(
        50,
        description="General API quota for authenticated callers with an unknown role",
        ge=1,
    )
    exempt_paths: list[str] = Field(
        default_factory=lambda: ["/health", "/api/health"],
        description="Paths that skip admission control (exact match)",
    )
    exempt_prefixes: list[str] = Field(
        default_factory=lambda: ["/api/payments/webhook"],
        description="Path prefixes that skip admission control",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )


class GovernorSettings(BaseSettings):
    """Request pipeline integration."""

    identity_header: str = Field(
        "X-Principal-Id",
        description="Header carrying the authenticated principal id from the gateway",
    )
    role_header: str = Field(
        "X-Principal-Role",
        description="Header carrying the authenticated principal role from the gateway",
    )
    admin_role: str = Field(
        "admin",
        description="Role allowed to flush or invalidate the cache",
    )

    model_config = SettingsConfigDict(
        env_prefix="GOVERNOR_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    client_level: str = Field("WARNING", description="Log level of the redis client library")
    format: Literal["json", "plain"] = Field("json", description="json or plain")
    output: Literal["stdout", "file"] = Field("stdout", description="stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(0, description="Rotate log file after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Number of rotated files kept")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    store: StoreSettings = Field(default_factory=StoreSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    governor: GovernorSettings = Field(default_factory=GovernorSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance used by the application entry point.
# Factories accept an explicit Settings so tests can inject their own.
settings = Settings()
