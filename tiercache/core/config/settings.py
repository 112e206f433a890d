#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
cache engine. The settings object is constructed once at startup and handed
to the CacheOrchestrator; components never read the environment themselves.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- IDE autocomplete for all settings
- Easy testing with override mechanisms
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tiercache.core.config.constants import (
    DEFAULT_KEY_PREFIX,
    KEYS_SCAN_COUNT,
    L1_DEFAULT_MAX_SIZE_MB,
    L1_TTL_AUTO,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY,
    SCAN_COUNT_MAX,
    SCAN_COUNT_MIN,
    TAGS_SCAN_COUNT,
)

ConnectionStrategyName = Literal["ignore", "wait", "wait-and-throw", "wait-and-exit"]
StalePolicyName = Literal["serve", "withhold"]


class RedisSettings(BaseSettings):
    """
    Redis configuration for the persistent tier.

    STAGE-0.1: Redis connection configuration

    Two retry budgets are configured here and they are independent:
    - REDIS_MAX_RETRIES_PER_REQUEST: client-level retries of a single command
    - REDIS_RECONNECT_MAX_ATTEMPTS: connection establishment ceiling, after
      which the connect attempt becomes terminal until explicitly retried
    """

    REDIS_URL: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    REDIS_CONNECTION_STRATEGY: ConnectionStrategyName = Field(
        default="ignore", description="Behaviour while Redis is unavailable"
    )
    REDIS_SOCKET_TIMEOUT: float = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=5, description="Connection timeout in seconds")
    REDIS_MAX_RETRIES_PER_REQUEST: int = Field(default=3, ge=0, description="Per-command retries")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, ge=1, description="Connection pool size")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")
    REDIS_RECONNECT_MAX_ATTEMPTS: int = Field(
        default=RECONNECT_MAX_ATTEMPTS, ge=1, description="Connect attempts before giving up"
    )
    REDIS_RECONNECT_MAX_DELAY: float = Field(
        default=RECONNECT_MAX_DELAY, gt=0, description="Backoff cap between connect attempts"
    )

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CacheSettings(BaseSettings):
    """
    Caching configuration for the two-tier strategy.

    STAGE-2: Cache tier configuration
    """

    CACHE_KEY_PREFIX: str = Field(default=DEFAULT_KEY_PREFIX, description="Durable key namespace")
    CACHE_L1_MAX_SIZE_MB: int = Field(
        default=L1_DEFAULT_MAX_SIZE_MB, ge=1, description="L1 in-memory cache max size (MB)"
    )
    CACHE_L1_MAX_ENTRIES: int | None = Field(default=None, ge=1, description="Optional L1 entry cap")
    CACHE_L1_TTL: int | Literal["auto"] = Field(
        default=L1_TTL_AUTO, description="L1 TTL in seconds, or 'auto' to use entry expire"
    )
    CACHE_STALE_POLICY: StalePolicyName = Field(
        default="serve", description="Serve or withhold entries that need revalidation"
    )
    CACHE_TAGS_SCAN_COUNT: int = Field(
        default=TAGS_SCAN_COUNT, ge=SCAN_COUNT_MIN, le=SCAN_COUNT_MAX, description="SCAN page for tag updates"
    )
    CACHE_KEYS_SCAN_COUNT: int = Field(
        default=KEYS_SCAN_COUNT, ge=SCAN_COUNT_MIN, le=SCAN_COUNT_MAX, description="SCAN page for key listing"
    )

    @field_validator("CACHE_L1_TTL")
    @classmethod
    def validate_l1_ttl(cls, v):
        """Fixed TTLs must be positive."""
        if v != L1_TTL_AUTO and v <= 0:
            raise ValueError("CACHE_L1_TTL must be a positive number of seconds or 'auto'")
        return v

    @property
    def l1_max_size_bytes(self) -> int:
        """L1 byte budget."""
        return self.CACHE_L1_MAX_SIZE_MB * 1024 * 1024

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from tiercache.core.config import get_settings

        settings = get_settings()
        url = settings.redis.REDIS_URL
        policy = settings.cache.CACHE_STALE_POLICY
    """

    # Redis settings
    REDIS_URL: str = Field(default="redis://localhost:6379", description="Redis connection URL")
    REDIS_CONNECTION_STRATEGY: ConnectionStrategyName = Field(
        default="ignore", description="Behaviour while Redis is unavailable"
    )
    REDIS_SOCKET_TIMEOUT: float = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = Field(default=5, description="Connection timeout in seconds")
    REDIS_MAX_RETRIES_PER_REQUEST: int = Field(default=3, ge=0, description="Per-command retries")
    REDIS_MAX_CONNECTIONS: int = Field(default=50, ge=1, description="Connection pool size")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")
    REDIS_RECONNECT_MAX_ATTEMPTS: int = Field(
        default=RECONNECT_MAX_ATTEMPTS, ge=1, description="Connect attempts before giving up"
    )
    REDIS_RECONNECT_MAX_DELAY: float = Field(
        default=RECONNECT_MAX_DELAY, gt=0, description="Backoff cap between connect attempts"
    )

    # Cache settings
    CACHE_KEY_PREFIX: str = Field(default=DEFAULT_KEY_PREFIX, description="Durable key namespace")
    CACHE_L1_MAX_SIZE_MB: int = Field(
        default=L1_DEFAULT_MAX_SIZE_MB, ge=1, description="L1 in-memory cache max size (MB)"
    )
    CACHE_L1_MAX_ENTRIES: int | None = Field(default=None, ge=1, description="Optional L1 entry cap")
    CACHE_L1_TTL: int | Literal["auto"] = Field(
        default=L1_TTL_AUTO, description="L1 TTL in seconds, or 'auto' to use entry expire"
    )
    CACHE_STALE_POLICY: StalePolicyName = Field(
        default="serve", description="Serve or withhold entries that need revalidation"
    )
    CACHE_TAGS_SCAN_COUNT: int = Field(
        default=TAGS_SCAN_COUNT, ge=SCAN_COUNT_MIN, le=SCAN_COUNT_MAX, description="SCAN page for tag updates"
    )
    CACHE_KEYS_SCAN_COUNT: int = Field(
        default=KEYS_SCAN_COUNT, ge=SCAN_COUNT_MIN, le=SCAN_COUNT_MAX, description="SCAN page for key listing"
    )

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("CACHE_L1_TTL")
    @classmethod
    def validate_l1_ttl(cls, v):
        """Fixed TTLs must be positive."""
        if v != L1_TTL_AUTO and v <= 0:
            raise ValueError("CACHE_L1_TTL must be a positive number of seconds or 'auto'")
        return v

    # Nested configuration objects
    @property
    def redis(self) -> RedisSettings:
        """Get Redis settings."""
        return RedisSettings(
            REDIS_URL=self.REDIS_URL,
            REDIS_CONNECTION_STRATEGY=self.REDIS_CONNECTION_STRATEGY,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
            REDIS_SOCKET_CONNECT_TIMEOUT=self.REDIS_SOCKET_CONNECT_TIMEOUT,
            REDIS_MAX_RETRIES_PER_REQUEST=self.REDIS_MAX_RETRIES_PER_REQUEST,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            REDIS_HEALTH_CHECK_INTERVAL=self.REDIS_HEALTH_CHECK_INTERVAL,
            REDIS_RECONNECT_MAX_ATTEMPTS=self.REDIS_RECONNECT_MAX_ATTEMPTS,
            REDIS_RECONNECT_MAX_DELAY=self.REDIS_RECONNECT_MAX_DELAY,
        )

    @property
    def cache(self) -> CacheSettings:
        """Get cache settings."""
        return CacheSettings(
            CACHE_KEY_PREFIX=self.CACHE_KEY_PREFIX,
            CACHE_L1_MAX_SIZE_MB=self.CACHE_L1_MAX_SIZE_MB,
            CACHE_L1_MAX_ENTRIES=self.CACHE_L1_MAX_ENTRIES,
            CACHE_L1_TTL=self.CACHE_L1_TTL,
            CACHE_STALE_POLICY=self.CACHE_STALE_POLICY,
            CACHE_TAGS_SCAN_COUNT=self.CACHE_TAGS_SCAN_COUNT,
            CACHE_KEYS_SCAN_COUNT=self.CACHE_KEYS_SCAN_COUNT,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Only process entry points call this; components receive the instance
    through their constructors.

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
