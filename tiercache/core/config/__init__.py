"""
Configuration Module

Centralized, type-safe configuration for the cache engine.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Enums, key layout and tuning constants

Usage:
------
```python
from tiercache.core.config import get_settings, CacheStatus

settings = get_settings()
strategy = settings.redis.REDIS_CONNECTION_STRATEGY
```

Testing:
-------
```python
import os
from tiercache.core.config import reload_settings

os.environ["CACHE_STALE_POLICY"] = "withhold"
settings = reload_settings()
assert settings.cache.CACHE_STALE_POLICY == "withhold"
```
"""

from tiercache.core.config.constants import (
    DEFAULT_EXPIRE,
    DEFAULT_KEY_PREFIX,
    DEFAULT_REVALIDATE,
    DEFAULT_STALE,
    ENTRY_KEY_SEGMENT,
    KEYS_SCAN_COUNT,
    L1_DEFAULT_MAX_SIZE_MB,
    L1_TTL_AUTO,
    META_KEY_SEGMENT,
    RECONNECT_MAX_ATTEMPTS,
    RECONNECT_MAX_DELAY,
    RECONNECT_STEP_DELAY,
    TAGS_SCAN_COUNT,
    CacheEventStatus,
    CacheOperation,
    CacheSource,
    CacheStatus,
    CacheTier,
    ConnectionState,
    ConnectionStrategy,
    StalePolicy,
)
from tiercache.core.config.settings import (
    CacheSettings,
    LoggingSettings,
    RedisSettings,
    Settings,
    get_settings,
    reload_settings,
)

__all__ = [
    # Settings
    "Settings",
    "RedisSettings",
    "CacheSettings",
    "LoggingSettings",
    "get_settings",
    "reload_settings",
    # Enums
    "CacheTier",
    "CacheStatus",
    "StalePolicy",
    "ConnectionStrategy",
    "ConnectionState",
    "CacheOperation",
    "CacheEventStatus",
    "CacheSource",
    # Key layout
    "DEFAULT_KEY_PREFIX",
    "ENTRY_KEY_SEGMENT",
    "META_KEY_SEGMENT",
    # Tuning
    "L1_DEFAULT_MAX_SIZE_MB",
    "L1_TTL_AUTO",
    "TAGS_SCAN_COUNT",
    "KEYS_SCAN_COUNT",
    "RECONNECT_MAX_ATTEMPTS",
    "RECONNECT_STEP_DELAY",
    "RECONNECT_MAX_DELAY",
    # Cache-aside defaults
    "DEFAULT_STALE",
    "DEFAULT_REVALIDATE",
    "DEFAULT_EXPIRE",
]
