"""
tiercache

Two-tier (in-memory + Redis) cache engine with freshness windows, request
coalescing and tag-based invalidation.

Usage:
------
```python
from tiercache import CacheOrchestrator, Entry, get_settings, now_ms

cache = CacheOrchestrator(get_settings())
await cache.initialize()

await cache.set("/blog/1", Entry(tags=["blog"], timestamp=now_ms(), stale=0,
                                 revalidate=60, expire=300, value=b"<html>..."))
entry = await cache.get("/blog/1")
```
"""

from tiercache.core import (
    EXPIRED,
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CachePersistenceError,
    CacheRecord,
    Durations,
    Entry,
    MalformedMetadataError,
    Metadata,
    Payload,
    TierCacheError,
    now_ms,
    setup_logging,
)
from tiercache.core.config import CacheStatus, CacheTier, Settings, get_settings
from tiercache.infrastructure.cache import (
    CacheOrchestrator,
    close_cache,
    get_cache_orchestrator,
    init_cache,
)
from tiercache.tools import cached, get_cache_data

__version__ = "0.1.0"

__all__ = [
    # Engine
    "CacheOrchestrator",
    "get_cache_orchestrator",
    "init_cache",
    "close_cache",
    # Model
    "Entry",
    "Metadata",
    "CacheRecord",
    "CacheStatus",
    "CacheTier",
    "Durations",
    "Payload",
    "EXPIRED",
    "now_ms",
    # Configuration
    "Settings",
    "get_settings",
    "setup_logging",
    # Errors
    "TierCacheError",
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "CachePersistenceError",
    "MalformedMetadataError",
    # Tools
    "cached",
    "get_cache_data",
]
