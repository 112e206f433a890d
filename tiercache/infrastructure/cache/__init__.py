"""
Cache Module

Provides two-tier caching (L1 in-memory + L2 Redis) with request
coalescing and tag invalidation.
"""

from .cache_manager import (
    CacheOrchestrator,
    close_cache,
    get_cache_orchestrator,
    init_cache,
)
from .connection_manager import ConnectionManager, create_redis_client
from .memory_layer import EphemeralLayer
from .observer import CacheObserver, LogData
from .pending_registry import PendingRequestRegistry
from .redis_layer import PersistentLayer

__all__ = [
    "CacheOrchestrator",
    "get_cache_orchestrator",
    "init_cache",
    "close_cache",
    "EphemeralLayer",
    "PersistentLayer",
    "ConnectionManager",
    "create_redis_client",
    "PendingRequestRegistry",
    "CacheObserver",
    "LogData",
]
