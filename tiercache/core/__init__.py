"""
Core Module

Foundational components: configuration, logging, exceptions, the cache data
model and the shared freshness algorithms.
"""

from .exceptions import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CachePersistenceError,
    MalformedMetadataError,
    TierCacheError,
)
from .helpers import get_cache_keys, get_cache_status, now_ms, update_metadata_for_tags
from .logging import get_logger, log_operation, setup_logging
from .models import EXPIRED, CacheRecord, Durations, Entry, Metadata
from .stream import Payload

__all__ = [
    # Exceptions
    "TierCacheError",
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "CachePersistenceError",
    "MalformedMetadataError",
    # Logging
    "get_logger",
    "log_operation",
    "setup_logging",
    # Model
    "Metadata",
    "Entry",
    "CacheRecord",
    "Durations",
    "EXPIRED",
    "Payload",
    # Algorithms
    "get_cache_keys",
    "get_cache_status",
    "update_metadata_for_tags",
    "now_ms",
]
