"""
Exception Module

Structured exception hierarchy for the cache engine.

Module Structure:
-----------------
- **base.py**: TierCacheError base class
- **cache.py**: Cache tier exceptions (connection, persistence, metadata)

Usage:
------
```python
from tiercache.core.exceptions import CacheConnectionError, CachePersistenceError
```
"""

from tiercache.core.exceptions.base import TierCacheError
from tiercache.core.exceptions.cache import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CachePersistenceError,
    MalformedMetadataError,
)

__all__ = [
    # Base
    "TierCacheError",
    # Cache
    "CacheError",
    "CacheConnectionError",
    "CacheKeyError",
    "CachePersistenceError",
    "MalformedMetadataError",
]
