"""
Cache-Related Exceptions

All exceptions raised by the cache tiers. Redis errors are converted into
these types at the persistent layer boundary; the in-memory tier never
raises.
"""

from tiercache.core.exceptions.base import TierCacheError


class CacheError(TierCacheError):
    """Base exception for cache-related errors."""
    pass


class CacheConnectionError(CacheError):
    """
    Raised when unable to connect (or reconnect) to Redis.

    Surfaced to callers only under the wait-and-throw and wait-and-exit
    connection strategies.

    Common causes:
    - Redis server is down
    - Network connectivity issues
    - Incorrect URL or credentials
    - Reconnection ceiling reached
    """
    pass


class CacheKeyError(CacheError):
    """
    Raised when a single-key Redis read fails for a reason other than
    connectivity.
    """
    pass


class CachePersistenceError(CacheError):
    """
    Raised when a Redis batch write partially or fully fails.

    Always surfaced to the write or update-tags caller: the durable tier may
    now disagree with the in-memory tier.
    """
    pass


class MalformedMetadataError(CacheError):
    """
    Raised when a metadata row cannot be decoded.

    Bulk operations skip the offending row; single reads treat it as a
    divergent entry and delete it.
    """
    pass
