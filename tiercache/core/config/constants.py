#!/usr/bin/env python3
"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the two-tier cache engine.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for magic numbers
- Type-safe enums for state management and log labels
- Durable key layout defined in one place
"""

from enum import Enum

# ============================================================================
# Cache Tiers
# ============================================================================

class CacheTier(str, Enum):
    """
    Multi-tier caching levels.

    L1: In-memory LRU cache (ephemeral, fastest)
    L2: Redis cache (persistent, shared across processes)
    """
    L1 = "l1"
    L2 = "l2"


# ============================================================================
# Freshness
# ============================================================================

class CacheStatus(str, Enum):
    """
    Freshness classification of a cached entry.

    FRESH: serve as-is
    NEEDS_REVALIDATION: older than `revalidate`, younger than `expire`
    EXPIRED: older than `expire`, must be treated as absent
    """
    FRESH = "fresh"
    NEEDS_REVALIDATION = "revalidate"
    EXPIRED = "expired"


class StalePolicy(str, Enum):
    """
    What a lookup does with NEEDS_REVALIDATION content.

    SERVE: return it, labelled with its status
    WITHHOLD: treat it as a miss so the caller regenerates
    """
    SERVE = "serve"
    WITHHOLD = "withhold"


# ============================================================================
# Connection
# ============================================================================

class ConnectionStrategy(str, Enum):
    """
    How callers behave while the durable store is not connected.

    IGNORE: never block; kick off one background connect, operations no-op
    WAIT: block on the in-flight connect, no-op on failure
    WAIT_AND_THROW: block, raise CacheConnectionError on failure
    WAIT_AND_EXIT: block, exit the process on failure
    """
    IGNORE = "ignore"
    WAIT = "wait"
    WAIT_AND_THROW = "wait-and-throw"
    WAIT_AND_EXIT = "wait-and-exit"


class ConnectionState(str, Enum):
    """Durable-store connection lifecycle."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"


# ============================================================================
# Log Labels
# ============================================================================

class CacheOperation(str, Enum):
    """Operation field of a cache log event."""
    GET = "GET"
    SET = "SET"
    UPDATE_TAGS = "UPDATE_TAGS"
    DELETE = "DELETE"
    LIST_KEYS = "LIST_KEYS"
    CONNECTION = "CONNECTION"


class CacheEventStatus(str, Enum):
    """Status field of a cache log event."""
    HIT = "HIT"
    MISS = "MISS"
    ERROR = "ERROR"
    EXPIRED = "EXPIRED"
    REVALIDATED = "REVALIDATED"
    UPDATING = "UPDATING"
    DROPPED = "DROPPED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    RECONNECTING = "RECONNECTING"


class CacheSource(str, Enum):
    """Source field of a cache log event: which tier produced the outcome."""
    MEMORY = "MEMORY"
    REDIS = "REDIS"
    NEW = "NEW"
    NONE = "NONE"


# ============================================================================
# Durable Key Layout
# ============================================================================

DEFAULT_KEY_PREFIX = "tiercache:"
ENTRY_KEY_SEGMENT = "entry:"
META_KEY_SEGMENT = "meta:"

# ============================================================================
# Ephemeral Tier
# ============================================================================

L1_DEFAULT_MAX_SIZE_MB = 50
L1_TTL_AUTO = "auto"  # derive TTL from the entry's own `expire`

# ============================================================================
# Redis Scanning
# ============================================================================

SCAN_COUNT_MIN = 200
SCAN_COUNT_MAX = 1000
TAGS_SCAN_COUNT = 200
KEYS_SCAN_COUNT = 1000

# ============================================================================
# Reconnection
# ============================================================================

RECONNECT_MAX_ATTEMPTS = 10
RECONNECT_STEP_DELAY = 1.0  # seconds added per attempt
RECONNECT_MAX_DELAY = 5.0  # seconds

# Registry keys for singleton in-flight operations
PENDING_CONNECT_KEY = "connect"
PENDING_KEYS_KEY = "keys"

# ============================================================================
# Cache-Aside Defaults (seconds)
# ============================================================================

DEFAULT_STALE = 30
DEFAULT_REVALIDATE = 60
DEFAULT_EXPIRE = 120
