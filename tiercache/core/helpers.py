"""
Shared cache algorithms: freshness classification, tag-driven metadata
rewrite, durable key naming and the millisecond clock.
"""

import time
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import NamedTuple, TypeVar

from tiercache.core.config.constants import (
    DEFAULT_KEY_PREFIX,
    ENTRY_KEY_SEGMENT,
    META_KEY_SEGMENT,
    CacheStatus,
)
from tiercache.core.models import Durations, Metadata

Clock = Callable[[], float]

M = TypeVar("M", bound=Metadata)


def now_ms() -> float:
    """Wall clock in epoch milliseconds."""
    return time.time() * 1000


class CacheKeys(NamedTuple):
    entry_key: str
    meta_key: str


def get_cache_keys(key: str, prefix: str = DEFAULT_KEY_PREFIX) -> CacheKeys:
    """Durable keys holding the payload and the metadata of a logical key."""
    return CacheKeys(
        entry_key=f"{prefix}{ENTRY_KEY_SEGMENT}{key}",
        meta_key=f"{prefix}{META_KEY_SEGMENT}{key}",
    )


def get_cache_status(timestamp: float, revalidate: float, expire: float, now: float | None = None) -> CacheStatus:
    """
    Classify freshness.

    Args:
        timestamp: Write (or last tag revalidation) time, epoch ms
        revalidate: Seconds after timestamp until revalidation is needed
        expire: Seconds after timestamp until the entry is gone
        now: Current time, epoch ms (defaults to wall clock)
    """
    now = now_ms() if now is None else now
    if now > timestamp + expire * 1000:
        return CacheStatus.EXPIRED
    if now > timestamp + revalidate * 1000:
        return CacheStatus.NEEDS_REVALIDATION
    return CacheStatus.FRESH


def update_metadata_for_tags(
    metadata: M,
    tags: Iterable[str],
    durations: Durations | None,
    now: float,
) -> M:
    """
    Force revalidation of metadata carrying any of `tags`.

    Returns the same instance when no tag matches, so callers can detect a
    no-op with `is`. Otherwise returns a copy of the same type (an Entry
    keeps its payload) with stale reset, revalidate set to the requested
    expire, expire never shrinking and the timestamp moved to `now`.
    """
    wanted = set(tags)
    if not wanted.intersection(metadata.tags):
        return metadata

    expire = (durations.expire if durations else None) or 0
    return replace(
        metadata,
        stale=0,
        revalidate=expire,
        expire=max(expire, metadata.expire),
        timestamp=now,
    )
