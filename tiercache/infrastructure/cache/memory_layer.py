"""
Ephemeral (L1) Cache Layer

In-memory LRU tier holding the "hot" copy of entries.

STAGE-2.1: L1 in-memory cache

This is a per-process cache, not shared across workers. The durable copy
lives in the Redis tier (PersistentLayer).

Implementation Details:
- OrderedDict for O(1) access and recency ordering
- One asyncio.Lock around the whole tier
- Bounded by total payload bytes and, optionally, by entry count
- Per-slot TTL: fixed seconds, or "auto" (the entry's own `expire`)

Two distinct ways an entry stops being served:
- slot TTL elapsed: purged lazily on read, reported as a plain miss
- metadata expired: reported as EXPIRED so the caller also purges Redis
"""

import asyncio
import fnmatch
import re
from collections import OrderedDict
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from tiercache.core.config.constants import L1_TTL_AUTO, CacheSource, CacheStatus
from tiercache.core.config.settings import CacheSettings
from tiercache.core.helpers import Clock, get_cache_status, now_ms, update_metadata_for_tags
from tiercache.core.logging.logger import get_logger
from tiercache.core.models import EXPIRED, CacheRecord, Durations, Entry, _Expired, normalize_tags

logger = get_logger(__name__)


@dataclass
class _Slot:
    entry: Entry
    size: int
    expires_at: float | None  # epoch ms, None = no TTL


class EphemeralLayer:
    """
    Bounded, size-aware, TTL-aware in-memory tier.

    Eviction Policy:
    - Over the byte or entry bound, drop the least recently used slot
    - An entry larger than the whole byte bound is never stored

    Usage:
        layer = EphemeralLayer(max_size_bytes=50 * 1024 * 1024)
        await layer.write("/blog/1", entry)
        record = await layer.read("/blog/1")
    """

    def __init__(
        self,
        max_size_bytes: int,
        max_entries: int | None = None,
        ttl: int | float | str = L1_TTL_AUTO,
        clock: Clock = now_ms,
    ):
        """
        Initialize the in-memory tier.

        Args:
            max_size_bytes: Total payload bytes kept resident
            max_entries: Optional cap on the number of entries
            ttl: Slot TTL in seconds, or "auto" to use each entry's expire
            clock: Epoch-ms clock
        """
        self._max_size_bytes = max_size_bytes
        self._max_entries = max_entries
        self._ttl = ttl
        self._clock = clock
        self._cache: OrderedDict[str, _Slot] = OrderedDict()
        self._size_bytes = 0
        self._evictions = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: CacheSettings, clock: Clock = now_ms) -> "EphemeralLayer":
        return cls(
            max_size_bytes=settings.l1_max_size_bytes,
            max_entries=settings.CACHE_L1_MAX_ENTRIES,
            ttl=settings.CACHE_L1_TTL,
            clock=clock,
        )

    # -------------------------------------------------------------------------
    # CacheLayer protocol
    # -------------------------------------------------------------------------

    async def read(self, key: str) -> CacheRecord | _Expired | None:
        """
        Read and classify an entry, marking it most recently used.

        Returns:
            CacheRecord (FRESH or NEEDS_REVALIDATION), EXPIRED, or None
        """
        async with self._lock:
            slot = self._cache.get(key)
            if slot is None:
                return None

            now = self._clock()
            if slot.expires_at is not None and now >= slot.expires_at:
                self._pop(key)
                return None

            status = get_cache_status(
                slot.entry.timestamp, slot.entry.revalidate, slot.entry.expire, now=now
            )
            if status is CacheStatus.EXPIRED:
                return EXPIRED

            self._cache.move_to_end(key)
            return CacheRecord(slot.entry, slot.size, status, CacheSource.MEMORY)

    async def write(self, key: str, entry: Entry, size: int | None = None) -> bool:
        """
        Store an entry, evicting least recently used slots while over bounds.

        Returns:
            False if the entry alone exceeds the byte bound (nothing stored)
        """
        size = entry.payload.size if size is None else size

        async with self._lock:
            if size > self._max_size_bytes:
                # A stale copy must not outlive the rejected write
                self._pop(key)
                logger.warning(
                    "Entry larger than L1 capacity, not cached in memory",
                    key=key,
                    size=size,
                    max_size_bytes=self._max_size_bytes,
                )
                return False

            self._store(key, _Slot(entry, size, self._expires_at(entry)))
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._pop(key) is not None

    async def update_tags(
        self, tags: Iterable[str], durations: Durations | Mapping[str, Any] | None = None
    ) -> int:
        """
        Rewrite metadata of every resident entry carrying one of `tags`.

        Recency order is kept; the slot TTL is recomputed from the new expire.

        Returns:
            Number of entries rewritten
        """
        tags = normalize_tags(tags)
        if not tags:
            return 0
        durations = Durations.coerce(durations)

        async with self._lock:
            now = self._clock()
            updated = 0
            for slot in self._cache.values():
                rewritten = update_metadata_for_tags(slot.entry, tags, durations, now)
                if rewritten is slot.entry:
                    continue
                slot.entry = rewritten
                slot.expires_at = self._expires_at(rewritten)
                updated += 1
            return updated

    def is_ready(self) -> bool:
        return True

    # -------------------------------------------------------------------------
    # Snapshot / rollback
    # -------------------------------------------------------------------------

    async def peek(self, key: str) -> CacheRecord | None:
        """Raw resident record, without classification or recency update."""
        async with self._lock:
            slot = self._cache.get(key)
            if slot is None:
                return None
            return CacheRecord(slot.entry, slot.size, source=CacheSource.MEMORY)

    async def restore(self, key: str, record: CacheRecord | None) -> None:
        """Put back a record taken with `peek`, or evict if there was none."""
        if record is None:
            await self.delete(key)
        else:
            await self.write(key, record.entry, record.size)

    # -------------------------------------------------------------------------
    # Administration
    # -------------------------------------------------------------------------

    def keys(self) -> list[str]:
        """Resident keys, least recently used first."""
        return list(self._cache.keys())

    async def delete_matching(
        self,
        pattern: str | re.Pattern,
        key_names: Callable[[str], Iterable[str]] | None = None,
    ) -> int:
        """
        Drop entries whose names match `pattern`.

        Args:
            pattern: "*" (everything), a glob string, or a compiled regex
            key_names: Names to test for a logical key (defaults to the key)

        Returns:
            Number of entries removed
        """
        if pattern == "*":
            return await self.clear()

        if isinstance(pattern, re.Pattern):
            matches = pattern.search
        else:
            matches = lambda name: fnmatch.fnmatchcase(name, pattern)  # noqa: E731

        names = key_names or (lambda key: (key,))

        async with self._lock:
            doomed = [key for key in self._cache if any(matches(name) for name in names(key))]
            for key in doomed:
                self._pop(key)
            return len(doomed)

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._cache)
            self._cache.clear()
            self._size_bytes = 0
            return count

    @property
    def size_bytes(self) -> int:
        return self._size_bytes

    @property
    def max_size_bytes(self) -> int:
        return self._max_size_bytes

    def __len__(self) -> int:
        return len(self._cache)

    def get_stats(self) -> dict[str, Any]:
        """
        Get tier occupancy.

        Returns:
            Dict with entry count, byte usage and utilization
        """
        return {
            "entries": len(self._cache),
            "max_entries": self._max_entries,
            "size_bytes": self._size_bytes,
            "max_size_bytes": self._max_size_bytes,
            "utilization_pct": round(self._size_bytes / self._max_size_bytes * 100, 2),
            "evictions": self._evictions,
            "ttl": self._ttl,
        }

    # -------------------------------------------------------------------------
    # Internals (caller holds the lock)
    # -------------------------------------------------------------------------

    def _expires_at(self, entry: Entry) -> float | None:
        ttl = entry.expire if self._ttl == L1_TTL_AUTO else self._ttl
        if ttl is None or ttl <= 0:
            return None
        return self._clock() + ttl * 1000

    def _store(self, key: str, slot: _Slot) -> None:
        self._pop(key)
        self._cache[key] = slot
        self._size_bytes += slot.size

        while self._cache and (
            self._size_bytes > self._max_size_bytes
            or (self._max_entries is not None and len(self._cache) > self._max_entries)
        ):
            evicted_key, evicted = self._cache.popitem(last=False)
            self._size_bytes -= evicted.size
            self._evictions += 1
            logger.debug("L1 eviction", key=evicted_key, size=evicted.size)

    def _pop(self, key: str) -> _Slot | None:
        slot = self._cache.pop(key, None)
        if slot is not None:
            self._size_bytes -= slot.size
        return slot
