#!/usr/bin/env python3
"""
Two-Tier Cache Orchestrator

Architecture:
    CacheOrchestrator (Public API)
        ├── EphemeralLayer (in-memory LRU, L1)
        ├── PersistentLayer (Redis, L2)
        │   └── ConnectionManager (connection lifecycle, wait policy)
        ├── PendingRequestRegistry × 2 (in-flight reads, in-flight writes)
        └── CacheObserver (logging, counters, host sink)

Read Path:
    in-flight write → L1 → in-flight read → L2 (populates L1)

Write Path:
    register write → snapshot L1 → produce → L1 → L2
    (L2 failure rolls L1 back to the snapshot)

Guarantees:
- For one key, at most one Redis read and one logical write in flight
- Readers never observe a half-applied write: they await the write's result
- Redis unavailable under the default strategy degrades to L1-only caching
"""

import asyncio
import inspect
import re
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from tiercache.core.config.constants import (
    DEFAULT_EXPIRE,
    DEFAULT_REVALIDATE,
    DEFAULT_STALE,
    CacheEventStatus,
    CacheOperation,
    CacheSource,
    CacheStatus,
    CacheTier,
    StalePolicy,
)
from tiercache.core.config.settings import Settings, get_settings
from tiercache.core.exceptions import CacheConnectionError, CacheError
from tiercache.core.helpers import Clock, get_cache_keys, get_cache_status, now_ms
from tiercache.core.interfaces import CacheLayer
from tiercache.core.logging.logger import get_logger
from tiercache.core.models import EXPIRED, CacheRecord, Durations, Entry, normalize_tags
from tiercache.core.stream import Payload, PayloadSource, decode_payload_text
from tiercache.infrastructure.cache.connection_manager import ClientFactory, ConnectionManager, create_redis_client
from tiercache.infrastructure.cache.memory_layer import EphemeralLayer
from tiercache.infrastructure.cache.observer import CacheObserver, LogSink
from tiercache.infrastructure.cache.pending_registry import PendingRequestRegistry
from tiercache.infrastructure.cache.redis_layer import PersistentLayer

logger = get_logger(__name__)

EntrySource = Entry | Awaitable[Entry]
ComputeFn = Callable[[], PayloadSource | Awaitable[PayloadSource]]


class CacheOrchestrator:
    """
    Two-tier cache engine with request coalescing and tag invalidation.

    Usage:
        cache = CacheOrchestrator(get_settings())
        await cache.initialize()

        entry = await cache.get("/blog/1")
        if entry is None:
            await cache.set("/blog/1", render_page())   # awaitable of Entry

        await cache.update_tags(["blog"], {"expire": 60})

        # Monitoring
        stats = cache.stats()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        ephemeral: EphemeralLayer | None = None,
        persistent: PersistentLayer | None = None,
        connection: ConnectionManager | None = None,
        observer: CacheObserver | None = None,
        log_sink: LogSink | None = None,
        client_factory: ClientFactory = create_redis_client,
        clock: Clock = now_ms,
    ):
        """
        Initialize cache orchestrator.

        STAGE-2.0: Cache orchestrator initialization

        Args:
            settings: Configuration (defaults to the process settings)
            ephemeral: L1 tier (built from settings if omitted)
            persistent: L2 tier (built from settings if omitted)
            connection: Redis connection manager (built from settings if omitted)
            observer: Event recorder (built with `log_sink` if omitted)
            log_sink: Host callable receiving every cache event
            client_factory: Builds the Redis client
            clock: Epoch-ms clock shared by both tiers
        """
        self._settings = settings or get_settings()
        cache_settings = self._settings.cache

        self._clock = clock
        self._observer = observer or CacheObserver(sink=log_sink)
        self._connection = connection or ConnectionManager(
            self._settings.redis, observer=self._observer, client_factory=client_factory
        )
        self._ephemeral = ephemeral or EphemeralLayer.from_settings(cache_settings, clock=clock)
        self._persistent = persistent or PersistentLayer.from_settings(
            cache_settings, self._connection, observer=self._observer, clock=clock
        )
        self._key_prefix = cache_settings.CACHE_KEY_PREFIX
        self._stale_policy = StalePolicy(cache_settings.CACHE_STALE_POLICY)

        self._reads: PendingRequestRegistry[CacheRecord | None] = PendingRequestRegistry("reads")
        self._writes: PendingRequestRegistry[CacheRecord | None] = PendingRequestRegistry("writes")
        # key -> token of the Redis read allowed to populate L1
        self._read_claims: dict[str, object] = {}
        self._refreshes: set[asyncio.Task] = set()
        self._initialized = False

        logger.info(
            "Cache orchestrator initialized",
            stage="2.0",
            l1_max_size_mb=cache_settings.CACHE_L1_MAX_SIZE_MB,
            l1_ttl=cache_settings.CACHE_L1_TTL,
            stale_policy=self._stale_policy.value,
            connection_strategy=self._connection.strategy.value,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """
        Connect to Redis according to the connection strategy.

        STAGE-2.0.1: Initialize L2 (Redis) connection
        """
        if self._initialized:
            return

        connected = await self._connection.ensure_connected()
        self._initialized = True

        logger.info("Cache orchestrator started", stage="2.0.1", redis_ready=connected)

    async def shutdown(self) -> None:
        """
        Stop background refreshes, close Redis and clear L1.

        STAGE-2.0.2: Cleanup cache connections
        """
        for task in list(self._refreshes):
            task.cancel()
        if self._refreshes:
            await asyncio.gather(*self._refreshes, return_exceptions=True)

        await self._connection.disconnect()
        await self._ephemeral.clear()
        self._initialized = False

        logger.info("Cache orchestrator shutdown", stage="2.0.2")

    def is_ready(self) -> bool:
        tiers: tuple[CacheLayer, ...] = (self._ephemeral, self._persistent)
        return all(tier.is_ready() for tier in tiers)

    @property
    def observer(self) -> CacheObserver:
        return self._observer

    # -------------------------------------------------------------------------
    # Read path
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Entry | None:
        """
        Get an entry.

        Returns:
            The entry (its value is a replayable Payload) or None on miss
        """
        record = await self.get_record(key)
        return record.entry if record is not None else None

    async def get_record(self, key: str) -> CacheRecord | None:
        """
        Get an entry with its freshness status and source tier.

        STAGE-2.1: In-flight write / L1 lookup
        STAGE-2.2: L2 lookup (coalesced)

        Raises:
            CacheError: Redis read failed and the strategy raises on failure
        """
        # 1. A write in flight is fresher than anything stored
        pending_write = self._writes.peek(key)
        if pending_write is not None:
            record = await self._writes.wait(pending_write)
            if record is not None:
                self._observer.record(CacheOperation.GET, CacheEventStatus.HIT, CacheSource.NEW, key)
                return record
            self._observer.record(
                CacheOperation.GET, CacheEventStatus.MISS, CacheSource.NEW, key, message="In-flight write failed"
            )
            return None

        # 2. L1
        memory = await self._ephemeral.read(key)
        if memory is EXPIRED:
            await self._ephemeral.delete(key)
            self._observer.record(CacheOperation.GET, CacheEventStatus.EXPIRED, CacheSource.MEMORY, key)
        elif memory is not None:
            served = self._serve(key, memory)
            if served is not None:
                return served

        # 3. A Redis read in flight
        future, is_producer = self._reads.begin_if_absent(key)
        if not is_producer:
            return await self._reads.wait(future)

        # 4. Become the producer
        record = None
        try:
            record = await self._read_persistent(key)
            self._reads.resolve(key, record)
        except CacheError as e:
            self._observer.record(CacheOperation.GET, CacheEventStatus.ERROR, CacheSource.REDIS, key, message=str(e))
            if self._connection.raises_on_failure:
                raise
            record = None
        finally:
            self._reads.remove(key)
        return record

    async def _read_persistent(self, key: str) -> CacheRecord | None:
        claim = self._read_claims[key] = object()
        try:
            result = await self._persistent.read(key)
        finally:
            # A set() of this key that started meanwhile owns both tiers
            owned = self._read_claims.pop(key, None) is claim

        if result is EXPIRED:
            if owned:
                await self._persistent.delete(key)
                await self._ephemeral.delete(key)
            self._observer.record(CacheOperation.GET, CacheEventStatus.EXPIRED, CacheSource.REDIS, key)
            return None

        if result is None:
            if owned and self._persistent.is_ready():
                await self._ephemeral.delete(key)
            self._observer.record(CacheOperation.GET, CacheEventStatus.MISS, CacheSource.NONE, key)
            return None

        if owned:
            await self._ephemeral.write(key, result.entry, result.size)

        if result.status is CacheStatus.FRESH:
            self._observer.record(CacheOperation.GET, CacheEventStatus.HIT, CacheSource.REDIS, key)
            return result
        return self._serve(key, result)

    def _serve(self, key: str, record: CacheRecord) -> CacheRecord | None:
        """Apply the stale policy to a FRESH or NEEDS_REVALIDATION record."""
        if record.status is CacheStatus.FRESH:
            self._observer.record(CacheOperation.GET, CacheEventStatus.HIT, record.source, key)
            return record

        if self._stale_policy is StalePolicy.SERVE:
            self._observer.record(CacheOperation.GET, CacheEventStatus.UPDATING, record.source, key)
            return record

        self._observer.record(
            CacheOperation.GET, CacheEventStatus.MISS, record.source, key, message="Needs revalidation, withheld"
        )
        return None

    # -------------------------------------------------------------------------
    # Write path
    # -------------------------------------------------------------------------

    async def set(self, key: str, produced_entry: EntrySource) -> None:
        """
        Produce and store an entry in both tiers.

        STAGE-2.3: Cache population

        Concurrent readers of `key` await this write instead of racing it.
        A second writer of the same key waits for the first, then writes.

        Args:
            key: Cache key
            produced_entry: Entry, or awaitable resolving to one; its value
                may be bytes, text or an (async) iterable of chunks

        Raises:
            Exception: Whatever the producer raised (L1 rolled back)
            CachePersistenceError: Redis batch failed (L1 rolled back)
            CacheConnectionError: Redis unavailable under a raising strategy

        Cancellation also rolls L1 back before propagating.
        """
        while True:
            future, is_producer = self._writes.begin_if_absent(key)
            if is_producer:
                break
            await self._writes.wait(future)

        self._read_claims.pop(key, None)
        snapshot = None
        touched = False
        try:
            snapshot = await self._ephemeral.peek(key)

            entry = await produced_entry if inspect.isawaitable(produced_entry) else produced_entry
            payload = await Payload.materialize(entry.value)
            entry = entry.with_value(payload)
            record = CacheRecord(entry, payload.size, CacheStatus.FRESH, CacheSource.NEW)

            touched = True
            await self._ephemeral.write(key, entry, payload.size)
            try:
                persisted = await self._persistent.write(key, entry, payload.size)
            except CacheConnectionError as e:
                if not self._tolerates(e):
                    raise
                persisted = False

            status = CacheEventStatus.REVALIDATED if persisted else CacheEventStatus.DROPPED
            self._observer.record(
                CacheOperation.SET,
                status,
                CacheSource.REDIS if persisted else CacheSource.MEMORY,
                key,
                message=None if persisted else "Cached in memory only",
            )
            self._writes.resolve(key, record)
        except (Exception, asyncio.CancelledError) as e:
            if touched:
                await self._ephemeral.restore(key, snapshot)
            self._observer.record(
                CacheOperation.SET, CacheEventStatus.ERROR, CacheSource.NEW, key, message=str(e) or type(e).__name__
            )
            raise
        finally:
            self._writes.remove(key)

    def _tolerates(self, error: CacheError) -> bool:
        """Connection loss is absorbed unless the strategy raises on failure."""
        return isinstance(error, CacheConnectionError) and not self._connection.raises_on_failure

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    async def update_tags(
        self, tags: Iterable[str], durations: Durations | Mapping[str, Any] | None = None
    ) -> None:
        """
        Force revalidation of every entry carrying one of `tags`.

        STAGE-2.4: Tag invalidation

        L1 is always updated first; a Redis failure is logged and re-raised
        after the L1 update has taken effect. Losing the connection is only
        raised under a raising strategy.

        Args:
            tags: Tags to invalidate (a bare string is one tag)
            durations: {"expire": seconds} for the new window (default 0)
        """
        tags = normalize_tags(tags)
        if not tags:
            self._observer.record(
                CacheOperation.UPDATE_TAGS, CacheEventStatus.MISS, CacheSource.NONE, "", message="No tags given"
            )
            return

        durations = Durations.coerce(durations)
        joined = ",".join(tags)

        in_memory = await self._ephemeral.update_tags(tags, durations)
        self._observer.record(
            CacheOperation.UPDATE_TAGS,
            CacheEventStatus.REVALIDATED,
            CacheSource.MEMORY,
            joined,
            message=f"{in_memory} entries",
        )

        try:
            in_redis = await self._persistent.update_tags(tags, durations)
        except CacheError as e:
            tolerated = self._tolerates(e)
            self._observer.record(
                CacheOperation.UPDATE_TAGS,
                CacheEventStatus.DROPPED if tolerated else CacheEventStatus.ERROR,
                CacheSource.REDIS,
                joined,
                message=str(e),
            )
            if tolerated:
                return
            raise

        self._observer.record(
            CacheOperation.UPDATE_TAGS,
            CacheEventStatus.REVALIDATED,
            CacheSource.REDIS,
            joined,
            message=f"{in_redis} entries",
        )

    async def delete(self, key: str) -> None:
        """
        Delete an entry from both tiers.

        Raises:
            CacheError: Redis delete failed (connection loss only under a
                raising strategy)
        """
        await self._ephemeral.delete(key)
        try:
            await self._persistent.delete(key)
        except CacheError as e:
            if self._tolerates(e):
                self._observer.record(
                    CacheOperation.DELETE, CacheEventStatus.DROPPED, CacheSource.REDIS, key, message=str(e)
                )
                return
            self._observer.record(CacheOperation.DELETE, CacheEventStatus.ERROR, CacheSource.REDIS, key, message=str(e))
            raise
        self._observer.record(CacheOperation.DELETE, CacheEventStatus.HIT, CacheSource.NONE, key)

    async def delete_matching(self, pattern: str | re.Pattern) -> None:
        """
        Administrative bulk purge.

        Args:
            pattern: "*" flushes Redis and clears L1; a glob or compiled regex
                is matched against Redis key names, and L1 entries whose
                Redis key names match are dropped too
        """
        await self._ephemeral.delete_matching(
            pattern, key_names=lambda key: get_cache_keys(key, self._key_prefix)
        )

        label = pattern.pattern if isinstance(pattern, re.Pattern) else pattern
        try:
            removed = await self._persistent.delete_matching(pattern)
        except CacheError as e:
            if self._tolerates(e):
                self._observer.record(
                    CacheOperation.DELETE, CacheEventStatus.DROPPED, CacheSource.REDIS, label, message=str(e)
                )
                return
            self._observer.record(CacheOperation.DELETE, CacheEventStatus.ERROR, CacheSource.REDIS, label, message=str(e))
            raise
        self._observer.record(
            CacheOperation.DELETE, CacheEventStatus.HIT, CacheSource.REDIS, label, message=f"{removed} keys removed"
        )

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    async def list_keys(self, tier: CacheTier | str = CacheTier.L2) -> list[str]:
        """
        List cached logical keys.

        Args:
            tier: L2 (Redis, default) or L1 (resident in memory)
        """
        tier = CacheTier(tier)
        if tier is CacheTier.L1:
            keys = self._ephemeral.keys()
            source = CacheSource.MEMORY
        else:
            keys = await self._persistent.list_keys()
            source = CacheSource.REDIS

        self._observer.record(CacheOperation.LIST_KEYS, CacheEventStatus.HIT, source, "*", message=f"{len(keys)} keys")
        return keys

    async def get_detail(self, key: str) -> dict[str, Any]:
        """
        Describe one entry for debugging.

        Redis is consulted first, then L1. The value is UTF-8 text, or
        base64 when the payload is not valid UTF-8.

        Returns:
            {key, metadata, value, size, status}; metadata, value and status
            are None (size 0) when the entry is not found
        """
        record = None
        try:
            record = await self._persistent.inspect(key)
        except CacheError as e:
            self._observer.record(CacheOperation.GET, CacheEventStatus.ERROR, CacheSource.REDIS, key, message=str(e))
            if self._connection.raises_on_failure:
                raise

        if record is None:
            resident = await self._ephemeral.peek(key)
            if resident is not None:
                entry = resident.entry
                status = get_cache_status(entry.timestamp, entry.revalidate, entry.expire, now=self._clock())
                record = CacheRecord(entry, resident.size, status, CacheSource.MEMORY)

        if record is None:
            return {"key": key, "metadata": None, "value": None, "size": 0, "status": None}

        return {
            "key": key,
            "metadata": record.entry.metadata.to_dict(),
            "value": decode_payload_text(record.entry.payload),
            "size": record.size,
            "status": record.status.value,
        }

    # -------------------------------------------------------------------------
    # Advanced Patterns
    # -------------------------------------------------------------------------

    async def get_or_compute(
        self,
        key: str,
        compute_fn: ComputeFn,
        *,
        tags: Iterable[str] = (),
        stale: float = DEFAULT_STALE,
        revalidate: float = DEFAULT_REVALIDATE,
        expire: float = DEFAULT_EXPIRE,
    ) -> Payload:
        """
        Get from cache or compute and cache the result (cache-aside pattern).

        STAGE-2.5: Cache-aside pattern

        A NEEDS_REVALIDATION hit is returned immediately and refreshed in
        the background (stale-while-revalidate).

        Args:
            key: Cache key
            compute_fn: Sync or async callable returning the payload
            tags: Tags attached to a newly computed entry
            stale / revalidate / expire: Freshness window in seconds

        Returns:
            The cached or freshly computed payload
        """
        tags = normalize_tags(tags)

        async def produce() -> Entry:
            value = compute_fn()
            if inspect.isawaitable(value):
                value = await value
            return Entry(
                tags=tags,
                timestamp=self._clock(),
                stale=stale,
                revalidate=revalidate,
                expire=expire,
                value=await Payload.materialize(value),
            )

        record = await self.get_record(key)
        if record is not None:
            if record.status is CacheStatus.NEEDS_REVALIDATION:
                self._refresh_in_background(key, produce)
            return record.entry.payload

        entry = await produce()
        await self.set(key, entry)
        return entry.payload

    def _refresh_in_background(self, key: str, produce: Callable[[], Awaitable[Entry]]) -> None:
        if key in self._writes:
            return

        task = asyncio.create_task(self.set(key, produce()))
        self._refreshes.add(task)

        def _done(finished: asyncio.Task) -> None:
            self._refreshes.discard(finished)
            if not finished.cancelled() and finished.exception() is not None:
                logger.warning("Background refresh failed", key=key, error=str(finished.exception()))

        task.add_done_callback(_done)

    # -------------------------------------------------------------------------
    # Monitoring
    # -------------------------------------------------------------------------

    def stats(self) -> dict[str, Any]:
        """
        Get cache performance statistics.

        Returns:
            Dict with hit rates, L1 occupancy and in-flight operations
        """
        stats = {
            **self._observer.get_stats(),
            "pending_reads": len(self._reads),
            "pending_writes": len(self._writes),
            "l2_ready": self._persistent.is_ready(),
            "l1": self._ephemeral.get_stats(),
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        return stats

    async def health_check(self) -> dict[str, Any]:
        """
        Perform health check on cache system.

        Returns:
            Dict with health status for both tiers
        """
        l2 = await self._connection.health_check()
        return {
            "status": "healthy" if l2["status"] == "healthy" else "degraded",
            "l1": {"status": "healthy", "entries": len(self._ephemeral)},
            "l2": l2,
        }


# =============================================================================
# GLOBAL INSTANCE (SINGLETON PATTERN)
# =============================================================================

_cache_orchestrator: CacheOrchestrator | None = None


def get_cache_orchestrator(settings: Settings | None = None) -> CacheOrchestrator:
    """
    Get the global cache orchestrator instance (singleton).

    Args:
        settings: Used only when the instance is first created

    Returns:
        CacheOrchestrator: Global cache orchestrator instance
    """
    global _cache_orchestrator

    if _cache_orchestrator is None:
        _cache_orchestrator = CacheOrchestrator(settings)

    return _cache_orchestrator


async def init_cache(settings: Settings | None = None) -> CacheOrchestrator:
    """
    Initialize and connect the global cache orchestrator.

    Returns:
        CacheOrchestrator: Initialized cache orchestrator
    """
    orchestrator = get_cache_orchestrator(settings)
    await orchestrator.initialize()
    return orchestrator


async def close_cache() -> None:
    """Shutdown the global cache orchestrator."""
    global _cache_orchestrator

    if _cache_orchestrator:
        await _cache_orchestrator.shutdown()
        _cache_orchestrator = None
