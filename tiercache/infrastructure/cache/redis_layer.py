"""
Persistent (L2) Cache Layer

Redis-backed tier. Each logical key K is stored as two Redis keys with the
same TTL:

    {prefix}entry:K   payload, base64
    {prefix}meta:K    metadata, JSON (tags, timestamp, stale, expire, revalidate)

STAGE-2.2: L2 Redis cache

Why Two Keys?
- Tag invalidation rewrites metadata only, the payload is never re-sent
- Enumeration scans the small metadata rows

Consistency:
- Writes are one non-transactional pipeline; a partial failure raises
  CachePersistenceError and the two keys may disagree
- Reads self-heal: metadata without payload (or undecodable rows) are
  deleted and reported as absent

Error Conversion (at this boundary):
- redis ConnectionError / TimeoutError → CacheConnectionError, and the
  connection is marked disconnected
- other read errors → CacheKeyError
- write / batch errors → CachePersistenceError
"""

import math
import re
from collections.abc import AsyncIterator, Iterable, Mapping
from contextlib import asynccontextmanager
from typing import Any

from redis.exceptions import ConnectionError, RedisError, TimeoutError

from tiercache.core.config.constants import (
    DEFAULT_KEY_PREFIX,
    KEYS_SCAN_COUNT,
    META_KEY_SEGMENT,
    PENDING_KEYS_KEY,
    TAGS_SCAN_COUNT,
    CacheEventStatus,
    CacheOperation,
    CacheSource,
    CacheStatus,
)
from tiercache.core.config.settings import CacheSettings
from tiercache.core.exceptions import (
    CacheConnectionError,
    CacheError,
    CacheKeyError,
    CachePersistenceError,
    MalformedMetadataError,
)
from tiercache.core.helpers import Clock, get_cache_keys, get_cache_status, now_ms, update_metadata_for_tags
from tiercache.core.logging.logger import get_logger
from tiercache.core.models import EXPIRED, CacheRecord, Durations, Entry, Metadata, _Expired, normalize_tags
from tiercache.core.stream import Payload
from tiercache.infrastructure.cache.connection_manager import ConnectionManager
from tiercache.infrastructure.cache.observer import CacheObserver
from tiercache.infrastructure.cache.pending_registry import PendingRequestRegistry

logger = get_logger(__name__)


def store_ttl(expire: float) -> int:
    """Redis TTL in whole seconds for an entry's expire window."""
    return max(1, math.ceil(expire))


class PersistentLayer:
    """
    Redis tier of the cache.

    Every operation first asks the ConnectionManager for readiness and
    honours its strategy: under a non-throwing strategy an unavailable
    store makes reads return None and writes return False.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        observer: CacheObserver | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        tags_scan_count: int = TAGS_SCAN_COUNT,
        keys_scan_count: int = KEYS_SCAN_COUNT,
        clock: Clock = now_ms,
    ):
        """
        Initialize Redis tier.

        Args:
            connection: Connection lifecycle owner
            observer: Event recorder
            key_prefix: Namespace of every Redis key
            tags_scan_count: SCAN page size for tag rewrite
            keys_scan_count: SCAN page size for listing and purge
            clock: Epoch-ms clock
        """
        self._connection = connection
        self._observer = observer or CacheObserver()
        self._prefix = key_prefix
        self._meta_prefix = f"{key_prefix}{META_KEY_SEGMENT}"
        self._tags_scan_count = tags_scan_count
        self._keys_scan_count = keys_scan_count
        self._clock = clock
        self._pending_keys: PendingRequestRegistry[list[str]] = PendingRequestRegistry("keys")

    @classmethod
    def from_settings(
        cls,
        settings: CacheSettings,
        connection: ConnectionManager,
        observer: CacheObserver | None = None,
        clock: Clock = now_ms,
    ) -> "PersistentLayer":
        return cls(
            connection,
            observer=observer,
            key_prefix=settings.CACHE_KEY_PREFIX,
            tags_scan_count=settings.CACHE_TAGS_SCAN_COUNT,
            keys_scan_count=settings.CACHE_KEYS_SCAN_COUNT,
            clock=clock,
        )

    @property
    def key_prefix(self) -> str:
        return self._prefix

    def is_ready(self) -> bool:
        return self._connection.is_ready()

    # -------------------------------------------------------------------------
    # Error conversion
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _redis_errors(self, key: str | None, error_cls: type[CacheError]) -> AsyncIterator[None]:
        try:
            yield
        except (ConnectionError, TimeoutError) as e:
            await self._connection.mark_disconnected(e)
            raise CacheConnectionError.from_exception(e, key=key) from e
        except RedisError as e:
            raise error_cls.from_exception(e, key=key) from e

    # -------------------------------------------------------------------------
    # Single-key operations
    # -------------------------------------------------------------------------

    async def read(self, key: str) -> CacheRecord | _Expired | None:
        """
        Read and classify an entry.

        Returns:
            CacheRecord (FRESH or NEEDS_REVALIDATION), EXPIRED, or None
        """
        if not await self._connection.ensure_connected():
            return None

        client = self._connection.client
        keys = get_cache_keys(key, self._prefix)

        async with self._redis_errors(key, CacheKeyError):
            raw_meta = await client.get(keys.meta_key)
            if raw_meta is None:
                return None

            try:
                metadata = Metadata.from_json(raw_meta)
            except MalformedMetadataError as e:
                await self._heal(key, f"Malformed metadata: {e.message}", keys.entry_key, keys.meta_key)
                return None

            status = get_cache_status(metadata.timestamp, metadata.revalidate, metadata.expire, now=self._clock())
            if status is CacheStatus.EXPIRED:
                return EXPIRED

            raw_entry = await client.get(keys.entry_key)
            if raw_entry is None:
                await self._heal(key, "Payload missing for metadata", keys.meta_key)
                return None

            try:
                payload = Payload.from_base64(raw_entry)
            except ValueError:
                await self._heal(key, "Payload is not valid base64", keys.entry_key, keys.meta_key)
                return None

        return CacheRecord(Entry.from_metadata(metadata, payload), payload.size, status, CacheSource.REDIS)

    async def _heal(self, key: str, reason: str, *redis_keys: str) -> None:
        await self._connection.client.delete(*redis_keys)
        self._observer.record(CacheOperation.GET, CacheEventStatus.ERROR, CacheSource.REDIS, key, message=reason)

    async def write(self, key: str, entry: Entry, size: int | None = None) -> bool:
        """
        Store payload and metadata in one pipeline.

        Returns:
            False if the store is unavailable and the write was dropped

        Raises:
            CachePersistenceError: Any command in the batch failed
        """
        if not await self._connection.ensure_connected():
            self._observer.record(
                CacheOperation.SET, CacheEventStatus.DROPPED, CacheSource.REDIS, key, message="Redis unavailable"
            )
            return False

        client = self._connection.client
        keys = get_cache_keys(key, self._prefix)
        ttl = store_ttl(entry.expire)

        async with self._redis_errors(key, CachePersistenceError):
            async with client.pipeline(transaction=False) as pipe:
                pipe.set(keys.entry_key, entry.payload.to_base64(), ex=ttl)
                pipe.set(keys.meta_key, entry.metadata.to_json(), ex=ttl)
                results = await pipe.execute(raise_on_error=False)

        self._raise_on_batch_errors(results, key)
        return True

    async def delete(self, key: str) -> bool:
        """Remove both Redis keys. Returns False if nothing was removed."""
        if not await self._connection.ensure_connected():
            return False

        keys = get_cache_keys(key, self._prefix)
        async with self._redis_errors(key, CachePersistenceError):
            removed = await self._connection.client.delete(keys.entry_key, keys.meta_key)
        return removed > 0

    async def inspect(self, key: str) -> CacheRecord | None:
        """
        Read an entry for display, without healing or purging.

        Expired entries are returned with status EXPIRED.
        """
        if not await self._connection.ensure_connected():
            return None

        client = self._connection.client
        keys = get_cache_keys(key, self._prefix)

        async with self._redis_errors(key, CacheKeyError):
            raw_meta = await client.get(keys.meta_key)
            raw_entry = await client.get(keys.entry_key)

        if raw_meta is None or raw_entry is None:
            return None

        try:
            metadata = Metadata.from_json(raw_meta)
            payload = Payload.from_base64(raw_entry)
        except (MalformedMetadataError, ValueError) as e:
            logger.warning("Unreadable cache entry", key=key, error=str(e))
            return None

        status = get_cache_status(metadata.timestamp, metadata.revalidate, metadata.expire, now=self._clock())
        return CacheRecord(Entry.from_metadata(metadata, payload), payload.size, status, CacheSource.REDIS)

    # -------------------------------------------------------------------------
    # Tag invalidation
    # -------------------------------------------------------------------------

    async def update_tags(
        self, tags: Iterable[str], durations: Durations | Mapping[str, Any] | None = None
    ) -> int:
        """
        Force revalidation of every stored entry carrying one of `tags`.

        Algorithm (per SCAN page of metadata keys):
        1. Pipeline GET of every metadata row
        2. Rewrite rows whose tags intersect (malformed rows are skipped)
        3. Pipeline SET of the changed rows, plus EXPIRE on their payload key
           so both keys keep the same lifetime

        Returns:
            Number of entries rewritten

        Raises:
            CachePersistenceError: A rewrite batch failed
        """
        tags = normalize_tags(tags)
        if not tags:
            return 0
        durations = Durations.coerce(durations)
        joined = ",".join(tags)

        if not await self._connection.ensure_connected():
            self._observer.record(
                CacheOperation.UPDATE_TAGS, CacheEventStatus.DROPPED, CacheSource.REDIS, joined,
                message="Redis unavailable",
            )
            return 0

        now = self._clock()
        updated = 0

        async with self._redis_errors(joined, CachePersistenceError):
            async for meta_keys in self._scan(f"{self._meta_prefix}*", self._tags_scan_count):
                updated += await self._rewrite_page(meta_keys, tags, durations, now, joined)

        return updated

    async def _rewrite_page(
        self,
        meta_keys: list[str],
        tags: tuple[str, ...],
        durations: Durations,
        now: float,
        joined: str,
    ) -> int:
        client = self._connection.client

        async with client.pipeline(transaction=False) as pipe:
            for meta_key in meta_keys:
                pipe.get(meta_key)
            rows = await pipe.execute(raise_on_error=False)

        changed: list[tuple[str, Metadata]] = []
        for meta_key, raw in zip(meta_keys, rows):
            if raw is None:
                continue
            if isinstance(raw, Exception):
                logger.warning("Skipping unreadable metadata row", key=meta_key, error=str(raw))
                continue
            try:
                metadata = Metadata.from_json(raw)
            except MalformedMetadataError as e:
                logger.warning("Skipping malformed metadata row", key=meta_key, error=e.message)
                continue

            rewritten = update_metadata_for_tags(metadata, tags, durations, now)
            if rewritten is not metadata:
                changed.append((meta_key, rewritten))

        if not changed:
            return 0

        async with client.pipeline(transaction=False) as pipe:
            for meta_key, metadata in changed:
                ttl = store_ttl(metadata.expire)
                pipe.set(meta_key, metadata.to_json(), ex=ttl)
                pipe.expire(self._entry_key_for(meta_key), ttl)
            results = await pipe.execute(raise_on_error=False)

        self._raise_on_batch_errors(results, joined)
        return len(changed)

    def _entry_key_for(self, meta_key: str) -> str:
        return get_cache_keys(meta_key[len(self._meta_prefix):], self._prefix).entry_key

    # -------------------------------------------------------------------------
    # Enumeration and purge
    # -------------------------------------------------------------------------

    async def list_keys(self) -> list[str]:
        """
        Logical keys currently stored, prefix stripped.

        Concurrent callers share one scan.
        """
        future, is_producer = self._pending_keys.begin_if_absent(PENDING_KEYS_KEY)
        if not is_producer:
            return list(await self._pending_keys.wait(future) or [])

        keys: list[str] = []
        try:
            keys = await self._scan_logical_keys()
            self._pending_keys.resolve(PENDING_KEYS_KEY, keys)
        finally:
            self._pending_keys.remove(PENDING_KEYS_KEY, default=[])
        return list(keys)

    async def _scan_logical_keys(self) -> list[str]:
        if not await self._connection.ensure_connected():
            return []

        found: dict[str, None] = {}
        async with self._redis_errors(None, CacheKeyError):
            async for meta_keys in self._scan(f"{self._meta_prefix}*", self._keys_scan_count):
                for meta_key in meta_keys:
                    found[meta_key[len(self._meta_prefix):]] = None
        return list(found)

    async def delete_matching(self, pattern: str | re.Pattern) -> int:
        """
        Administrative purge of raw Redis keys.

        Args:
            pattern: "*" flushes the whole database; a glob string is
                passed to SCAN MATCH; a compiled regex is tested with
                `search` against every key

        Returns:
            Number of Redis keys removed
        """
        if not await self._connection.ensure_connected():
            return 0

        client = self._connection.client
        label = pattern.pattern if isinstance(pattern, re.Pattern) else pattern

        async with self._redis_errors(label, CachePersistenceError):
            if pattern == "*":
                removed = await client.dbsize()
                await client.flushall()
                return removed

            doomed: list[str] = []
            if isinstance(pattern, re.Pattern):
                async for page in self._scan(None, self._keys_scan_count):
                    doomed.extend(key for key in page if pattern.search(key))
            else:
                async for page in self._scan(pattern, self._keys_scan_count):
                    doomed.extend(page)

            removed = 0
            for start in range(0, len(doomed), self._keys_scan_count):
                removed += await client.unlink(*doomed[start:start + self._keys_scan_count])
            return removed

    async def _scan(self, match: str | None, count: int) -> AsyncIterator[list[str]]:
        """Yield SCAN pages until the cursor returns to 0."""
        client = self._connection.client
        cursor = 0
        while True:
            cursor, page = await client.scan(cursor=cursor, match=match, count=count)
            if page:
                yield list(page)
            if cursor == 0:
                break

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _raise_on_batch_errors(results: list[Any], key: str) -> None:
        failures = [result for result in results if isinstance(result, Exception)]
        if failures:
            raise CachePersistenceError(
                f"{len(failures)} of {len(results)} Redis commands failed",
                key=key,
                details={"errors": [str(failure) for failure in failures]},
            )
