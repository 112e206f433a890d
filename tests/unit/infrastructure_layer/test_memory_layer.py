"""
Unit Tests for EphemeralLayer

Tests LRU eviction by bytes and count, slot TTL, freshness classification
and tag rewrites of the in-memory tier.
"""

import re

import pytest

from tests.test_fixtures.cache_factory import CacheTestFactory
from tiercache.core.config.constants import CacheSource, CacheStatus
from tiercache.core.config.settings import CacheSettings
from tiercache.core.models import EXPIRED, Durations
from tiercache.core.stream import Payload
from tiercache.infrastructure.cache.memory_layer import EphemeralLayer


def entry(value: bytes = b"hello", **kwargs):
    return CacheTestFactory.entry(value=Payload(value), **kwargs)


@pytest.mark.unit
class TestEphemeralReadWrite:
    """Test basic reads and writes."""

    async def test_write_then_read(self, ephemeral):
        assert await ephemeral.write("/a", entry())

        record = await ephemeral.read("/a")

        assert record.entry.payload == b"hello"
        assert record.size == 5
        assert record.status is CacheStatus.FRESH
        assert record.source is CacheSource.MEMORY

    async def test_read_missing_returns_none(self, ephemeral):
        assert await ephemeral.read("/missing") is None

    async def test_overwrite_replaces_size(self, ephemeral):
        await ephemeral.write("/a", entry(b"x" * 100))
        await ephemeral.write("/a", entry(b"x" * 10))

        assert ephemeral.size_bytes == 10
        assert len(ephemeral) == 1

    async def test_delete(self, ephemeral):
        await ephemeral.write("/a", entry())

        assert await ephemeral.delete("/a") is True
        assert await ephemeral.delete("/a") is False
        assert ephemeral.size_bytes == 0

    async def test_is_always_ready(self, ephemeral):
        assert ephemeral.is_ready() is True

    def test_from_settings(self, clock):
        layer = EphemeralLayer.from_settings(
            CacheSettings(CACHE_L1_MAX_SIZE_MB=2, CACHE_L1_MAX_ENTRIES=7, CACHE_L1_TTL=30), clock
        )

        stats = layer.get_stats()
        assert stats["max_size_bytes"] == 2 * 1024 * 1024
        assert stats["max_entries"] == 7
        assert stats["ttl"] == 30


@pytest.mark.unit
class TestEphemeralEviction:
    """Test byte and entry-count bounds."""

    async def test_evicts_least_recently_used_by_bytes(self, ephemeral):
        await ephemeral.write("/a", entry(b"a" * 400))
        await ephemeral.write("/b", entry(b"b" * 400))
        await ephemeral.read("/a")  # /b is now least recently used

        await ephemeral.write("/c", entry(b"c" * 400))

        assert await ephemeral.read("/b") is None
        assert await ephemeral.read("/a") is not None
        assert await ephemeral.read("/c") is not None
        assert ephemeral.size_bytes == 800
        assert ephemeral.get_stats()["evictions"] == 1

    async def test_evicts_by_entry_count(self, clock):
        layer = EphemeralLayer(max_size_bytes=1024, max_entries=2, clock=clock)

        for key in ("/a", "/b", "/c"):
            await layer.write(key, entry())

        assert layer.keys() == ["/b", "/c"]

    async def test_oversized_entry_is_not_stored(self, ephemeral):
        await ephemeral.write("/a", entry(b"small"))

        stored = await ephemeral.write("/a", entry(b"x" * 2048))

        assert stored is False
        assert await ephemeral.read("/a") is None
        assert ephemeral.size_bytes == 0

    async def test_explicit_size_is_used(self, ephemeral):
        await ephemeral.write("/a", entry(b"tiny"), size=1000)
        assert ephemeral.size_bytes == 1000


@pytest.mark.unit
class TestEphemeralFreshness:
    """Test classification and slot TTL."""

    async def test_needs_revalidation_after_revalidate(self, ephemeral, clock):
        await ephemeral.write("/a", entry())
        clock.advance(6)

        record = await ephemeral.read("/a")

        assert record.status is CacheStatus.NEEDS_REVALIDATION

    async def test_expired_marker_when_metadata_expired(self, clock):
        # Fixed slot TTL longer than the entry's own expire
        layer = EphemeralLayer(max_size_bytes=1024, ttl=60, clock=clock)
        await layer.write("/a", entry())
        clock.advance(11)

        assert await layer.read("/a") is EXPIRED

    async def test_auto_ttl_purges_lazily_as_miss(self, ephemeral, clock):
        await ephemeral.write("/a", entry())
        clock.advance(10)

        assert await ephemeral.read("/a") is None
        assert len(ephemeral) == 0

    async def test_fixed_ttl_shorter_than_expire(self, clock):
        layer = EphemeralLayer(max_size_bytes=1024, ttl=2, clock=clock)
        await layer.write("/a", entry())
        clock.advance(3)

        assert await layer.read("/a") is None

    async def test_zero_expire_means_no_slot_ttl(self, ephemeral, clock):
        await ephemeral.write("/a", entry(revalidate=0, expire=0))

        assert (await ephemeral.read("/a")).status is CacheStatus.FRESH
        clock.advance(1)
        assert await ephemeral.read("/a") is EXPIRED

    async def test_peek_does_not_classify(self, ephemeral, clock):
        await ephemeral.write("/a", entry())
        clock.advance(7)

        record = await ephemeral.peek("/a")

        assert record.status is CacheStatus.FRESH
        assert record.entry.payload == b"hello"


@pytest.mark.unit
class TestEphemeralTags:
    """Test tag-driven metadata rewrite."""

    async def test_update_tags_rewrites_matching_entries(self, ephemeral, clock):
        await ephemeral.write("/a", entry(tags=("blog",)))
        await ephemeral.write("/b", entry(tags=("news",)))
        clock.advance(2)

        updated = await ephemeral.update_tags(["blog"], Durations(expire=3))

        assert updated == 1
        a = (await ephemeral.peek("/a")).entry
        b = (await ephemeral.peek("/b")).entry
        assert a.timestamp == clock()
        assert a.revalidate == 3
        assert a.expire == 10
        assert a.stale == 0
        assert a.payload == b"hello"
        assert b.timestamp != clock()

    async def test_update_without_expire_needs_revalidation_immediately(self, ephemeral, clock):
        await ephemeral.write("/a", entry(tags=("blog",)))

        await ephemeral.update_tags("blog")
        clock.advance(0.001)

        assert (await ephemeral.read("/a")).status is CacheStatus.NEEDS_REVALIDATION

    async def test_update_keeps_recency_order(self, ephemeral):
        await ephemeral.write("/a", entry(tags=("t",)))
        await ephemeral.write("/b", entry(tags=("u",)))

        await ephemeral.update_tags(["t"])

        assert ephemeral.keys() == ["/a", "/b"]

    async def test_update_recomputes_slot_ttl(self, ephemeral, clock):
        await ephemeral.write("/a", entry(tags=("t",)))
        clock.advance(8)

        await ephemeral.update_tags(["t"], {"expire": 30})
        clock.advance(5)

        assert await ephemeral.read("/a") is not None

    async def test_no_tags_is_noop(self, ephemeral):
        await ephemeral.write("/a", entry())
        assert await ephemeral.update_tags([]) == 0


@pytest.mark.unit
class TestEphemeralAdministration:
    """Test pattern deletion, snapshot restore and stats."""

    async def _fill(self, layer):
        for key in ("/blog/1", "/blog/2", "/news/1"):
            await layer.write(key, entry())

    async def test_delete_matching_glob(self, ephemeral):
        await self._fill(ephemeral)

        assert await ephemeral.delete_matching("/blog/*") == 2
        assert ephemeral.keys() == ["/news/1"]

    async def test_delete_matching_regex(self, ephemeral):
        await self._fill(ephemeral)

        assert await ephemeral.delete_matching(re.compile(r"/1$")) == 2
        assert ephemeral.keys() == ["/blog/2"]

    async def test_delete_matching_star_clears(self, ephemeral):
        await self._fill(ephemeral)

        assert await ephemeral.delete_matching("*") == 3
        assert len(ephemeral) == 0
        assert ephemeral.size_bytes == 0

    async def test_delete_matching_with_key_names(self, ephemeral):
        await self._fill(ephemeral)

        removed = await ephemeral.delete_matching(
            "app:meta:/news/*", key_names=lambda key: (f"app:entry:{key}", f"app:meta:{key}")
        )

        assert removed == 1

    async def test_restore_snapshot(self, ephemeral):
        await ephemeral.write("/a", entry(b"old"))
        snapshot = await ephemeral.peek("/a")
        await ephemeral.write("/a", entry(b"new"))

        await ephemeral.restore("/a", snapshot)

        assert (await ephemeral.peek("/a")).entry.payload == b"old"

    async def test_restore_none_evicts(self, ephemeral):
        await ephemeral.write("/a", entry())

        await ephemeral.restore("/a", None)

        assert await ephemeral.peek("/a") is None

    async def test_stats(self, ephemeral):
        await ephemeral.write("/a", entry(b"x" * 256))

        stats = ephemeral.get_stats()

        assert stats["entries"] == 1
        assert stats["size_bytes"] == 256
        assert stats["utilization_pct"] == 25.0
