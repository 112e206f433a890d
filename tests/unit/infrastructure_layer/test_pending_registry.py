"""
Unit Tests for PendingRequestRegistry

Tests exactly-once producer selection and shared result delivery.
"""

import asyncio

import pytest

from tiercache.infrastructure.cache.pending_registry import PendingRequestRegistry


@pytest.mark.unit
class TestPendingRequestRegistry:
    """Test suite for PendingRequestRegistry."""

    async def test_first_caller_is_producer(self):
        registry = PendingRequestRegistry[int]()

        first, first_is_producer = registry.begin_if_absent("k")
        second, second_is_producer = registry.begin_if_absent("k")

        assert first_is_producer is True
        assert second_is_producer is False
        assert first is second
        assert "k" in registry
        assert len(registry) == 1

    async def test_keys_are_independent(self):
        registry = PendingRequestRegistry[int]()

        _, a = registry.begin_if_absent("a")
        _, b = registry.begin_if_absent("b")

        assert a and b
        assert sorted(registry.keys()) == ["a", "b"]

    async def test_waiters_receive_resolved_value(self):
        registry = PendingRequestRegistry[str]()
        future, _ = registry.begin_if_absent("k")

        waiters = [asyncio.create_task(registry.wait(registry.peek("k"))) for _ in range(5)]
        await asyncio.sleep(0)
        registry.resolve("k", "value")
        registry.remove("k")

        assert await asyncio.gather(*waiters) == ["value"] * 5
        assert "k" not in registry
        assert future.result() == "value"

    async def test_only_first_resolution_counts(self):
        registry = PendingRequestRegistry[int]()
        future, _ = registry.begin_if_absent("k")

        registry.resolve("k", 1)
        registry.resolve("k", 2)

        assert future.result() == 1

    async def test_remove_resolves_pending_future_with_default(self):
        """Test that a failed producer never leaves waiters hanging."""
        registry = PendingRequestRegistry[list]()
        future, _ = registry.begin_if_absent("k")

        registry.remove("k", default=[])

        assert future.done()
        assert future.result() == []
        assert registry.peek("k") is None

    async def test_remove_unknown_key_is_noop(self):
        PendingRequestRegistry().remove("missing")

    async def test_cancelled_waiter_does_not_cancel_shared_future(self):
        registry = PendingRequestRegistry[int]()
        future, _ = registry.begin_if_absent("k")

        waiter = asyncio.create_task(registry.wait(future))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        assert not future.cancelled()
        registry.resolve("k", 7)
        assert await registry.wait(future) == 7

    async def test_burst_selects_one_producer(self):
        registry = PendingRequestRegistry[int]()
        producers = 0

        async def caller():
            nonlocal producers
            future, is_producer = registry.begin_if_absent("k")
            if not is_producer:
                return await registry.wait(future)
            producers += 1
            try:
                await asyncio.sleep(0)
                registry.resolve("k", 42)
                return 42
            finally:
                registry.remove("k")

        results = await asyncio.gather(*(caller() for _ in range(20)))

        assert producers == 1
        assert results == [42] * 20
