"""
Pending Request Registry

Per-key tracker of in-flight operations. The first caller for a key becomes
the producer; everyone arriving while the operation runs awaits the same
future and receives the same value.

Used for:
- coalescing Redis reads of the same key
- coalescing writers of the same key (readers await the write's result)
- sharing one in-flight Redis connection attempt
- sharing one in-flight key listing scan

Thread-Safety: the check-and-insert in `begin_if_absent` contains no await,
so it is atomic on the event loop and exactly one producer is selected per
key even under a burst of simultaneous first callers.

Usage:
    future, is_producer = registry.begin_if_absent(key)
    if not is_producer:
        return await registry.wait(future)
    try:
        value = await produce()
        registry.resolve(key, value)
        return value
    finally:
        registry.remove(key)
"""

import asyncio
from typing import Generic, TypeVar

V = TypeVar("V")


class PendingRequestRegistry(Generic[V]):
    """Map of key -> single-resolution future."""

    def __init__(self, name: str = "pending"):
        self._name = name
        self._pending: dict[str, asyncio.Future[V]] = {}

    def begin_if_absent(self, key: str) -> tuple[asyncio.Future[V], bool]:
        """
        Return the in-flight future for `key`, creating it if there is none.

        Returns:
            (future, is_producer): is_producer is True only for the caller
            that created the future; that caller must resolve and remove it.
        """
        existing = self._pending.get(key)
        if existing is not None:
            return existing, False

        future: asyncio.Future[V] = asyncio.get_running_loop().create_future()
        self._pending[key] = future
        return future, True

    def peek(self, key: str) -> asyncio.Future[V] | None:
        """In-flight future for `key`, if any."""
        return self._pending.get(key)

    def resolve(self, key: str, value: V) -> None:
        """Deliver `value` to every waiter. Only the first resolution counts."""
        future = self._pending.get(key)
        if future is not None and not future.done():
            future.set_result(value)

    def remove(self, key: str, default: V | None = None) -> None:
        """
        Drop the entry for `key`.

        A future still unresolved at this point (producer failed or was
        cancelled) is resolved with `default` first so no waiter hangs.
        """
        future = self._pending.pop(key, None)
        if future is not None and not future.done():
            future.set_result(default)

    @staticmethod
    async def wait(future: asyncio.Future[V]) -> V:
        """
        Await a shared future.

        Shielded: cancelling one waiter must not cancel the producer's future.
        """
        return await asyncio.shield(future)

    def keys(self) -> list[str]:
        return list(self._pending)

    def __contains__(self, key: object) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def __repr__(self) -> str:
        return f"PendingRequestRegistry(name={self._name!r}, pending={len(self._pending)})"
