"""
Cache Layer Protocol

This module defines the capability shared by the in-memory and the Redis
tier, so the orchestrator depends on the interface rather than on concrete
classes and either tier can be swapped for a test double.

Architectural Decision: Protocol-based abstraction
- Structural subtyping, no inheritance required
- Runtime checking with @runtime_checkable
- Easy mocking in tests
"""

from collections.abc import Iterable, Mapping
from typing import Any, Protocol, runtime_checkable

from tiercache.core.models import CacheRecord, Durations, Entry, _Expired


@runtime_checkable
class CacheLayer(Protocol):
    """
    Protocol implemented by every cache tier.

    Implementations:
    - EphemeralLayer: bounded in-memory tier
    - PersistentLayer: Redis-backed tier
    """

    async def read(self, key: str) -> CacheRecord | _Expired | None:
        """
        Read and classify an entry.

        Returns:
            CacheRecord for fresh or needs-revalidation entries,
            EXPIRED when the entry exists but has expired,
            None when absent
        """
        ...

    async def write(self, key: str, entry: Entry, size: int | None = None) -> Any:
        """
        Store a materialised entry.

        Args:
            key: Logical cache key
            entry: Entry whose value is a Payload
            size: Payload size in bytes (derived from the payload if omitted)
        """
        ...

    async def delete(self, key: str) -> Any:
        """Remove an entry."""
        ...

    async def update_tags(
        self, tags: Iterable[str], durations: Durations | Mapping[str, Any] | None = None
    ) -> int:
        """
        Force revalidation of every entry carrying one of `tags`.

        Returns:
            Number of entries rewritten
        """
        ...

    def is_ready(self) -> bool:
        """Whether the tier can serve requests right now."""
        ...
