"""
Cache Observer

Responsibility: All side effects of recording an operation outcome
(structured logging, hit/miss counters, host-supplied log sink).

Why Separate Observer?
- Every tier reports the same event shape
- Cache logic stays testable without logging
- A host can redirect events with a sink without touching the tiers
"""

from collections import Counter
from collections.abc import Callable
from typing import Any, NotRequired, TypedDict

from tiercache.core.config.constants import CacheEventStatus, CacheOperation, CacheSource
from tiercache.core.logging.logger import get_logger, log_operation

logger = get_logger(__name__)


class LogData(TypedDict):
    """A cache event as delivered to a custom sink."""

    operation: str
    status: str
    source: str
    key: str
    message: NotRequired[str]


LogSink = Callable[[LogData], None]

_LEVELS = {
    CacheEventStatus.ERROR: "error",
    CacheEventStatus.DISCONNECTED: "warning",
    CacheEventStatus.RECONNECTING: "warning",
    CacheEventStatus.DROPPED: "warning",
}


class CacheObserver:
    """
    Records cache events and tracks performance counters.

    Metrics Tracked:
    - Memory hits, Redis hits, in-flight write hits, misses
    - Expired entries, errors
    - Hit rates
    """

    def __init__(self, sink: LogSink | None = None, logger_instance=None):
        """
        Initialize cache observer.

        Args:
            sink: Optional host callable receiving every event
            logger_instance: Logger instance (defaults to module logger)
        """
        self._sink = sink
        self._logger = logger_instance or logger
        self._counters: Counter[str] = Counter()

    def record(
        self,
        operation: CacheOperation,
        status: CacheEventStatus,
        source: CacheSource,
        key: str,
        message: str | None = None,
    ) -> None:
        """
        Record one operation outcome.

        Args:
            operation: GET, SET, UPDATE_TAGS, DELETE, LIST_KEYS, CONNECTION
            status: Outcome label
            source: Tier the outcome relates to
            key: Logical key (joined tags for UPDATE_TAGS)
            message: Optional detail
        """
        self._count(operation, status, source)

        log_operation(
            self._logger,
            operation.value,
            status.value,
            source.value,
            key,
            message=message,
            level=_LEVELS.get(status, "info"),
        )

        if self._sink is not None:
            data: LogData = {
                "operation": operation.value,
                "status": status.value,
                "source": source.value,
                "key": key,
            }
            if message is not None:
                data["message"] = message
            try:
                self._sink(data)
            except Exception as e:
                self._logger.warning("Cache log sink failed", error=str(e))

    def _count(self, operation: CacheOperation, status: CacheEventStatus, source: CacheSource) -> None:
        if operation is CacheOperation.GET:
            if status in (CacheEventStatus.HIT, CacheEventStatus.REVALIDATED, CacheEventStatus.UPDATING):
                if source is CacheSource.MEMORY:
                    self._counters["memory_hits"] += 1
                elif source is CacheSource.REDIS:
                    self._counters["redis_hits"] += 1
                elif source is CacheSource.NEW:
                    self._counters["pending_write_hits"] += 1
            elif status in (CacheEventStatus.MISS, CacheEventStatus.EXPIRED):
                self._counters["misses"] += 1
            if status is CacheEventStatus.EXPIRED:
                self._counters["expired"] += 1
        elif operation is CacheOperation.SET and status is CacheEventStatus.REVALIDATED:
            self._counters["writes"] += 1
        if status is CacheEventStatus.ERROR:
            self._counters["errors"] += 1

    def get_stats(self) -> dict[str, Any]:
        """
        Get cache performance statistics.

        Returns:
            Dict with hit/miss counters and hit rates
        """
        memory_hits = self._counters["memory_hits"]
        redis_hits = self._counters["redis_hits"]
        pending_hits = self._counters["pending_write_hits"]
        misses = self._counters["misses"]
        hits = memory_hits + redis_hits + pending_hits
        total = hits + misses

        return {
            "memory_hits": memory_hits,
            "redis_hits": redis_hits,
            "pending_write_hits": pending_hits,
            "misses": misses,
            "expired": self._counters["expired"],
            "writes": self._counters["writes"],
            "errors": self._counters["errors"],
            "total_requests": total,
            "hit_rate": round(hits / total, 3) if total > 0 else 0.0,
            "memory_hit_rate": round(memory_hits / total, 3) if total > 0 else 0.0,
        }
