"""
Cache Tools

Helpers for code that sits on top of the orchestrator:

- `cached`: cache-aside decorator for coroutines returning JSON-serialisable
  data
- `get_keys` / `get_key_details` / `get_cache_data`: the data behind a
  cache inspection endpoint

Usage:
    cache = get_cache_orchestrator()

    @cached(cache, "/api/products", tags=["products"])
    async def load_products() -> list[dict]:
        ...

    data = await get_cache_data(cache, segments)   # [] → keys, [key] → detail
"""

import functools
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, ParamSpec, TypeVar

import orjson

from tiercache.core.config.constants import DEFAULT_EXPIRE, DEFAULT_REVALIDATE, DEFAULT_STALE
from tiercache.core.exceptions import CacheError
from tiercache.core.logging.logger import get_logger
from tiercache.infrastructure.cache.cache_manager import CacheOrchestrator

logger = get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

KeyFn = Callable[..., str]


def cached(
    orchestrator: CacheOrchestrator,
    key: str | KeyFn,
    *,
    tags: Iterable[str] = (),
    stale: float = DEFAULT_STALE,
    revalidate: float = DEFAULT_REVALIDATE,
    expire: float = DEFAULT_EXPIRE,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Cache the JSON-serialised result of a coroutine function.

    Args:
        orchestrator: Cache engine
        key: Fixed key, or a callable building the key from the call arguments
        tags: Tags attached to stored results
        stale / revalidate / expire: Freshness window in seconds

    A cached value that is not valid JSON is logged and recomputed.
    """
    tags = tuple(tags)

    def decorator(fn: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            cache_key = key(*args, **kwargs) if callable(key) else key

            async def compute() -> bytes:
                return orjson.dumps(await fn(*args, **kwargs))

            options = {"tags": tags, "stale": stale, "revalidate": revalidate, "expire": expire}
            payload = await orchestrator.get_or_compute(cache_key, compute, **options)
            try:
                return orjson.loads(bytes(payload))
            except orjson.JSONDecodeError as e:
                logger.warning("Cached value is not valid JSON, recomputing", key=cache_key, error=str(e))

            await orchestrator.delete(cache_key)
            payload = await orchestrator.get_or_compute(cache_key, compute, **options)
            return orjson.loads(bytes(payload))

        return wrapper

    return decorator


async def get_keys(orchestrator: CacheOrchestrator) -> list[str]:
    """Logical keys stored in Redis."""
    return await orchestrator.list_keys()


async def get_key_details(orchestrator: CacheOrchestrator, key: str) -> dict[str, Any]:
    """
    Entry detail for display.

    Errors are reported in the result (`error` field) instead of raised.
    """
    try:
        return await orchestrator.get_detail(key)
    except CacheError as e:
        return {
            "key": key,
            "metadata": None,
            "value": None,
            "size": 0,
            "status": None,
            "error": e.message,
        }


async def get_cache_data(
    orchestrator: CacheOrchestrator, segments: Sequence[str] | None = None
) -> list[str] | dict[str, Any] | None:
    """
    Route an inspection request by path segments.

    Returns:
        Key list for no segments, entry detail for one segment,
        None for anything deeper
    """
    if segments and len(segments) > 1:
        return None
    if not segments:
        return await get_keys(orchestrator)
    return await get_key_details(orchestrator, segments[0])
