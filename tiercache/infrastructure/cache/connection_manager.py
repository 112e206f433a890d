"""
Redis Connection Manager

Owns the Redis connection lifecycle for the persistent tier.

State Machine:
    DISCONNECTED → CONNECTING → READY
    CONNECTING → DISCONNECTED   (attempt ceiling reached)
    READY → DISCONNECTED        (command failed with a connection error)

Reconnection:
- Backoff between attempts: min(attempt × 1s, 5s)
- After 10 failed attempts the in-flight connect resolves to failure and the
  manager stops retrying; the next caller starts a fresh attempt
- All concurrent callers share one in-flight attempt

Connection Strategies:
- ignore: never block; kick off a background connect, operations no-op
- wait: block on the in-flight connect, no-op on failure
- wait-and-throw: block, raise CacheConnectionError on failure
- wait-and-exit: block, exit the process on failure

The client itself carries a separate per-command retry budget
(REDIS_MAX_RETRIES_PER_REQUEST) and socket timeouts.
"""

import asyncio
import sys
import time
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from tiercache.core.config.constants import (
    PENDING_CONNECT_KEY,
    RECONNECT_STEP_DELAY,
    CacheEventStatus,
    CacheOperation,
    CacheSource,
    ConnectionState,
    ConnectionStrategy,
)
from tiercache.core.config.settings import RedisSettings
from tiercache.core.exceptions import CacheConnectionError
from tiercache.core.logging.logger import get_logger
from tiercache.infrastructure.cache.observer import CacheObserver
from tiercache.infrastructure.cache.pending_registry import PendingRequestRegistry

logger = get_logger(__name__)

ClientFactory = Callable[[RedisSettings], redis.Redis]
SleepFn = Callable[[float], Awaitable[None]]


def create_redis_client(settings: RedisSettings) -> redis.Redis:
    """
    Build a pooled Redis client.

    STAGE-REDIS.2.1: Create client with connection pool

    - Decode responses: True (payloads are stored base64, metadata as JSON)
    - Per-command retries on connection errors and timeouts
    """
    return redis.Redis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=settings.REDIS_SOCKET_CONNECT_TIMEOUT,
        health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        retry=Retry(ExponentialBackoff(), settings.REDIS_MAX_RETRIES_PER_REQUEST),
        retry_on_error=[ConnectionError, TimeoutError],
    )


class ConnectionManager:
    """
    Manages the Redis connection state and the configured wait policy.

    Usage:
        manager = ConnectionManager(settings.redis)
        if await manager.ensure_connected():
            await manager.client.get("key")
    """

    def __init__(
        self,
        settings: RedisSettings,
        observer: CacheObserver | None = None,
        client_factory: ClientFactory = create_redis_client,
        sleep: SleepFn = asyncio.sleep,
    ):
        """
        Initialize connection manager.

        Args:
            settings: Redis settings
            observer: Event recorder for connection transitions
            client_factory: Builds a client from settings
            sleep: Backoff sleep (replaceable in tests)
        """
        self._settings = settings
        self._observer = observer or CacheObserver()
        self._client_factory = client_factory
        self._sleep = sleep
        self._strategy = ConnectionStrategy(settings.REDIS_CONNECTION_STRATEGY)
        self._state = ConnectionState.DISCONNECTED
        self._client: redis.Redis | None = None
        self._pending: PendingRequestRegistry[bool] = PendingRequestRegistry("connect")
        self._background: asyncio.Task | None = None
        self._failed_connects = 0

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def strategy(self) -> ConnectionStrategy:
        return self._strategy

    @property
    def client(self) -> redis.Redis | None:
        return self._client

    @property
    def raises_on_failure(self) -> bool:
        """Whether this strategy surfaces connection failures to callers."""
        return self._strategy in (ConnectionStrategy.WAIT_AND_THROW, ConnectionStrategy.WAIT_AND_EXIT)

    def is_ready(self) -> bool:
        return self._state is ConnectionState.READY and self._client is not None

    # -------------------------------------------------------------------------
    # Connection establishment
    # -------------------------------------------------------------------------

    async def ensure_connected(self) -> bool:
        """
        Make sure Redis is usable, honouring the connection strategy.

        Returns:
            True when READY; False when the caller should no-op

        Raises:
            CacheConnectionError: wait-and-throw and the connect failed
            SystemExit: wait-and-exit and the connect failed
        """
        if self.is_ready():
            return True

        if self._strategy is ConnectionStrategy.IGNORE:
            self._start_background_connect()
            return False

        if await self.connect():
            return True

        if self._strategy is ConnectionStrategy.WAIT:
            return False

        if self._strategy is ConnectionStrategy.WAIT_AND_THROW:
            raise CacheConnectionError(
                f"Unable to connect to Redis after {self._settings.REDIS_RECONNECT_MAX_ATTEMPTS} attempts",
                details={"url": self._redacted_url(), "strategy": self._strategy.value},
            )

        logger.critical(
            "Redis is mandatory and unreachable, exiting",
            url=self._redacted_url(),
            strategy=self._strategy.value,
        )
        sys.exit(1)

    async def connect(self) -> bool:
        """
        Join the in-flight connect attempt, or start one.

        Returns:
            True if the connection is READY afterwards
        """
        if self.is_ready():
            return True

        future, is_producer = self._pending.begin_if_absent(PENDING_CONNECT_KEY)
        if not is_producer:
            return bool(await self._pending.wait(future))

        connected = False
        try:
            connected = await self._establish()
            self._pending.resolve(PENDING_CONNECT_KEY, connected)
        finally:
            self._pending.remove(PENDING_CONNECT_KEY, default=False)
        return connected

    def _start_background_connect(self) -> None:
        if PENDING_CONNECT_KEY in self._pending:
            return
        if self._background is not None and not self._background.done():
            return
        self._background = asyncio.create_task(self.connect())

    async def _establish(self) -> bool:
        """
        Connect with bounded backoff.

        STAGE-REDIS.2: Connection establishment
        """
        url = self._redacted_url()
        self._state = ConnectionState.CONNECTING
        self._observer.record(CacheOperation.CONNECTION, CacheEventStatus.CONNECTING, CacheSource.REDIS, url)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.REDIS_RECONNECT_MAX_ATTEMPTS),
            wait=wait_incrementing(
                start=RECONNECT_STEP_DELAY,
                increment=RECONNECT_STEP_DELAY,
                max=self._settings.REDIS_RECONNECT_MAX_DELAY,
            ),
            retry=retry_if_exception_type((RedisError, OSError)),
            before_sleep=self._log_reconnect,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self._open()
        except (RedisError, OSError) as e:
            self._state = ConnectionState.DISCONNECTED
            self._failed_connects += 1
            self._observer.record(
                CacheOperation.CONNECTION,
                CacheEventStatus.ERROR,
                CacheSource.REDIS,
                url,
                message=f"Giving up after {self._settings.REDIS_RECONNECT_MAX_ATTEMPTS} attempts: {e}",
            )
            return False

        self._state = ConnectionState.READY
        self._observer.record(CacheOperation.CONNECTION, CacheEventStatus.CONNECTED, CacheSource.REDIS, url)
        return True

    async def _open(self) -> None:
        client = self._client_factory(self._settings)
        try:
            await client.ping()
        except BaseException:
            await self._close_client(client)
            raise
        self._client = client

    def _log_reconnect(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        error = retry_state.outcome.exception() if retry_state.outcome else None
        self._observer.record(
            CacheOperation.CONNECTION,
            CacheEventStatus.RECONNECTING,
            CacheSource.REDIS,
            self._redacted_url(),
            message=f"Attempt {retry_state.attempt_number} failed ({error}), retrying in {delay}s",
        )

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    async def mark_disconnected(self, error: BaseException | None = None) -> None:
        """
        Drop a connection that failed mid-command.

        The next operation goes through `ensure_connected` again.
        """
        if self._state is not ConnectionState.READY:
            return

        client, self._client = self._client, None
        self._state = ConnectionState.DISCONNECTED
        self._observer.record(
            CacheOperation.CONNECTION,
            CacheEventStatus.DISCONNECTED,
            CacheSource.REDIS,
            self._redacted_url(),
            message=str(error) if error else None,
        )
        await self._close_client(client)

    async def disconnect(self) -> None:
        """
        Close the client and stop any background connect.

        STAGE-REDIS.3: Connection cleanup
        """
        if self._background is not None and not self._background.done():
            self._background.cancel()
            try:
                await self._background
            except asyncio.CancelledError:
                pass
        self._background = None

        client, self._client = self._client, None
        was_ready = self._state is ConnectionState.READY
        self._state = ConnectionState.DISCONNECTED
        await self._close_client(client)

        if was_ready:
            self._observer.record(
                CacheOperation.CONNECTION,
                CacheEventStatus.DISCONNECTED,
                CacheSource.REDIS,
                self._redacted_url(),
                message="Closed",
            )

    @staticmethod
    async def _close_client(client: redis.Redis | None) -> None:
        if client is None:
            return
        try:
            await client.aclose()
        except (RedisError, OSError) as e:
            logger.debug("Error while closing Redis client", error=str(e))

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def ping(self) -> bool:
        """
        Check Redis connection health.

        Returns:
            True if healthy, False otherwise
        """
        if not self.is_ready():
            return False
        try:
            await self._client.ping()
            return True
        except (ConnectionError, TimeoutError) as e:
            await self.mark_disconnected(e)
        except RedisError as e:
            logger.warning("Redis ping failed", error=str(e))
        return False

    async def health_check(self) -> dict[str, Any]:
        """
        Perform health check on the Redis connection.

        STAGE-REDIS.HEALTH: Redis health check

        Returns:
            Dict with status, state, strategy and ping latency
        """
        health = {
            "status": "healthy",
            "state": self._state.value,
            "strategy": self._strategy.value,
            "url": self._redacted_url(),
            "failed_connects": self._failed_connects,
            "ping_latency_ms": None,
        }

        if not self.is_ready():
            health["status"] = "unhealthy"
            health["error"] = "Not connected"
            return health

        start = time.perf_counter()
        if await self.ping():
            health["ping_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
        else:
            health["status"] = "unhealthy"
            health["error"] = "Ping failed"

        pool = getattr(self._client, "connection_pool", None)
        if pool is not None:
            health["pool_size"] = pool.max_connections

        return health

    def _redacted_url(self) -> str:
        url = self._settings.REDIS_URL
        scheme, sep, rest = url.partition("://")
        if sep and "@" in rest:
            return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"
        return url
