"""
Pytest Configuration and Shared Test Fixtures

This module provides pytest configuration and reusable fixtures for all tests.
All fixtures defined here are automatically available to all test files.
"""

import os
import sys

import pytest

# Add project root to sys.path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from tests.test_fixtures.cache_factory import CacheTestFactory, FakeClock, FakeRedis  # noqa: E402
from tiercache.core.config.settings import Settings  # noqa: E402
from tiercache.infrastructure.cache.cache_manager import CacheOrchestrator  # noqa: E402
from tiercache.infrastructure.cache.connection_manager import ConnectionManager  # noqa: E402
from tiercache.infrastructure.cache.memory_layer import EphemeralLayer  # noqa: E402
from tiercache.infrastructure.cache.observer import CacheObserver  # noqa: E402
from tiercache.infrastructure.cache.redis_layer import PersistentLayer  # noqa: E402


# ============================================================================
# Pytest Configuration
# ============================================================================

# pytest-asyncio is automatically loaded via pyproject.toml configuration
# (asyncio_mode = "auto")


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def settings_factory():
    """
    Build Settings with overrides.

    Defaults use the blocking "wait" strategy so a test orchestrator is
    connected once `initialize()` returns.
    """

    def _build(**overrides) -> Settings:
        values = {
            "REDIS_URL": "redis://cache.test:6379",
            "REDIS_CONNECTION_STRATEGY": "wait",
            "LOG_FORMAT": "console",
        }
        values.update(overrides)
        return Settings(**values)

    return _build


@pytest.fixture
def settings(settings_factory):
    return settings_factory()


# ============================================================================
# Test Doubles
# ============================================================================


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def sleeps():
    """Backoff delays requested by connection managers built in a test."""
    return []


@pytest.fixture
def no_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


@pytest.fixture
def log_events():
    """Events delivered to the observer sink."""
    return []


@pytest.fixture
def observer(log_events):
    return CacheObserver(sink=log_events.append)


@pytest.fixture
def cache_factory():
    return CacheTestFactory


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def connection_factory(settings_factory, fake_redis, observer, no_sleep):
    """Build a ConnectionManager over the fake Redis for a given strategy."""

    def _build(strategy: str = "wait", redis=None, **overrides) -> ConnectionManager:
        client = redis or fake_redis
        return ConnectionManager(
            settings_factory(REDIS_CONNECTION_STRATEGY=strategy, **overrides).redis,
            observer=observer,
            client_factory=lambda _settings: client,
            sleep=no_sleep,
        )

    return _build


@pytest.fixture
async def connection(connection_factory):
    """Connected manager (wait strategy)."""
    manager = connection_factory()
    assert await manager.connect()
    yield manager
    await manager.disconnect()


@pytest.fixture
def persistent(settings, connection, observer, clock):
    return PersistentLayer.from_settings(settings.cache, connection, observer=observer, clock=clock)


@pytest.fixture
def ephemeral(clock):
    return EphemeralLayer(max_size_bytes=1024, clock=clock)


@pytest.fixture
def orchestrator_factory(settings_factory, fake_redis, observer, clock, no_sleep):
    """Build (not yet initialized) orchestrators wired to the fake Redis and clock."""

    def _build(redis=None, **overrides) -> CacheOrchestrator:
        client = redis or fake_redis
        settings = settings_factory(**overrides)
        connection = ConnectionManager(
            settings.redis,
            observer=observer,
            client_factory=lambda _settings: client,
            sleep=no_sleep,
        )
        return CacheOrchestrator(settings, connection=connection, observer=observer, clock=clock)

    return _build


@pytest.fixture
async def orchestrator(orchestrator_factory):
    """Initialized orchestrator with Redis connected."""
    cache = orchestrator_factory()
    await cache.initialize()
    yield cache
    await cache.shutdown()
