"""
Test Fixtures Package

Shared test utilities and helpers for consistent testing across all modules.
"""

from .cache_factory import START_MS, CacheTestFactory, FakeClock, FakePipeline, FakeRedis

__all__ = ["CacheTestFactory", "FakeClock", "FakePipeline", "FakeRedis", "START_MS"]
