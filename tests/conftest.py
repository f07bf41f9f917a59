"""Pytest configuration and fixtures."""

import pytest
from prometheus_client import CollectorRegistry

from cachecore.framework.cache import CacheResolver, CacheStore
from cachecore.framework.metrics import MetricsCollector
from tests.fixtures.mock_services import FakeClock, MockLedgerClient, MockRedisClient, RecordingSleep


@pytest.fixture
def mock_redis_client():
    """In-memory Redis client fixture."""
    return MockRedisClient()


@pytest.fixture
def clock():
    """Settable clock fixture."""
    return FakeClock()


@pytest.fixture
def recording_sleep():
    """Sleep that returns immediately and records delays."""
    return RecordingSleep()


@pytest.fixture
def metrics():
    """Metrics collector on an isolated registry."""
    return MetricsCollector("test-cache", registry=CollectorRegistry())


@pytest.fixture
def cache_store(mock_redis_client):
    """Cache store over the in-memory client."""
    return CacheStore(mock_redis_client)


@pytest.fixture
def resolver(cache_store, clock, metrics):
    """Cache resolver with a fake clock."""
    return CacheResolver(cache_store, clock=clock, metrics=metrics)


@pytest.fixture
def mock_ledger():
    """Scriptable ledger client."""
    return MockLedgerClient()
