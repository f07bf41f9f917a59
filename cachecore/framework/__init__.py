"""
Core framework components for the cache service.

Provides the caching primitives (retry, provider chain, cache resolver,
sharded refresher) and the async service base they run under.
"""

from .service import AsyncService
from .config import ServiceConfig
from .health import HealthChecker, HealthCheck
from .metrics import MetricsCollector
from .retry import RetryPolicy, execute_with_retry, exponential_backoff, fixed_delay
from .provider_chain import ProviderChain, ProviderResult
from .cache import CacheEntry, CacheResolution, CacheResolver, CacheStore, ttl_until
from .sharding import ShardPlan, shard_of, stable_day_counter, stable_hash
from .refresher import RefreshReport, ShardedRefresher

__all__ = [
    "AsyncService",
    "ServiceConfig",
    "HealthChecker",
    "HealthCheck",
    "MetricsCollector",
    "RetryPolicy",
    "execute_with_retry",
    "exponential_backoff",
    "fixed_delay",
    "ProviderChain",
    "ProviderResult",
    "CacheEntry",
    "CacheResolution",
    "CacheResolver",
    "CacheStore",
    "ttl_until",
    "ShardPlan",
    "shard_of",
    "stable_day_counter",
    "stable_hash",
    "RefreshReport",
    "ShardedRefresher",
]
