"""Cache-first resolution with stale-on-error fallback."""

import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

import structlog

from ..storage.redis import RedisClient
from ..utils.errors import CacheUnavailableError, ExhaustedRetriesError
from .metrics import MetricsCollector, namespace_of


logger = structlog.get_logger()

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[T]):
    """A cached value and the epoch-millisecond time it was stored."""
    value: T
    stored_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "stored_at": self.stored_at}

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CacheEntry[T]"]:
        """Parse a stored entry; anything malformed reads as absent."""
        if not isinstance(data, dict) or "value" not in data:
            return None
        stored_at = data.get("stored_at")
        if not isinstance(stored_at, (int, float)) or isinstance(stored_at, bool):
            return None
        return cls(value=data["value"], stored_at=int(stored_at))


@dataclass
class CacheResolution(Generic[T]):
    """What a caller gets back from ``CacheResolver``."""
    value: T
    fresh: bool
    stored_at: int
    age_seconds: int

    @property
    def cached_at(self) -> str:
        """ISO-8601 rendering of ``stored_at`` (UTC, millisecond precision)."""
        moment = datetime.fromtimestamp(self.stored_at / 1000, tz=timezone.utc)
        return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "fresh": self.fresh,
            "cachedAt": self.cached_at,
            "cacheAge": self.age_seconds,
        }


class CacheStore:
    """
    Soft-failing facade over the Redis client.

    Read errors return absent and write errors are logged no-ops, so a cache
    outage degrades to always-miss. ``scan`` is the exception: its failure
    propagates because a keyspace sweep cannot proceed without it.
    """

    def __init__(self, redis_client: RedisClient, default_ttl: int = 86400):
        self.redis = redis_client
        self.default_ttl = default_ttl
        self.logger = structlog.get_logger("cache-store")
        self.cache_stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "errors": 0
        }

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        try:
            value = await self.redis.get(key)
        except CacheUnavailableError as e:
            self.logger.error("Cache get error", key=key, error=str(e))
            self.cache_stats["errors"] += 1
            self.cache_stats["misses"] += 1
            return None

        if value is None:
            self.cache_stats["misses"] += 1
            return None

        self.cache_stats["hits"] += 1
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache."""
        try:
            await self.redis.set(key, value, ttl or self.default_ttl)
            self.cache_stats["sets"] += 1
            return True
        except CacheUnavailableError as e:
            self.logger.error("Cache set error", key=key, error=str(e))
            self.cache_stats["errors"] += 1
            return False

    async def set_many(self, entries: Iterable[Tuple[str, Any, Optional[int]]]) -> bool:
        """Write many entries as one pipelined batch."""
        batch = [(key, value, ttl or self.default_ttl) for key, value, ttl in entries]
        if not batch:
            return True
        try:
            await self.redis.set_many(batch)
            self.cache_stats["sets"] += len(batch)
            return True
        except CacheUnavailableError as e:
            self.logger.error("Cache pipeline error", count=len(batch), error=str(e))
            self.cache_stats["errors"] += 1
            return False

    async def scan(self, cursor: int, match: str, count: int = 100) -> Tuple[int, List[str]]:
        """One pagination step over the keyspace. Errors propagate."""
        return await self.redis.scan(cursor, match, count)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self.cache_stats["hits"] + self.cache_stats["misses"]
        hit_rate = (self.cache_stats["hits"] / total_requests * 100) if total_requests > 0 else 0

        return {
            "hits": self.cache_stats["hits"],
            "misses": self.cache_stats["misses"],
            "sets": self.cache_stats["sets"],
            "errors": self.cache_stats["errors"],
            "hit_rate": hit_rate,
        }


class CacheResolver:
    """
    Cache-first get/refresh with a staleness policy.

    ``resolve`` serves a cached entry younger than the freshness window
    without touching the upstream. Otherwise it fetches; if the fetch fails
    and any cached entry exists (however old), that entry is served with
    ``fresh=False``. Only when nothing is cached does the failure surface, as
    ``ExhaustedRetriesError``.
    """

    def __init__(
        self,
        store: CacheStore,
        clock: Clock = time.time,
        default_ttl: int = 86400,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.clock = clock
        self.default_ttl = default_ttl
        self.metrics = metrics
        self.logger = structlog.get_logger("cache-resolver")

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def make_entry(self, value: Any, stored_at: Optional[int] = None) -> Dict[str, Any]:
        """Stored shape of ``value``; batch writers use this to stay format-compatible."""
        return CacheEntry(value=value, stored_at=stored_at if stored_at is not None else self.now_ms()).to_dict()

    async def read(self, key: str) -> Optional[CacheEntry]:
        """Read and parse the entry stored under ``key``."""
        return CacheEntry.from_dict(await self.store.get(key))

    async def resolve(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        freshness_window: Optional[float],
        save: bool = True,
        ttl: Optional[int] = None,
    ) -> CacheResolution[T]:
        """
        Resolve ``key`` cache-first.

        Args:
            key: Full cache key.
            fetch: Async callable producing a fresh value.
            freshness_window: Max age in seconds served without refetching;
                None treats every cached entry as fresh.
            save: Persist a freshly fetched value (batch callers pass False
                and write through a pipeline instead).
            ttl: Store TTL in seconds, defaults to the resolver's.
        """
        cached = await self.read(key)
        now = self.now_ms()

        if cached is not None:
            age_ms = now - cached.stored_at
            if freshness_window is None or age_ms < freshness_window * 1000:
                self._record(key, "hit")
                return CacheResolution(
                    value=cached.value,
                    fresh=True,
                    stored_at=cached.stored_at,
                    age_seconds=max(age_ms // 1000, 0),
                )
            self._record(key, "stale")
        else:
            self._record(key, "miss")

        try:
            value = await fetch()
        except Exception as e:
            if cached is not None:
                self.logger.warning("Fetch failed, serving stale value", key=key, error=str(e))
                if self.metrics:
                    self.metrics.record_stale_served(namespace_of(key))
                return CacheResolution(
                    value=cached.value,
                    fresh=False,
                    stored_at=cached.stored_at,
                    age_seconds=max((self.now_ms() - cached.stored_at) // 1000, 0),
                )
            self.logger.error("Fetch failed with nothing cached", key=key, error=str(e))
            raise ExhaustedRetriesError(f"Failed to fetch {key}: {e}", key=key) from e

        return await self._store_fresh(key, value, save, ttl)

    async def refresh(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T]],
        save: bool = True,
        ttl: Optional[int] = None,
    ) -> CacheResolution[T]:
        """Always fetch; failures propagate unchanged."""
        value = await fetch()
        return await self._store_fresh(key, value, save, ttl)

    async def _store_fresh(self, key: str, value: T, save: bool, ttl: Optional[int]) -> CacheResolution[T]:
        stored_at = self.now_ms()
        if save:
            await self.store.set(key, self.make_entry(value, stored_at), ttl or self.default_ttl)
        return CacheResolution(value=value, fresh=True, stored_at=stored_at, age_seconds=0)

    def _record(self, key: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_cache_lookup(namespace_of(key), result)


def ttl_until(expires_at_ms: int, now_ms: int) -> int:
    """Whole seconds from ``now_ms`` until ``expires_at_ms`` (may be <= 0)."""
    return math.floor((expires_at_ms - now_ms) / 1000)
