"""Day-sharded, concurrency-bounded batch refresh of a cache namespace."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog

from .cache import CacheResolver
from .metrics import MetricsCollector
from .retry import RetryPolicy, SleepFn
from .sharding import ShardPlan


logger = structlog.get_logger(__name__)

Fetcher = Callable[[str], Awaitable[Any]]


@dataclass
class RefreshReport:
    """Outcome of one ``refresh_all`` run."""
    refreshed: Dict[str, Any] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)
    shard: Optional[int] = None
    num_chunks: Optional[int] = None

    @property
    def succeeded(self) -> int:
        return len(self.refreshed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "refreshed": self.refreshed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "shard": self.shard,
            "numChunks": self.num_chunks,
        }


class ShardedRefresher:
    """
    Refreshes one day-shard of a namespace per run.

    Keys are discovered by cursor-paginated SCAN. For each page, the keys
    owned by today's shard are fetched with at most ``concurrency`` fetches
    in flight, each under an exponential-backoff retry policy. Once every
    fetch of the page has settled, all successes are written in a single
    pipelined batch. Over ``num_chunks`` consecutive days every key is
    refreshed exactly once.
    """

    def __init__(
        self,
        resolver: CacheResolver,
        page_size: int = 100,
        metrics: Optional[MetricsCollector] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.resolver = resolver
        self.store = resolver.store
        self.page_size = page_size
        self.metrics = metrics
        self.sleep = sleep
        self.logger = structlog.get_logger("sharded-refresher")

    async def refresh_all(
        self,
        namespace_prefix: str,
        fetch: Fetcher,
        num_chunks: int = 1,
        concurrency: int = 10,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: Optional[float] = None,
        ttl: Optional[int] = None,
    ) -> RefreshReport:
        """
        Refresh today's shard of ``namespace_prefix``.

        Args:
            namespace_prefix: Key prefix, e.g. ``"tokenInfo:"``.
            fetch: Async callable taking the key id (prefix stripped).
            num_chunks: Number of day-shards the namespace is split into.
            concurrency: Max fetches in flight.
            max_retries: Retries per key after the first attempt.
            base_delay: Backoff base in seconds.
            max_delay: Backoff cap, defaults to ``3 * base_delay``.
            ttl: Store TTL for refreshed entries.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        plan = ShardPlan.today(num_chunks, self.resolver.clock)
        policy = RetryPolicy.exponential(
            max_attempts=max_retries + 1,
            base_delay=base_delay,
            max_delay=max_delay if max_delay is not None else base_delay * 3,
            sleep=self.sleep,
        )
        limiter = asyncio.Semaphore(concurrency)
        report = RefreshReport(shard=plan.today_index, num_chunks=num_chunks)
        started = time.monotonic()
        seen = set()

        self.logger.info(
            "Refresh started",
            namespace=namespace_prefix,
            shard=plan.today_index,
            num_chunks=num_chunks,
        )

        cursor = 0
        while True:
            # scan failures abort the sweep
            cursor, keys = await self.store.scan(cursor, f"{namespace_prefix}*", self.page_size)

            # SCAN may return a key more than once
            key_ids = []
            for key in keys:
                key_id = key[len(namespace_prefix):]
                if key.startswith(namespace_prefix) and key_id not in seen:
                    seen.add(key_id)
                    key_ids.append(key_id)
            owned = plan.select(key_ids)
            if owned:
                await self._refresh_page(namespace_prefix, owned, fetch, policy, limiter, ttl, report)

            if cursor == 0:
                break

        duration = time.monotonic() - started
        if self.metrics:
            self.metrics.record_refresh(namespace_prefix.rstrip(":"), report.succeeded, len(report.failed), duration)

        self.logger.info(
            "Refresh completed",
            namespace=namespace_prefix,
            succeeded=report.succeeded,
            failed=len(report.failed),
            duration=round(duration, 3),
        )
        if report.failed:
            self.logger.error(
                "Keys failed after all retries",
                namespace=namespace_prefix,
                attempts=policy.max_attempts,
                failed=report.failed,
            )
        return report

    async def _refresh_page(
        self,
        namespace_prefix: str,
        key_ids: List[str],
        fetch: Fetcher,
        policy: RetryPolicy,
        limiter: asyncio.Semaphore,
        ttl: Optional[int],
        report: RefreshReport,
    ) -> None:
        async def refresh_one(key_id: str) -> Tuple[str, Any]:
            async with limiter:
                resolution = await self.resolver.refresh(
                    f"{namespace_prefix}{key_id}",
                    lambda: policy.execute(lambda attempt: fetch(key_id)),
                    save=False,
                )
                return key_id, resolution

        results = await asyncio.gather(*(refresh_one(key_id) for key_id in key_ids), return_exceptions=True)

        batch = []
        for key_id, result in zip(key_ids, results):
            if isinstance(result, BaseException):
                self.logger.warning("Key refresh failed", key=f"{namespace_prefix}{key_id}", error=str(result))
                report.failed.append(key_id)
                continue
            _, resolution = result
            report.refreshed[key_id] = resolution.value
            batch.append((
                f"{namespace_prefix}{key_id}",
                self.resolver.make_entry(resolution.value, resolution.stored_at),
                ttl,
            ))

        if batch and not await self.store.set_many(batch):
            self.logger.error("Page write failed", namespace=namespace_prefix, count=len(batch))
