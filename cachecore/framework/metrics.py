"""Prometheus metrics collection for the cache service."""

from typing import Optional

from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)


class MetricsCollector:
    """Centralized metrics collection for cache lookups, providers and refresh runs."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.prefix = service_name.replace("-", "_")
        self.registry = registry or CollectorRegistry()

        self._init_common_metrics()

    def _init_common_metrics(self):
        """Initialize metrics shared by all components."""
        self.info = Info(
            f"{self.prefix}_info",
            f"Information about {self.service_name}",
            registry=self.registry
        )

        # Request metrics
        self.request_count = Counter(
            f"{self.prefix}_requests_total",
            f"Total number of requests processed by {self.service_name}",
            ["method", "endpoint", "status"],
            registry=self.registry
        )

        self.request_duration = Histogram(
            f"{self.prefix}_request_duration_seconds",
            f"Request duration in seconds for {self.service_name}",
            ["method", "endpoint"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
            registry=self.registry
        )

        # Cache metrics
        self.cache_lookups = Counter(
            f"{self.prefix}_cache_lookups_total",
            "Cache lookups by namespace and outcome (hit, miss, stale)",
            ["namespace", "result"],
            registry=self.registry
        )

        self.stale_served = Counter(
            f"{self.prefix}_stale_served_total",
            "Stale values served because the upstream fetch failed",
            ["namespace"],
            registry=self.registry
        )

        # Provider metrics
        self.provider_failures = Counter(
            f"{self.prefix}_provider_failures_total",
            "Provider calls that failed or reported no success",
            ["provider"],
            registry=self.registry
        )

        # Refresh metrics
        self.refresh_keys = Counter(
            f"{self.prefix}_refresh_keys_total",
            "Keys handled by scheduled refresh runs",
            ["namespace", "outcome"],
            registry=self.registry
        )

        self.refresh_duration = Histogram(
            f"{self.prefix}_refresh_duration_seconds",
            "Duration of full refresh runs",
            ["namespace"],
            buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0],
            registry=self.registry
        )

        # Health metrics
        self.health_status = Gauge(
            f"{self.prefix}_health_status",
            f"Health status of {self.service_name} (1=healthy, 0=unhealthy)",
            registry=self.registry
        )

    def record_request(self, method: str, endpoint: str, status: str, duration: float):
        """Record a request metric."""
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_cache_lookup(self, namespace: str, result: str):
        """Record a cache lookup outcome."""
        self.cache_lookups.labels(namespace=namespace, result=result).inc()

    def record_stale_served(self, namespace: str):
        """Record a stale value served in place of a failed fetch."""
        self.stale_served.labels(namespace=namespace).inc()

    def record_provider_failure(self, provider: str):
        """Record a failed provider call."""
        self.provider_failures.labels(provider=provider).inc()

    def record_refresh(self, namespace: str, succeeded: int, failed: int, duration: Optional[float] = None):
        """Record the outcome of a refresh run."""
        self.refresh_keys.labels(namespace=namespace, outcome="succeeded").inc(succeeded)
        self.refresh_keys.labels(namespace=namespace, outcome="failed").inc(failed)
        if duration is not None:
            self.refresh_duration.labels(namespace=namespace).observe(duration)

    def set_health_status(self, healthy: bool):
        """Set the health status metric."""
        self.health_status.set(1 if healthy else 0)

    def update_service_info(self, version: str, environment: str, **kwargs):
        """Update service information."""
        info_dict = {
            "version": version,
            "environment": environment,
            **kwargs
        }
        self.info.info(info_dict)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics."""
        return CONTENT_TYPE_LATEST


def namespace_of(key: str) -> str:
    """Metric label for a cache key: the segment before the first colon."""
    return key.split(":", 1)[0]
