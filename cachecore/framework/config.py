"""
Configuration management for the cache service.

Provides typed configuration classes with environment variable
injection and validation.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from ..utils.errors import ConfigurationError


def env_list(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass
class RedisSettings:
    """Redis configuration."""
    url: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_REDIS_URL", "redis://localhost:6379/0"))
    max_connections: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_REDIS_MAX_CONNECTIONS", "20")))
    timeout: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_REDIS_TIMEOUT", "30")))
    scan_page_size: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_SCAN_PAGE_SIZE", "100")))


@dataclass
class UpstreamSettings:
    """External data sources."""
    coingecko_url: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_COINGECKO_URL", "https://api.coingecko.com/api/v3"))
    token_price_url: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_TOKEN_PRICE_URL", "https://kzmzniagsfcfnhgsjkpv.supabase.co/functions/v1/hopper"))
    token_price_api_key: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_TOKEN_PRICE_API_KEY", ""))
    permaswap_url: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_PERMASWAP_URL", "https://api-ffpscan.permaswap.network"))
    coinmarketcap_url: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_COINMARKETCAP_URL", "https://pro-api.coinmarketcap.com"))
    coinmarketcap_api_key: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_COINMARKETCAP_API_KEY", ""))
    tier_snapshot_url: Optional[str] = field(default_factory=lambda: os.getenv("LEDGER_CACHE_TIER_SNAPSHOT_URL") or None)
    ledger_cu_url: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_LEDGER_CU_URL", "https://cu.ao-testnet.xyz"))
    ledger_alt_cu_url: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_LEDGER_ALT_CU_URL", "https://gateway.ar"))
    request_timeout: float = field(default_factory=lambda: float(os.getenv("LEDGER_CACHE_REQUEST_TIMEOUT", "30")))


@dataclass
class RefreshSettings:
    """Freshness windows, TTLs and scheduled refresh settings."""
    price_freshness_seconds: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_PRICE_FRESHNESS", "300")))
    price_ttl: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_PRICE_TTL", "86400")))
    token_info_ttl: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_TOKEN_INFO_TTL", "86400")))
    flp_tokens_ttl: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_FLP_TOKENS_TTL", "86400")))
    num_chunks: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_REFRESH_NUM_CHUNKS", "1")))
    concurrency: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_REFRESH_CONCURRENCY", "10")))
    max_retries: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_REFRESH_MAX_RETRIES", "3")))
    base_delay: float = field(default_factory=lambda: float(os.getenv("LEDGER_CACHE_REFRESH_BASE_DELAY", "1.0")))
    scheduler_enabled: bool = field(default_factory=lambda: os.getenv("LEDGER_CACHE_SCHEDULER_ENABLED", "false").lower() == "true")
    price_refresh_interval: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_PRICE_REFRESH_INTERVAL", "300")))
    token_info_refresh_interval: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_TOKEN_INFO_REFRESH_INTERVAL", "86400")))
    flp_tokens_refresh_interval: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_FLP_TOKENS_REFRESH_INTERVAL", "3600")))
    tracked_price_pairs: List[str] = field(default_factory=lambda: env_list("LEDGER_CACHE_TRACKED_PRICE_PAIRS", "arweave:usd"))


@dataclass
class ObservabilityConfig:
    """Observability configuration."""
    log_level: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_LOG_LEVEL", "info"))
    log_format: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_LOG_FORMAT", "json"))
    host: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_HOST", "0.0.0.0"))
    health_port: int = field(default_factory=lambda: int(os.getenv("LEDGER_CACHE_PORT", "8080")))
    health_interval: float = field(default_factory=lambda: float(os.getenv("LEDGER_CACHE_HEALTH_INTERVAL", "30")))


@dataclass
class ServiceConfig:
    """Base service configuration."""
    service_name: str
    environment: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_ENV", "local"))
    cron_secret: Optional[str] = field(default_factory=lambda: os.getenv("LEDGER_CACHE_CRON_SECRET") or None)
    version: str = field(default_factory=lambda: os.getenv("LEDGER_CACHE_VERSION", "1.0.0"))

    # Sub-configurations
    redis: RedisSettings = field(default_factory=RedisSettings)
    upstream: UpstreamSettings = field(default_factory=UpstreamSettings)
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.service_name:
            raise ConfigurationError("service_name is required", config_key="service_name")

        if self.environment not in ["local", "dev", "staging", "prod"]:
            raise ConfigurationError(f"Invalid environment: {self.environment}", config_key="environment", config_value=self.environment)

        if self.refresh.num_chunks < 1:
            raise ConfigurationError("num_chunks must be >= 1", config_key="refresh.num_chunks", config_value=self.refresh.num_chunks)

        if self.refresh.concurrency < 1:
            raise ConfigurationError("concurrency must be >= 1", config_key="refresh.concurrency", config_value=self.refresh.concurrency)

        if self.refresh.max_retries < 0:
            raise ConfigurationError("max_retries must be >= 0", config_key="refresh.max_retries", config_value=self.refresh.max_retries)

        if self.observability.log_format not in ["json", "console"]:
            raise ConfigurationError(f"Invalid log format: {self.observability.log_format}", config_key="observability.log_format")

        if self.observability.health_interval <= 0:
            raise ConfigurationError("health_interval must be > 0", config_key="observability.health_interval", config_value=self.observability.health_interval)

    @classmethod
    def from_env(cls, service_name: str) -> "ServiceConfig":
        """Create configuration from environment variables."""
        return cls(service_name=service_name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary. Secrets are masked."""
        return {
            "service_name": self.service_name,
            "environment": self.environment,
            "version": self.version,
            "cron_secret_set": bool(self.cron_secret),
            "redis": {
                "url": self.redis.url,
                "max_connections": self.redis.max_connections,
                "timeout": self.redis.timeout,
                "scan_page_size": self.redis.scan_page_size,
            },
            "upstream": {
                "coingecko_url": self.upstream.coingecko_url,
                "token_price_url": self.upstream.token_price_url,
                "permaswap_url": self.upstream.permaswap_url,
                "coinmarketcap_url": self.upstream.coinmarketcap_url,
                "tier_snapshot_url": self.upstream.tier_snapshot_url,
                "ledger_cu_url": self.upstream.ledger_cu_url,
                "ledger_alt_cu_url": self.upstream.ledger_alt_cu_url,
                "request_timeout": self.upstream.request_timeout,
            },
            "refresh": {
                "price_freshness_seconds": self.refresh.price_freshness_seconds,
                "price_ttl": self.refresh.price_ttl,
                "token_info_ttl": self.refresh.token_info_ttl,
                "flp_tokens_ttl": self.refresh.flp_tokens_ttl,
                "num_chunks": self.refresh.num_chunks,
                "concurrency": self.refresh.concurrency,
                "max_retries": self.refresh.max_retries,
                "base_delay": self.refresh.base_delay,
                "scheduler_enabled": self.refresh.scheduler_enabled,
                "tracked_price_pairs": self.refresh.tracked_price_pairs,
            },
            "observability": {
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
                "host": self.observability.host,
                "health_port": self.observability.health_port,
                "health_interval": self.observability.health_interval,
            },
        }
