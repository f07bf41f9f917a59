"""Main entry point for the ledger cache service."""

import asyncio
from typing import Optional

import aiohttp

from cachecore.framework.cache import CacheResolver, CacheStore
from cachecore.framework.health import HealthCheck
from cachecore.framework.refresher import ShardedRefresher
from cachecore.framework.retry import RetryPolicy, fixed_delay
from cachecore.framework.service import AsyncService
from cachecore.ledger.client import LedgerClient
from cachecore.storage.redis import RedisClient, RedisConfig
from cachecore.utils.errors import CacheUnavailableError
from cachecore.utils.logging import get_logger, setup_logging

from .apis.internal import InternalAPI
from .config import CacheServiceConfig
from .flp_tokens import FlpTokenService
from .prices.coingecko import CoinGeckoClient, PriceService
from .prices.token_prices import TokenPriceService, build_token_price_chain
from .refresh.scheduler import RefreshScheduler
from .tiers.engine import TierEngine
from .token_info import TokenInfoService


logger = get_logger(__name__)


class CacheService(AsyncService):
    """Serves cached prices, token metadata, the FLP listing and wallet tiers."""

    def __init__(self, config: Optional[CacheServiceConfig] = None):
        config = config or CacheServiceConfig()
        super().__init__(config)
        self.config = config
        self.redis: Optional[RedisClient] = None
        self.internal_api: Optional[InternalAPI] = None
        self.refresh_scheduler: Optional[RefreshScheduler] = None

    def build_components(self, redis_client: RedisClient, session: aiohttp.ClientSession) -> InternalAPI:
        """Wire the data services over explicit client handles."""
        config = self.config
        upstream = config.upstream

        store = CacheStore(redis_client, default_ttl=config.refresh.price_ttl)
        resolver = CacheResolver(store, metrics=self.metrics)
        refresher = ShardedRefresher(resolver, page_size=config.redis.scan_page_size, metrics=self.metrics)
        ledger = LedgerClient(session, [upstream.ledger_cu_url, upstream.ledger_alt_cu_url])
        ledger_retry = RetryPolicy(max_attempts=config.ledger_max_attempts, delay=fixed_delay(config.ledger_retry_delay))
        coingecko = CoinGeckoClient(session, upstream.coingecko_url)

        prices = PriceService(
            resolver,
            coingecko,
            freshness_seconds=config.refresh.price_freshness_seconds,
            ttl=config.refresh.price_ttl,
            tracked_pairs=[tuple(pair.split(":", 1)) for pair in config.refresh.tracked_price_pairs],
        )
        token_prices = TokenPriceService(
            resolver,
            build_token_price_chain(
                session,
                coingecko,
                token_price_url=upstream.token_price_url,
                token_price_api_key=upstream.token_price_api_key,
                permaswap_url=upstream.permaswap_url,
                coinmarketcap_url=upstream.coinmarketcap_url,
                coinmarketcap_api_key=upstream.coinmarketcap_api_key,
                ao_token_id=config.ao_token_id,
                metrics=self.metrics,
            ),
            freshness_seconds=config.token_price_freshness_seconds,
            ttl=config.token_price_ttl,
            tracked_token_ids=config.tracked_token_ids,
        )
        token_info = TokenInfoService(resolver, ledger, refresher, ttl=config.refresh.token_info_ttl)
        flp_tokens = FlpTokenService(
            resolver,
            ledger,
            retry_policy=ledger_retry,
            ttl=config.refresh.flp_tokens_ttl,
            registry_process_id=config.flp_registry_process_id,
            delegation_process_id=config.flp_delegation_process_id,
        )
        tiers = TierEngine(
            store,
            session,
            ledger,
            wallets_process_id=config.wallets_process_id,
            snapshot_url=upstream.tier_snapshot_url,
            retry_policy=ledger_retry,
            metrics=self.metrics,
        )

        self.internal_api = InternalAPI(config, prices, token_prices, token_info, flp_tokens, tiers)
        self.health_checker.add_check(
            HealthCheck(
                name="redis",
                check_func=redis_client.health_check,
                critical=False,
                description="Cache store reachability",
            )
        )
        return self.internal_api

    def _setup_service_routes(self) -> None:
        if self.internal_api:
            self.internal_api.register(self.app)

    def _build_scheduler(self) -> RefreshScheduler:
        api = self.internal_api
        refresh = self.config.refresh
        scheduler = RefreshScheduler()
        scheduler.add_job("prices", api.prices.update_all_prices, refresh.price_refresh_interval)
        scheduler.add_job(
            "token-prices",
            lambda: api.token_prices.update_tracked_token_prices(
                max_retries=self.config.tracked_token_max_retries,
                retry_delay=self.config.tracked_token_retry_delay,
            ),
            refresh.price_refresh_interval,
        )
        scheduler.add_job(
            "token-infos",
            lambda: api.token_info.refresh_all_token_infos(
                num_chunks=refresh.num_chunks,
                concurrency=refresh.concurrency,
                max_retries=refresh.max_retries,
                base_delay=refresh.base_delay,
            ),
            refresh.token_info_refresh_interval,
        )
        scheduler.add_job("flp-tokens", api.flp_tokens.update_flp_tokens, refresh.flp_tokens_refresh_interval)
        return scheduler

    async def _startup_hook(self) -> None:
        self.logger.info("Starting cache service components", config=self.config.to_dict())

        self.redis = RedisClient(
            RedisConfig(
                url=self.config.redis.url,
                max_connections=self.config.redis.max_connections,
                timeout=self.config.redis.timeout,
            )
        )
        try:
            await self.redis.connect()
        except CacheUnavailableError as e:
            self.logger.warning("Redis unavailable at startup, serving uncached", error=str(e))

        self.build_components(self.redis, self.session)

        if self.config.refresh.scheduler_enabled:
            self.refresh_scheduler = self._build_scheduler()
            await self.refresh_scheduler.start()

    async def _shutdown_hook(self) -> None:
        self.logger.info("Stopping cache service components")

        if self.refresh_scheduler:
            await self.refresh_scheduler.stop()
        if self.redis:
            await self.redis.close()

        self.logger.info("Cache service stopped")


async def main():
    """Main entry point."""
    config = CacheServiceConfig()
    setup_logging(
        config.service_name,
        config.observability.log_level,
        config.observability.log_format,
        environment=config.environment,
    )
    logger.info("Launching", version=config.version)
    service = CacheService(config)
    await service.run()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
