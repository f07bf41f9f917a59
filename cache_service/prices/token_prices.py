"""
Token prices from a chain of price providers.

Each token is cached under its own key. Tokens whose cached price is
missing or older than the freshness window are fetched together through a
ProviderChain; the winning provider's prices are written back in one
pipelined batch. The AO token has its own secondary lookups for when the
winning provider has no price for it.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import aiohttp
import structlog

from cachecore.framework.cache import CacheResolver
from cachecore.framework.provider_chain import ProviderChain, ProviderResult
from cachecore.framework.retry import SleepFn
from cachecore.utils.errors import InvalidResponseShapeError, TransientUpstreamError

from .coingecko import CoinGeckoClient


logger = structlog.get_logger(__name__)

AO_TOKEN_ID = "0syT13r0s0tgPmIed95bJnuSqaD29HQNN8D3ElLSrsc"

TRACKED_TOKEN_IDS = [
    "xU9zFkq3X2ZQ6olwNVvr1vUWIjc3kXTWr7xKQD6dh10",
    AO_TOKEN_ID,
    "NG-0lVX882MG5nhARrSzyprEK6ejonHpdUmaaMPsHE8",
]


def token_price_key(token_id: str) -> str:
    return f"tokenprice:{token_id}"


def _as_price(value: Any) -> Optional[float]:
    """Positive finite number, else None."""
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(price) or math.isinf(price) or not price:
        return None
    return price


async def _read_json(response: aiohttp.ClientResponse, upstream: str) -> Any:
    if response.status >= 400:
        raise TransientUpstreamError(
            f"{upstream} API error: {response.status}",
            upstream=upstream,
            status=response.status,
        )
    return await response.json(content_type=None)


class BotegaPriceProvider:
    """Batch price lookup against the token price API."""
    provider_name = "botega"

    def __init__(self, session: aiohttp.ClientSession, url: str, api_key: str):
        self.session = session
        self.url = url
        self.api_key = api_key

    async def __call__(self, token_ids: List[str]) -> ProviderResult:
        headers = {
            "content-type": "application/json",
            "apikey": self.api_key,
            "authorization": f"Bearer {self.api_key}",
        }
        try:
            async with self.session.post(self.url, json={"batch": token_ids, "priceOnly": True}, headers=headers) as response:
                data = await _read_json(response, self.provider_name)
        except aiohttp.ClientError as e:
            raise TransientUpstreamError(f"Token price API request failed: {e}", upstream=self.provider_name) from e

        prices = data.get("Prices") if isinstance(data, dict) else None
        if not isinstance(prices, dict):
            raise InvalidResponseShapeError("Token price API response has no Prices", upstream=self.provider_name)

        values = {
            token_id: _as_price(entry.get("price")) if isinstance(entry, dict) else None
            for token_id, entry in prices.items()
        }
        return ProviderResult(succeeded=True, values=values)


class PermaswapPriceProvider:
    """Price list published by Permaswap; only requested tokens are kept."""
    provider_name = "permaswap"

    def __init__(self, session: aiohttp.ClientSession, base_url: str):
        self.session = session
        self.base_url = base_url.rstrip("/")

    async def __call__(self, token_ids: List[str]) -> ProviderResult:
        try:
            async with self.session.get(f"{self.base_url}/tokenList", headers={"accept": "application/json"}) as response:
                tokens = await _read_json(response, self.provider_name)
        except aiohttp.ClientError as e:
            raise TransientUpstreamError(f"Permaswap request failed: {e}", upstream=self.provider_name) from e

        if not isinstance(tokens, list):
            raise InvalidResponseShapeError("Permaswap token list is not a list", upstream=self.provider_name)

        wanted = set(token_ids)
        values = {}
        for token in tokens:
            if isinstance(token, dict) and token.get("process") in wanted:
                values[token["process"]] = _as_price(token.get("price"))
        return ProviderResult(succeeded=True, values=values)


class CoinGeckoAoPrice:
    """AO price in USD from CoinGecko."""
    provider_name = "coingecko-ao"

    def __init__(self, client: CoinGeckoClient):
        self.client = client

    async def __call__(self) -> Optional[float]:
        return _as_price(await self.client.fetch_price("ao-computer", "usd"))


class CoinMarketCapAoPrice:
    """AO price in USD from CoinMarketCap."""
    provider_name = "coinmarketcap-ao"
    symbol = "AO"

    def __init__(self, session: aiohttp.ClientSession, base_url: str, api_key: str):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    async def __call__(self) -> Optional[float]:
        try:
            async with self.session.get(
                f"{self.base_url}/v1/cryptocurrency/quotes/latest",
                params={"symbol": self.symbol},
                headers={"X-CMC_PRO_API_KEY": self.api_key},
            ) as response:
                data = await _read_json(response, self.provider_name)
        except aiohttp.ClientError as e:
            raise TransientUpstreamError(f"CoinMarketCap request failed: {e}", upstream=self.provider_name) from e

        try:
            return _as_price(data["data"][self.symbol]["quote"]["USD"]["price"])
        except (KeyError, TypeError) as e:
            raise InvalidResponseShapeError(f"CoinMarketCap response missing {e}", upstream=self.provider_name) from e


@dataclass
class TokenPrices:
    """Prices per token plus the epoch-ms each price was cached at."""
    prices: Dict[str, Optional[float]] = field(default_factory=dict)
    cache_info: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def missing(self, token_ids: Sequence[str]) -> List[str]:
        return [token_id for token_id in token_ids if self.prices.get(token_id) is None]

    def to_dict(self) -> Dict[str, Any]:
        return {"prices": self.prices, "cacheInfo": self.cache_info}


class TokenPriceService:
    """Cache-first token prices backed by a provider chain."""

    def __init__(
        self,
        resolver: CacheResolver,
        chain: ProviderChain,
        freshness_seconds: int = 300,
        ttl: int = 86400,
        tracked_token_ids: Optional[Sequence[str]] = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.resolver = resolver
        self.chain = chain
        self.freshness_seconds = freshness_seconds
        self.ttl = ttl
        self.tracked_token_ids = list(tracked_token_ids or TRACKED_TOKEN_IDS)
        self.sleep = sleep
        self.logger = structlog.get_logger("token-price-service")

    async def get_token_prices(self, token_ids: Sequence[str], force_refresh: bool = False) -> TokenPrices:
        """
        Prices for ``token_ids``.

        Cached prices inside the freshness window are served as is. Stale
        cached prices are served unless the refetch returns a replacement.
        When every provider fails, cached prices stay untouched and tokens
        with nothing cached resolve to None.
        """
        unique_ids = list(dict.fromkeys(token_ids))
        result = TokenPrices()
        to_fetch = []

        cached_entries = await asyncio.gather(
            *(self.resolver.read(token_price_key(token_id)) for token_id in unique_ids)
        )
        now = self.resolver.now_ms()
        for token_id, cached in zip(unique_ids, cached_entries):
            if cached is not None and not force_refresh:
                result.prices[token_id] = cached.value
                result.cache_info[token_id] = {"cachedAt": cached.stored_at}
                if now - cached.stored_at >= self.freshness_seconds * 1000:
                    to_fetch.append(token_id)
            else:
                to_fetch.append(token_id)

        if to_fetch:
            await self._fetch_into(to_fetch, result)

        for token_id in unique_ids:
            result.prices.setdefault(token_id, None)
        return result

    async def _fetch_into(self, token_ids: List[str], result: TokenPrices) -> None:
        fetched = await self.chain.resolve(token_ids)
        now = self.resolver.now_ms()

        if not fetched.succeeded:
            self.logger.error("All token price providers failed", tokens=len(token_ids))
            for token_id in token_ids:
                if result.prices.get(token_id) is None:
                    result.prices[token_id] = None
                    result.cache_info[token_id] = {"cachedAt": now}
            return

        batch = []
        for token_id, price in fetched.values.items():
            result.prices[token_id] = price
            result.cache_info[token_id] = {"cachedAt": now}
            batch.append((token_price_key(token_id), self.resolver.make_entry(price, now), self.ttl))

        if batch and not await self.resolver.store.set_many(batch):
            self.logger.warning("Token price cache write failed", count=len(batch))

    async def get_token_price(self, token_id: str, force_refresh: bool = False) -> Optional[float]:
        prices = await self.get_token_prices([token_id], force_refresh=force_refresh)
        return prices.prices.get(token_id)

    async def update_tracked_token_prices(self, max_retries: int = 3, retry_delay: float = 1.0) -> TokenPrices:
        """Force-refresh the tracked tokens, retrying while any price is missing."""
        for attempt in range(max_retries + 1):
            try:
                prices = await self.get_token_prices(self.tracked_token_ids, force_refresh=True)
            except Exception as e:
                self.logger.error("Tracked token price update failed", attempt=attempt + 1, error=str(e))
                if attempt < max_retries:
                    await self.sleep(retry_delay)
                continue

            missing = prices.missing(self.tracked_token_ids)
            if not missing or attempt == max_retries:
                return prices

            self.logger.info(
                "Missing tracked token prices, retrying",
                attempt=attempt + 1,
                max_retries=max_retries,
                missing=len(missing),
            )
            await self.sleep(retry_delay)

        self.logger.error("Failed to update tracked token prices after all retries")
        return TokenPrices()


def build_token_price_chain(
    session: aiohttp.ClientSession,
    coingecko: CoinGeckoClient,
    token_price_url: str,
    token_price_api_key: str,
    permaswap_url: str,
    coinmarketcap_url: str,
    coinmarketcap_api_key: str,
    ao_token_id: str = AO_TOKEN_ID,
    metrics=None,
) -> ProviderChain:
    return ProviderChain(
        [
            BotegaPriceProvider(session, token_price_url, token_price_api_key),
            PermaswapPriceProvider(session, permaswap_url),
        ],
        designated_key=ao_token_id,
        secondary_lookups=[
            CoinGeckoAoPrice(coingecko),
            CoinMarketCapAoPrice(session, coinmarketcap_url, coinmarketcap_api_key),
        ],
        metrics=metrics,
        name="token-price-chain",
    )
