"""Spot prices and market charts from CoinGecko, cached with a five-minute window."""

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple

import aiohttp
import structlog

from cachecore.framework.cache import CacheResolution, CacheResolver
from cachecore.utils.errors import InvalidResponseShapeError, TransientUpstreamError, ValidationError


logger = structlog.get_logger(__name__)

TRACKED_PAIRS: List[Tuple[str, str]] = [("arweave", "usd")]

CHART_SYMBOLS = ["arweave", "ao-computer"]

CHART_PERIODS: Dict[str, str] = {
    "1": "1 day",
    "7": "1 week",
    "30": "1 month",
    "90": "3 months",
    "180": "6 months",
    "365": "1 year",
}


def price_key(symbol: str, currency: str) -> str:
    return f"price:{symbol.lower()}:{currency.lower()}"


def chart_key(symbol: str, currency: str, days: str) -> str:
    return f"chart:{symbol.lower()}:{currency.lower()}:{days}"


class CoinGeckoClient:
    """Thin HTTP client for the two CoinGecko endpoints used here."""

    def __init__(self, session: aiohttp.ClientSession, base_url: str):
        self.session = session
        self.base_url = base_url.rstrip("/")

    async def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with self.session.get(url, params=params) as response:
                if response.status >= 400:
                    raise TransientUpstreamError(
                        f"CoinGecko API error: {response.status} {response.reason}",
                        upstream="coingecko",
                        status=response.status,
                    )
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            raise TransientUpstreamError(f"CoinGecko request failed: {e}", upstream="coingecko") from e

    async def fetch_price(self, symbol: str, currency: str) -> float:
        symbol, currency = symbol.lower(), currency.lower()
        data = await self._get_json("/simple/price", {"ids": symbol, "vs_currencies": currency})

        if not isinstance(data, dict) or not isinstance(data.get(symbol), dict) or data[symbol].get(currency) is None:
            raise InvalidResponseShapeError(
                f"Invalid data format from CoinGecko API for {symbol}/{currency}",
                upstream="coingecko",
            )
        return data[symbol][currency]

    async def fetch_market_chart(self, symbol: str, currency: str, days: str) -> Dict[str, Any]:
        data = await self._get_json(
            f"/coins/{symbol.lower()}/market_chart",
            {"vs_currency": currency.lower(), "days": days},
        )

        if not isinstance(data, dict):
            raise InvalidResponseShapeError("Market chart response is not an object", upstream="coingecko")
        status = data.get("status")
        if isinstance(status, dict) and status.get("error_code"):
            raise TransientUpstreamError(
                f"CoinGecko API error: {status.get('error_message', status['error_code'])}",
                upstream="coingecko",
            )
        if not isinstance(data.get("prices"), list):
            raise InvalidResponseShapeError("Market chart response has no prices", upstream="coingecko")
        return data


class PriceService:
    """Cache-first spot prices and market charts."""

    def __init__(
        self,
        resolver: CacheResolver,
        client: CoinGeckoClient,
        freshness_seconds: int = 300,
        ttl: int = 86400,
        tracked_pairs: Optional[Sequence[Tuple[str, str]]] = None,
    ):
        self.resolver = resolver
        self.client = client
        self.freshness_seconds = freshness_seconds
        self.ttl = ttl
        self.tracked_pairs = list(tracked_pairs or TRACKED_PAIRS)
        self.logger = structlog.get_logger("price-service")

    async def get_price(self, symbol: str = "arweave", currency: str = "usd") -> CacheResolution:
        return await self.resolver.resolve(
            price_key(symbol, currency),
            lambda: self.client.fetch_price(symbol, currency),
            self.freshness_seconds,
            ttl=self.ttl,
        )

    async def get_market_chart(self, symbol: str = "arweave", currency: str = "usd", days: str = "7") -> CacheResolution:
        """Chart prices as ``{"prices": [[ts, price], ...]}``."""
        days = str(days)
        if days not in CHART_PERIODS:
            raise ValidationError(
                f"Invalid time period. Must be one of: {', '.join(CHART_PERIODS)}",
                field="days",
                value=days,
            )
        if symbol.lower() not in CHART_SYMBOLS:
            raise ValidationError(
                f"Invalid symbol. Must be one of: {', '.join(CHART_SYMBOLS)}",
                field="symbol",
                value=symbol,
            )

        async def fetch():
            data = await self.client.fetch_market_chart(symbol, currency, days)
            return {"prices": data["prices"]}

        return await self.resolver.resolve(
            chart_key(symbol, currency, days),
            fetch,
            self.freshness_seconds,
            ttl=self.ttl,
        )

    async def update_all_prices(self) -> Dict[str, float]:
        """Force-refresh every tracked pair; per-pair failures are logged, not raised."""
        async def refresh(symbol: str, currency: str):
            return await self.resolver.refresh(
                price_key(symbol, currency),
                lambda: self.client.fetch_price(symbol, currency),
                ttl=self.ttl,
            )

        outcomes = await asyncio.gather(
            *(refresh(symbol, currency) for symbol, currency in self.tracked_pairs),
            return_exceptions=True,
        )

        results = {}
        errors = []
        for (symbol, currency), outcome in zip(self.tracked_pairs, outcomes):
            if isinstance(outcome, Exception):
                errors.append(f"{symbol}:{currency} - {outcome}")
                continue
            results[f"{symbol}:{currency}"] = outcome.value

        if errors:
            self.logger.error("Price update errors", errors=errors)
        return results
