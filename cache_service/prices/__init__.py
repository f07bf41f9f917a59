"""Spot prices, market charts and token prices."""

from .coingecko import CHART_PERIODS, CHART_SYMBOLS, CoinGeckoClient, PriceService
from .token_prices import TokenPrices, TokenPriceService, build_token_price_chain

__all__ = [
    "CHART_PERIODS",
    "CHART_SYMBOLS",
    "CoinGeckoClient",
    "PriceService",
    "TokenPrices",
    "TokenPriceService",
    "build_token_price_chain",
]
