"""HTTP routes over the cached data services."""

from datetime import datetime, timezone
from typing import Optional

import structlog
from aiohttp import web

from cachecore.framework.auth import is_authorized
from cachecore.utils.errors import ValidationError

from ..flp_tokens import FlpTokenService
from ..prices.coingecko import CHART_PERIODS, PriceService
from ..prices.token_prices import TokenPriceService
from ..tiers.engine import TierEngine
from ..tiers.table import is_valid_address
from ..token_info import TokenInfoService


logger = structlog.get_logger(__name__)

TOKEN_INFO_CACHE_CONTROL = "public, max-age=3600, s-maxage=86400, stale-while-revalidate=3600"
FLP_TOKENS_CACHE_CONTROL = "public, max-age=300"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _split_ids(raw: str):
    return [item.strip() for item in raw.split(",") if item.strip()]


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


class InternalAPI:
    """Public read routes and secret-guarded refresh routes."""

    def __init__(
        self,
        config,
        prices: PriceService,
        token_prices: TokenPriceService,
        token_info: TokenInfoService,
        flp_tokens: FlpTokenService,
        tiers: TierEngine,
    ):
        self.config = config
        self.prices = prices
        self.token_prices = token_prices
        self.token_info = token_info
        self.flp_tokens = flp_tokens
        self.tiers = tiers
        self.logger = structlog.get_logger("internal-api")

    def register(self, app: web.Application) -> None:
        app.router.add_get("/api/price", self.get_price)
        app.router.add_get("/api/chart", self.get_chart)
        app.router.add_get("/api/token-info", self.get_token_info)
        app.router.add_get("/api/token-prices", self.get_token_prices)
        app.router.add_get("/api/token-price", self.get_token_price)
        app.router.add_get("/api/flp-tokens", self.get_flp_tokens)
        app.router.add_get("/api/tier-info", self.get_tier_info)

        app.router.add_get("/api/cron/update-prices", self.cron_update_prices)
        app.router.add_get("/api/cron/update-token-prices", self.cron_update_token_prices)
        app.router.add_get("/api/cron/update-token-infos", self.cron_update_token_infos)
        app.router.add_get("/api/cron/update-flp-tokens", self.cron_update_flp_tokens)

    async def get_price(self, request: web.Request) -> web.Response:
        symbol = request.query.get("symbol") or "arweave"
        currency = request.query.get("currency") or "usd"

        try:
            resolution = await self.prices.get_price(symbol, currency)
        except Exception as e:
            self.logger.error("Price lookup failed", symbol=symbol, currency=currency, error=str(e))
            return _error(f"Failed to get price: {e}", 500)

        return web.json_response({
            "symbol": symbol,
            "currency": currency,
            "price": resolution.value,
            "fresh": resolution.fresh,
            "cachedAt": resolution.cached_at,
            "cacheAge": resolution.age_seconds,
            "timestamp": _now_iso(),
        })

    async def get_chart(self, request: web.Request) -> web.Response:
        symbol = (request.query.get("symbol") or "arweave").lower()
        currency = (request.query.get("currency") or "usd").lower()
        days = request.query.get("days") or "7"

        try:
            resolution = await self.prices.get_market_chart(symbol, currency, days)
        except ValidationError as e:
            body = {"error": e.message}
            if e.field == "days":
                body["validPeriods"] = CHART_PERIODS
            return web.json_response(body, status=400)
        except Exception as e:
            self.logger.error("Market chart lookup failed", symbol=symbol, days=days, error=str(e))
            return _error(f"Failed to get {symbol} market chart data: {e}", 500)

        return web.json_response({
            "symbol": symbol,
            "currency": currency,
            "days": days,
            "period": CHART_PERIODS[days],
            "data": resolution.value,
            "fresh": resolution.fresh,
            "cachedAt": resolution.cached_at,
            "cacheAge": resolution.age_seconds,
            "timestamp": _now_iso(),
        })

    async def get_token_info(self, request: web.Request) -> web.Response:
        token_id = request.query.get("tokenId")
        if not token_id:
            return _error("tokenId is required", 400)

        try:
            resolution = await self.token_info.get_token_info(token_id)
        except Exception as e:
            self.logger.error("Token info lookup failed", token_id=token_id, error=str(e))
            return _error(f"Failed to get token info: {e}", 500)

        etag = f'"{token_id}:{resolution.cached_at}"'
        if request.headers.get("If-None-Match") == etag:
            return web.Response(status=304, headers={"ETag": etag})

        return web.json_response(
            {
                "tokenId": token_id,
                "tokenInfo": resolution.value,
                "fresh": resolution.fresh,
                "cachedAt": resolution.cached_at,
                "cacheAge": resolution.age_seconds,
                "timestamp": _now_iso(),
            },
            headers={"Cache-Control": TOKEN_INFO_CACHE_CONTROL, "ETag": etag},
        )

    async def get_token_prices(self, request: web.Request) -> web.Response:
        raw = request.query.get("tokenIds")
        if not raw:
            return _error("Missing tokenIds parameter. Use ?tokenIds=id1,id2,id3", 400)

        token_ids = _split_ids(raw)
        if not token_ids:
            return _error("No valid token IDs provided", 400)

        try:
            prices = await self.token_prices.get_token_prices(token_ids)
        except Exception as e:
            self.logger.error("Token price lookup failed", tokens=len(token_ids), error=str(e))
            return _error(f"Failed to get token prices: {e}", 500)

        return web.json_response({
            "tokenIds": token_ids,
            "prices": prices.prices,
            "cacheInfo": prices.cache_info,
            "timestamp": _now_iso(),
        })

    async def get_token_price(self, request: web.Request) -> web.Response:
        token_id = request.query.get("tokenId")
        if not token_id:
            return _error("Missing tokenId parameter. Use ?tokenId=yourTokenId", 400)

        try:
            price = await self.token_prices.get_token_price(token_id)
        except Exception as e:
            self.logger.error("Token price lookup failed", token_id=token_id, error=str(e))
            return _error(f"Failed to get token price: {e}", 500)

        return web.json_response({"tokenId": token_id, "price": price, "timestamp": _now_iso()})

    async def get_flp_tokens(self, request: web.Request) -> web.Response:
        try:
            resolution = await self.flp_tokens.get_flp_tokens()
        except Exception as e:
            self.logger.error("FLP token lookup failed", error=str(e))
            return _error(f"Failed to get flp tokens: {e}", 500)

        etag = f'"{resolution.cached_at}"'
        if request.headers.get("If-None-Match") == etag:
            return web.Response(status=304, headers={"ETag": etag})

        return web.json_response(
            {
                "flpTokens": resolution.value,
                "fresh": resolution.fresh,
                "cachedAt": resolution.cached_at,
                "cacheAge": resolution.age_seconds,
                "timestamp": _now_iso(),
            },
            headers={"Cache-Control": FLP_TOKENS_CACHE_CONTROL, "ETag": etag},
        )

    async def get_tier_info(self, request: web.Request) -> web.Response:
        address: Optional[str] = request.query.get("address")
        addresses: Optional[str] = request.query.get("addresses")
        if not address and not addresses:
            return _error("Missing address or addresses parameter. Use ?address=id1 or ?addresses=id1,id2,id3", 400)

        requested = [address] if address else _split_ids(addresses)
        requested = [candidate for candidate in requested if is_valid_address(candidate)]
        if not requested:
            return _error("No valid addresses provided", 400)

        try:
            records = await self.tiers.get_tiers(requested)
        except Exception as e:
            self.logger.error("Tier lookup failed", addresses=len(requested), error=str(e))
            return _error(f"Failed to get tier info: {e}", 500)

        if address:
            return web.json_response(records[address].to_dict())
        return web.json_response({key: record.to_dict() for key, record in records.items()})

    def _authorized(self, request: web.Request) -> bool:
        return is_authorized(request.headers.get("Authorization"), self.config.cron_secret)

    async def cron_update_prices(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return _error("Unauthorized", 401)

        try:
            results = await self.prices.update_all_prices()
        except Exception as e:
            self.logger.error("Price update failed", error=str(e))
            return web.json_response({"success": False, "error": f"Failed to update prices: {e}"}, status=500)

        return web.json_response({"success": True, "updatedAt": _now_iso(), "results": results})

    async def cron_update_token_prices(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return _error("Unauthorized", 401)

        try:
            prices = await self.token_prices.update_tracked_token_prices(
                max_retries=self.config.tracked_token_max_retries,
                retry_delay=self.config.tracked_token_retry_delay,
            )
        except Exception as e:
            self.logger.error("Token price update failed", error=str(e))
            return web.json_response({"success": False, "error": f"Failed to update token prices: {e}"}, status=500)

        return web.json_response({"success": True, "updatedAt": _now_iso(), "results": prices.to_dict()})

    async def cron_update_token_infos(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return _error("Unauthorized", 401)

        refresh = self.config.refresh
        try:
            report = await self.token_info.refresh_all_token_infos(
                num_chunks=refresh.num_chunks,
                concurrency=refresh.concurrency,
                max_retries=refresh.max_retries,
                base_delay=refresh.base_delay,
            )
        except Exception as e:
            self.logger.error("Token info update failed", error=str(e))
            return web.json_response({"success": False, "error": f"Failed to update token infos: {e}"}, status=500)

        return web.json_response({
            "success": True,
            "updatedAt": _now_iso(),
            "results": {"tokenInfos": report.refreshed},
            "succeeded": report.succeeded,
            "failed": report.failed,
        })

    async def cron_update_flp_tokens(self, request: web.Request) -> web.Response:
        if not self._authorized(request):
            return _error("Unauthorized", 401)

        try:
            await self.flp_tokens.update_flp_tokens()
        except Exception as e:
            self.logger.error("FLP tokens update failed", error=str(e))
            return web.json_response({"success": False, "error": f"Failed to update FLP tokens: {e}"}, status=500)

        return web.json_response({"success": True, "runAt": _now_iso()})
