"""End-to-end request flow integration tests.

The full service is wired by ``CacheService.build_components`` over the
in-memory Redis client, with every upstream (CoinGecko, the price API and
the ledger compute units) served by one local fake.
"""

import json
import logging

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer

from cache_service.config import CacheServiceConfig
from cache_service.main import CacheService

logger = logging.getLogger(__name__)

SECRET = "e2e-secret"
AUTH = {"Authorization": f"Bearer {SECRET}"}
WALLETS_PID = "wallets-e2e"
REGISTRY_PID = "registry-e2e"
DELEGATION_PID = "delegation-e2e"
TOKEN_ID = "token-e2e"


def wallet(i):
    return f"{'z' * 40}{i:03d}"


class FakeUpstreams:
    """Serves CoinGecko, the token price API and ledger dry-runs."""

    def __init__(self):
        self.dry_runs = []
        self.price_calls = 0
        self.primary_cu_down = True

    def app(self):
        app = web.Application()
        app.router.add_get("/coingecko/simple/price", self.simple_price)
        app.router.add_post("/hopper", self.hopper)
        app.router.add_post("/cu-primary/dry-run", self.primary_dry_run)
        app.router.add_post("/cu-alt/dry-run", self.dry_run)
        return app

    async def simple_price(self, request):
        self.price_calls += 1
        return web.json_response({request.query["ids"]: {request.query["vs_currencies"]: 8.25}})

    async def hopper(self, request):
        body = await request.json()
        return web.json_response({"Prices": {token: {"price": 0.75} for token in body["batch"]}})

    async def primary_dry_run(self, request):
        if self.primary_cu_down:
            return web.json_response({"error": "overloaded"}, status=503)
        return await self.dry_run(request)

    async def dry_run(self, request):
        body = await request.json()
        process_id = request.query["process-id"]
        action = next(tag["value"] for tag in body["Tags"] if tag["name"] == "Action")
        self.dry_runs.append((request.path, process_id, action))

        if (process_id, action) == (TOKEN_ID, "Info"):
            data = {"Ticker": "E2E", "Name": "End To End", "Denomination": 12}
        elif (process_id, action) == (WALLETS_PID, "Get-Wallets"):
            wallets = [{"address": wallet(i), "balance": str(100 - i)} for i in range(10)]
            data = {"wallets": wallets, "snapshotTimestamp": 1_700_000_000_000}
        elif (process_id, action) == (REGISTRY_PID, "Get-FLPs"):
            data = [{
                "flp_id": "flp-1",
                "flp_token_process": "flp-token-1",
                "flp_token_name": "Launch",
                "flp_token_ticker": "LCH",
                "flp_token_denomination": 18,
            }]
        elif (process_id, action) == (DELEGATION_PID, "Get-Total-Delegated-AO-By-Project"):
            data = {"combined": {"flp-1": 42}}
        else:
            return web.json_response({"error": "unknown process"}, status=404)

        return web.json_response({"Messages": [{"Data": json.dumps(data), "Tags": []}]})


@pytest_asyncio.fixture
async def service_client(monkeypatch, mock_redis_client):
    upstreams = FakeUpstreams()
    async with TestServer(upstreams.app()) as upstream_server:
        base = str(upstream_server.make_url("/")).rstrip("/")
        env = {
            "LEDGER_CACHE_CRON_SECRET": SECRET,
            "LEDGER_CACHE_COINGECKO_URL": f"{base}/coingecko",
            "LEDGER_CACHE_TOKEN_PRICE_URL": f"{base}/hopper",
            "LEDGER_CACHE_LEDGER_CU_URL": f"{base}/cu-primary",
            "LEDGER_CACHE_LEDGER_ALT_CU_URL": f"{base}/cu-alt",
            "LEDGER_CACHE_WALLETS_PROCESS_ID": WALLETS_PID,
            "LEDGER_CACHE_FLP_REGISTRY_PROCESS_ID": REGISTRY_PID,
            "LEDGER_CACHE_FLP_DELEGATION_PROCESS_ID": DELEGATION_PID,
            "LEDGER_CACHE_TRACKED_TOKEN_IDS": TOKEN_ID,
            "LEDGER_CACHE_LEDGER_RETRY_DELAY": "0",
            "LEDGER_CACHE_REFRESH_BASE_DELAY": "0",
        }
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        monkeypatch.delenv("LEDGER_CACHE_TIER_SNAPSHOT_URL", raising=False)

        service = CacheService(CacheServiceConfig())
        async with aiohttp.ClientSession() as session:
            service.build_components(mock_redis_client, session)
            async with TestClient(TestServer(service.build_app())) as client:
                yield client, upstreams, mock_redis_client


class TestEndToEndFlow:
    """End-to-end request flow tests."""

    @pytest.mark.asyncio
    async def test_price_served_from_cache_on_second_request(self, service_client):
        """The second request inside the freshness window never reaches CoinGecko."""
        client, upstreams, _ = service_client

        first = await (await client.get("/api/price")).json()
        second = await (await client.get("/api/price")).json()

        assert first["price"] == second["price"] == 8.25
        assert upstreams.price_calls == 1

    @pytest.mark.asyncio
    async def test_tiers_rebuilt_from_ledger_via_alternate_cu(self, service_client):
        """The primary compute unit fails and the retry moves to the alternate one."""
        client, upstreams, redis_client = service_client

        response = await client.get(f"/api/tier-info?addresses={wallet(0)},{wallet(9)}")
        body = await response.json()

        assert response.status == 200
        assert body[wallet(0)]["tier"] == 1
        assert body[wallet(9)]["tier"] == 5
        assert ("/cu-alt/dry-run", WALLETS_PID, "Get-Wallets") in upstreams.dry_runs
        assert "wallets-tier-info" not in redis_client.cache

    @pytest.mark.asyncio
    async def test_token_info_then_cron_refresh(self, service_client):
        client, upstreams, redis_client = service_client
        upstreams.primary_cu_down = False

        info = await (await client.get(f"/api/token-info?tokenId={TOKEN_ID}")).json()
        assert info["tokenInfo"]["Ticker"] == "E2E"

        refresh = await client.get("/api/cron/update-token-infos", headers=AUTH)
        body = await refresh.json()

        assert body["success"] is True
        assert body["succeeded"] == 1
        assert redis_client.cache[f"tokenInfo:{TOKEN_ID}"]["value"]["Denomination"] == 12

    @pytest.mark.asyncio
    async def test_flp_listing_and_token_prices(self, service_client):
        client, upstreams, _ = service_client
        upstreams.primary_cu_down = False

        flp = await (await client.get("/api/flp-tokens")).json()
        assert [token["id"] for token in flp["flpTokens"]] == ["flp-token-1"]

        prices = await (await client.get("/api/cron/update-token-prices", headers=AUTH)).json()
        assert prices["results"]["prices"] == {TOKEN_ID: 0.75}

    @pytest.mark.asyncio
    async def test_health_and_metrics(self, service_client):
        client, _, _ = service_client
        await client.get("/api/price")

        health = await client.get("/health")
        assert (await health.json())["checks"]["redis"]["status"] == "healthy"

        metrics = await (await client.get("/metrics")).text()
        assert 'endpoint="/api/price"' in metrics
