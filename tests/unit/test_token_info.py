"""Unit tests for token metadata."""

import pytest

from cache_service.token_info import TokenInfoService, parse_token_info, token_info_key
from cachecore.framework.refresher import ShardedRefresher
from cachecore.ledger.client import DryRunResult
from cachecore.utils.errors import ExhaustedRetriesError, InvalidResponseShapeError
from tests.fixtures.mock_services import ledger_payload

TOKEN = "tok-1"


def result(*messages):
    return DryRunResult.from_dict({"Messages": list(messages)})


class TestParseTokenInfo:
    """Test Info response parsing."""

    def test_data_json_wins(self):
        payload = ledger_payload(
            {"Ticker": "AO", "Name": "AO Token", "Denomination": "12", "Logo": "logo-tx"},
            tags={"Ticker": "IGNORED", "Name": "Ignored"},
        )

        info = parse_token_info(DryRunResult.from_dict(payload), TOKEN)

        assert info == {"Ticker": "AO", "Name": "AO Token", "Denomination": 12, "Logo": "logo-tx", "type": "asset"}

    def test_lowercase_data_fields_and_logo_fallback(self):
        payload = ledger_payload({"ticker": "x", "name": "X", "denomination": 3})

        info = parse_token_info(DryRunResult.from_dict(payload), TOKEN)

        assert info["Ticker"] == "x"
        assert info["Denomination"] == 3
        assert info["Logo"] == TOKEN

    def test_transferable_flag_marks_collectible(self):
        payload = ledger_payload({"Ticker": "NFT", "Name": "Art", "Transferable": False})
        assert parse_token_info(DryRunResult.from_dict(payload), TOKEN)["type"] == "collectible"

    def test_atomic_ticker_marks_collectible(self):
        payload = ledger_payload(tags={"ticker": "ATOMIC", "name": "Atomic Asset"})
        assert parse_token_info(DryRunResult.from_dict(payload), TOKEN)["type"] == "collectible"

    def test_tags_read_case_insensitively(self):
        payload = ledger_payload(tags={"TICKER": "TRUNK", "name": "Trunk", "Denomination": "3", "logo": "l"})

        info = parse_token_info(DryRunResult.from_dict(payload), TOKEN)

        assert info == {"Name": "Trunk", "Ticker": "TRUNK", "Denomination": 3, "Logo": "l", "type": "asset"}

    def test_incomplete_data_falls_back_to_tags(self):
        payload = ledger_payload({"Ticker": "ONLY"}, tags={"Name": "From Tags"})

        info = parse_token_info(DryRunResult.from_dict(payload), TOKEN)

        assert info["Name"] == "From Tags"
        assert info["Ticker"] is None

    def test_later_message_used(self):
        info = parse_token_info(
            result({"Data": "not json"}, {"Tags": [{"name": "Ticker", "value": "T2"}]}),
            TOKEN,
        )
        assert info["Ticker"] == "T2"

    def test_bad_denomination_is_zero(self):
        payload = ledger_payload(tags={"Ticker": "T", "Denomination": "abc"})
        assert parse_token_info(DryRunResult.from_dict(payload), TOKEN)["Denomination"] == 0

    def test_nothing_usable(self):
        with pytest.raises(InvalidResponseShapeError, match="Could not load token info."):
            parse_token_info(result({"Tags": [{"name": "Action", "value": "Info-Response"}]}), TOKEN)


@pytest.fixture
def token_info_service(resolver, mock_ledger, recording_sleep):
    return TokenInfoService(resolver, mock_ledger, ShardedRefresher(resolver, sleep=recording_sleep), ttl=3600)


class TestTokenInfoService:
    """Test cached token metadata."""

    @pytest.mark.asyncio
    async def test_first_read_fetches_then_caches(self, token_info_service, mock_ledger, clock, mock_redis_client):
        mock_ledger.respond(TOKEN, "Info", ledger_payload({"Ticker": "T", "Name": "Token"}))

        first = await token_info_service.get_token_info(TOKEN)
        clock.advance(30 * 86400)
        second = await token_info_service.get_token_info(TOKEN)

        assert first.value["Ticker"] == "T"
        assert second.value == first.value
        assert second.fresh is True
        assert len(mock_ledger.calls) == 1
        assert mock_redis_client.ttls[token_info_key(TOKEN)] == 3600

    @pytest.mark.asyncio
    async def test_unreachable_token_raises(self, token_info_service):
        with pytest.raises(ExhaustedRetriesError):
            await token_info_service.get_token_info("unknown")

    @pytest.mark.asyncio
    async def test_refresh_all_rereads_cached_tokens(self, token_info_service, mock_ledger, mock_redis_client):
        mock_redis_client.cache[token_info_key("a")] = {"value": {"Ticker": "OLD"}, "stored_at": 0}
        mock_redis_client.cache[token_info_key("b")] = {"value": {"Ticker": "OLD"}, "stored_at": 0}
        mock_ledger.respond("a", "Info", ledger_payload({"Ticker": "A", "Name": "Alpha"}))

        report = await token_info_service.refresh_all_token_infos(max_retries=1, base_delay=0.1)

        assert set(report.refreshed) == {"a"}
        assert report.failed == ["b"]
        assert mock_redis_client.cache[token_info_key("a")]["value"]["Ticker"] == "A"
        assert mock_redis_client.cache[token_info_key("b")]["value"]["Ticker"] == "OLD"
        assert len(mock_ledger.calls_for("b", "Info")) == 2
