"""Unit tests for tier arithmetic and the tier engine."""

from unittest.mock import AsyncMock, patch

import pytest

from cache_service.tiers.engine import (
    CACHE_KEY,
    SNAPSHOT_MAX_AGE_MS,
    TierEngine,
    TierSnapshot,
    WalletTierRecord,
    validate_snapshot,
)
from cache_service.tiers.table import is_valid_address, progress_of, tier_name, tier_of, tier_thresholds
from cachecore.framework.retry import RetryPolicy, fixed_delay
from cachecore.utils.errors import ExhaustedRetriesError, SnapshotInvalidError
from tests.fixtures.mock_services import ledger_payload

WALLETS_PID = "wallets-process"
NOW_MS = 1_700_000_000_000


def address(i):
    return f"{'w' * 40}{i:03d}"


def snapshot_payload(count, snapshot_timestamp=NOW_MS - 60_000, total_holders=None):
    total = count if total_holders is None else total_holders
    return {
        address(i): {
            "balance": str(1000 - i),
            "rank": i + 1,
            "tier": tier_of(i + 1, total),
            "progress": progress_of(i + 1, total),
            "snapshotTimestamp": snapshot_timestamp,
            "totalHolders": total,
        }
        for i in range(count)
    }


def wallets_response(count, snapshot_timestamp=NOW_MS - 60_000):
    wallets = [{"address": address(i), "balance": str(1000 - i)} for i in range(count)]
    return ledger_payload({"wallets": wallets, "snapshotTimestamp": snapshot_timestamp})


class TestTierTable:
    """Test rank to tier arithmetic."""

    def test_tier_boundaries(self):
        assert tier_of(1, 100) == 1
        assert tier_of(2, 100) == 1
        assert tier_of(3, 100) == 2
        assert tier_of(100, 100) == 5

    def test_ten_wallets(self):
        assert [tier_of(rank, 10) for rank in range(1, 11)] == [1, 2, 3, 3, 3, 4, 4, 4, 5, 5]

    def test_degenerate_inputs(self):
        assert tier_of(0, 10) == 5
        assert tier_of(1, 0) == 5
        assert progress_of(1, 0) == 0

    def test_progress(self):
        assert progress_of(1, 100) == 100.0
        assert progress_of(100, 100) == 1.0
        assert progress_of(2, 3) == 66.666666

    def test_thresholds(self):
        assert tier_thresholds(10) == [(1, 1), (2, 2), (3, 5), (6, 8), (9, 10)]
        assert tier_thresholds(0) == []

    def test_tier_names(self):
        assert tier_name(1) == "Prime"
        assert tier_name(5) == "Core"
        with pytest.raises(KeyError):
            tier_name(6)

    def test_address_validation(self):
        assert is_valid_address(address(1))
        assert is_valid_address("A" * 21 + "_" + "-" * 21)
        assert not is_valid_address("short")
        assert not is_valid_address(address(1) + "x")
        assert not is_valid_address(None)


class TestValidateSnapshot:
    """Test precomputed snapshot acceptance."""

    def test_accepts_complete_recent_snapshot(self):
        snapshot = validate_snapshot(snapshot_payload(5), NOW_MS)
        assert snapshot.total_wallets == 5
        assert snapshot.records[address(0)].tier == 1

    def test_invalid_addresses_are_dropped(self):
        payload = snapshot_payload(3)
        payload["not-an-address"] = dict(payload[address(0)])

        snapshot = validate_snapshot(payload, NOW_MS)

        assert snapshot.total_wallets == 3
        assert "not-an-address" not in snapshot.records

    @pytest.mark.parametrize("payload, reason", [
        ([], "shape"),
        ({}, "empty"),
        ({address(0): {"balance": "1"}}, "empty"),
        (snapshot_payload(3, snapshot_timestamp=0), "metadata"),
        (snapshot_payload(3, total_holders=4), "count_mismatch"),
        (snapshot_payload(3, snapshot_timestamp=NOW_MS - SNAPSHOT_MAX_AGE_MS), "expired"),
    ])
    def test_rejections(self, payload, reason):
        with pytest.raises(SnapshotInvalidError) as exc_info:
            validate_snapshot(payload, NOW_MS)
        assert exc_info.value.reason == reason


class TestTierSnapshot:
    """Test snapshot construction and lookup."""

    def test_from_ranked_wallets(self):
        wallets = [{"address": address(i), "balance": str(10 - i)} for i in range(10)]
        snapshot = TierSnapshot.from_ranked_wallets(wallets, NOW_MS)

        assert snapshot.total_wallets == 10
        assert [snapshot.records[address(i)].tier for i in range(10)] == [1, 2, 3, 3, 3, 4, 4, 4, 5, 5]
        assert snapshot.records[address(0)].progress == 100.0
        assert snapshot.records[address(9)].to_dict()["totalHolders"] == 10

    def test_default_record_for_unknown_address(self):
        snapshot = TierSnapshot.from_ranked_wallets([{"address": address(0), "balance": "5"}], NOW_MS)

        record = snapshot.lookup([address(99)])[address(99)]

        assert record.to_dict() == {
            "balance": "0",
            "rank": "",
            "tier": 5,
            "progress": 0,
            "snapshotTimestamp": NOW_MS,
            "totalHolders": 1,
        }

    def test_cached_shape_round_trip(self):
        snapshot = TierSnapshot.from_ranked_wallets([{"address": address(0), "balance": "5"}], NOW_MS)
        restored = TierSnapshot.from_dict(snapshot.to_dict())
        assert restored == snapshot

    def test_malformed_cached_value(self):
        assert TierSnapshot.from_dict({"walletsTierInfo": {"a": {"rank": 1}}}) is None
        assert TierSnapshot.from_dict("nope") is None


@pytest.fixture
def tier_engine(cache_store, mock_ledger, clock, recording_sleep):
    return TierEngine(
        cache_store,
        session=None,
        ledger=mock_ledger,
        wallets_process_id=WALLETS_PID,
        snapshot_url="https://snapshots.example/tiers.json",
        retry_policy=RetryPolicy(max_attempts=3, delay=fixed_delay(0.5), sleep=recording_sleep),
        clock=clock,
    )


class TestTierEngine:
    """Test snapshot acquisition and caching."""

    @pytest.mark.asyncio
    async def test_uses_valid_precomputed_snapshot(self, tier_engine, mock_ledger, mock_redis_client):
        with patch("cache_service.tiers.engine.fetch_snapshot_endpoint", AsyncMock(return_value=snapshot_payload(4))):
            tiers = await tier_engine.get_tiers([address(0), address(3)])

        assert tiers[address(0)].tier == 1
        assert tiers[address(3)].rank == 4
        assert mock_ledger.calls == []
        assert mock_redis_client.ttls[CACHE_KEY] == (SNAPSHOT_MAX_AGE_MS - 60_000) // 1000

    @pytest.mark.asyncio
    async def test_count_mismatch_falls_back_to_ledger(self, tier_engine, mock_ledger):
        mock_ledger.respond(WALLETS_PID, "Get-Wallets", wallets_response(10))
        payload = snapshot_payload(4, total_holders=5)

        with patch("cache_service.tiers.engine.fetch_snapshot_endpoint", AsyncMock(return_value=payload)):
            snapshot = await tier_engine.get_snapshot()

        assert snapshot.total_wallets == 10
        assert len(mock_ledger.calls_for(WALLETS_PID, "Get-Wallets")) == 1

    @pytest.mark.asyncio
    async def test_expired_snapshot_falls_back_to_ledger(self, tier_engine, mock_ledger):
        mock_ledger.respond(WALLETS_PID, "Get-Wallets", wallets_response(2))
        payload = snapshot_payload(4, snapshot_timestamp=NOW_MS - SNAPSHOT_MAX_AGE_MS - 1)

        with patch("cache_service.tiers.engine.fetch_snapshot_endpoint", AsyncMock(return_value=payload)):
            snapshot = await tier_engine.get_snapshot()

        assert snapshot.total_wallets == 2

    @pytest.mark.asyncio
    async def test_without_snapshot_url_reads_ledger(self, cache_store, mock_ledger, clock, recording_sleep):
        engine = TierEngine(cache_store, None, mock_ledger, WALLETS_PID, clock=clock)
        mock_ledger.respond(WALLETS_PID, "Get-Wallets", wallets_response(3))

        snapshot = await engine.get_snapshot()

        assert snapshot.total_wallets == 3

    @pytest.mark.asyncio
    async def test_ledger_retries_alternate_compute_units(self, tier_engine, mock_ledger, recording_sleep):
        def flaky(call_count):
            if call_count < 3:
                return ConnectionError("compute unit timeout")
            return wallets_response(1)

        mock_ledger.respond(WALLETS_PID, "Get-Wallets", flaky)

        with patch("cache_service.tiers.engine.fetch_snapshot_endpoint", AsyncMock(side_effect=ConnectionError("down"))):
            snapshot = await tier_engine.get_snapshot()

        assert snapshot.total_wallets == 1
        assert [call["cu_url"] for call in mock_ledger.calls] == [
            "https://cu-a.example",
            "https://cu-b.example",
            "https://cu-a.example",
        ]
        assert recording_sleep.calls == [0.5, 0.5]

    @pytest.mark.asyncio
    async def test_all_sources_fail(self, tier_engine, mock_ledger):
        mock_ledger.respond(WALLETS_PID, "Get-Wallets", ConnectionError("down"))

        with patch("cache_service.tiers.engine.fetch_snapshot_endpoint", AsyncMock(side_effect=ConnectionError("down"))):
            with pytest.raises(ExhaustedRetriesError):
                await tier_engine.get_snapshot()

        assert len(mock_ledger.calls) == 3

    @pytest.mark.asyncio
    async def test_cached_snapshot_skips_sources(self, tier_engine, mock_ledger, mock_redis_client):
        cached = TierSnapshot.from_ranked_wallets([{"address": address(7), "balance": "9"}], NOW_MS)
        mock_redis_client.cache[CACHE_KEY] = cached.to_dict()
        fetch = AsyncMock()

        with patch("cache_service.tiers.engine.fetch_snapshot_endpoint", fetch):
            tiers = await tier_engine.get_tiers([address(7)])

        assert isinstance(tiers[address(7)], WalletTierRecord)
        assert tiers[address(7)].rank == 1
        fetch.assert_not_called()
        assert mock_ledger.calls == []

    @pytest.mark.asyncio
    async def test_already_expired_ledger_snapshot_is_not_cached(self, tier_engine, mock_ledger, mock_redis_client):
        mock_ledger.respond(WALLETS_PID, "Get-Wallets", wallets_response(2, snapshot_timestamp=NOW_MS - SNAPSHOT_MAX_AGE_MS))

        with patch("cache_service.tiers.engine.fetch_snapshot_endpoint", AsyncMock(side_effect=ConnectionError("down"))):
            snapshot = await tier_engine.get_snapshot()

        assert snapshot.total_wallets == 2
        assert CACHE_KEY not in mock_redis_client.cache
