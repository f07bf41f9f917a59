"""
Wallet tier resolution.

Tiers are computed from a full ranked-wallet snapshot. The snapshot comes
from a precomputed HTTP endpoint when that endpoint serves a complete,
recent capture, and is otherwise rebuilt from the wallet list held by the
ledger. Either way the whole snapshot is cached until it turns 24 hours old.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Union

import aiohttp
import structlog

from cachecore.framework.cache import CacheStore, ttl_until
from cachecore.framework.metrics import MetricsCollector
from cachecore.framework.provider_chain import ProviderChain, ProviderResult
from cachecore.framework.retry import RetryPolicy
from cachecore.ledger.client import LedgerClient
from cachecore.utils.errors import (
    ExhaustedRetriesError,
    InvalidResponseShapeError,
    SnapshotInvalidError,
    TransientUpstreamError,
)

from .table import LOWEST_TIER, is_valid_address, progress_of, tier_of


logger = structlog.get_logger(__name__)

CACHE_KEY = "wallets-tier-info"
SNAPSHOT_MAX_AGE_MS = 24 * 60 * 60 * 1000

_RECORD_FIELDS = ("balance", "rank", "tier", "progress")


@dataclass
class WalletTierRecord:
    """Tier standing of one wallet within a snapshot."""
    balance: str
    rank: Union[int, str]
    tier: int
    progress: float
    snapshot_timestamp: int
    total_holders: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "balance": self.balance,
            "rank": self.rank,
            "tier": self.tier,
            "progress": self.progress,
            "snapshotTimestamp": self.snapshot_timestamp,
            "totalHolders": self.total_holders,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletTierRecord":
        return cls(
            balance=str(data["balance"]),
            rank=data["rank"],
            tier=int(data["tier"]),
            progress=data["progress"],
            snapshot_timestamp=data.get("snapshotTimestamp") or 0,
            total_holders=data.get("totalHolders") or 0,
        )

    @classmethod
    def default(cls, snapshot_timestamp: int, total_holders: int) -> "WalletTierRecord":
        """Record for an address the snapshot does not rank."""
        return cls(
            balance="0",
            rank="",
            tier=LOWEST_TIER,
            progress=0,
            snapshot_timestamp=snapshot_timestamp,
            total_holders=total_holders,
        )


@dataclass
class TierSnapshot:
    """A full ranked-wallet capture."""
    records: Dict[str, WalletTierRecord] = field(default_factory=dict)
    snapshot_timestamp: int = 0
    total_wallets: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "walletsTierInfo": {address: record.to_dict() for address, record in self.records.items()},
            "snapshotTimestamp": self.snapshot_timestamp,
            "totalWallets": self.total_wallets,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Optional["TierSnapshot"]:
        """Parse a cached snapshot; malformed data reads as absent."""
        if not isinstance(data, dict) or not isinstance(data.get("walletsTierInfo"), dict):
            return None
        try:
            records = {
                address: WalletTierRecord.from_dict(record)
                for address, record in data["walletsTierInfo"].items()
            }
            return cls(
                records=records,
                snapshot_timestamp=int(data.get("snapshotTimestamp") or 0),
                total_wallets=int(data.get("totalWallets") or 0),
            )
        except (KeyError, TypeError, ValueError):
            return None

    @classmethod
    def from_ranked_wallets(cls, wallets: List[Dict[str, Any]], snapshot_timestamp: int) -> "TierSnapshot":
        """Build a snapshot from a balance-sorted wallet list; rank is the 1-based position."""
        total = len(wallets)
        records = {}
        for index, wallet in enumerate(wallets):
            rank = index + 1
            records[wallet["address"]] = WalletTierRecord(
                balance=str(wallet.get("balance", "0")),
                rank=rank,
                tier=tier_of(rank, total),
                progress=progress_of(rank, total),
                snapshot_timestamp=snapshot_timestamp,
                total_holders=total,
            )
        return cls(records=records, snapshot_timestamp=snapshot_timestamp, total_wallets=len(records))

    def lookup(self, addresses: Iterable[str]) -> Dict[str, WalletTierRecord]:
        return {
            address: self.records.get(address)
            or WalletTierRecord.default(self.snapshot_timestamp, self.total_wallets)
            for address in addresses
        }


def _is_well_formed(record: Any) -> bool:
    return isinstance(record, dict) and all(name in record for name in _RECORD_FIELDS)


def validate_snapshot(payload: Any, now_ms: int) -> TierSnapshot:
    """
    Accept a precomputed address-keyed snapshot only if it is complete and recent.

    Raises:
        SnapshotInvalidError: no well-formed record, missing or zero
            ``snapshotTimestamp``/``totalHolders``, a record count that differs
            from ``totalHolders``, or an age of 24 hours or more.
    """
    if not isinstance(payload, dict):
        raise SnapshotInvalidError("Snapshot is not an object", reason="shape")

    well_formed = {address: record for address, record in payload.items() if _is_well_formed(record)}
    if not well_formed:
        raise SnapshotInvalidError("Snapshot has no well-formed records", reason="empty")

    first = next(iter(well_formed.values()))
    snapshot_timestamp = first.get("snapshotTimestamp")
    total_holders = first.get("totalHolders")
    numeric = all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in (snapshot_timestamp, total_holders))
    if not numeric or not snapshot_timestamp or not total_holders:
        raise SnapshotInvalidError("Snapshot is missing snapshotTimestamp or totalHolders", reason="metadata")

    valid = {address: record for address, record in well_formed.items() if is_valid_address(address)}
    if len(valid) != total_holders:
        raise SnapshotInvalidError(
            f"Snapshot holds {len(valid)} records but declares {total_holders}",
            reason="count_mismatch",
        )

    if now_ms - snapshot_timestamp >= SNAPSHOT_MAX_AGE_MS:
        raise SnapshotInvalidError("Snapshot is older than 24 hours", reason="expired")

    try:
        records = {address: WalletTierRecord.from_dict(record) for address, record in valid.items()}
    except (KeyError, TypeError, ValueError) as e:
        raise SnapshotInvalidError(f"Snapshot record is malformed: {e}", reason="shape") from e

    return TierSnapshot(records=records, snapshot_timestamp=int(snapshot_timestamp), total_wallets=len(records))


class TierEngine:
    """Resolves tier records for wallet addresses."""

    def __init__(
        self,
        store: CacheStore,
        session: aiohttp.ClientSession,
        ledger: LedgerClient,
        wallets_process_id: str,
        snapshot_url: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        clock=time.time,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.session = session
        self.ledger = ledger
        self.wallets_process_id = wallets_process_id
        self.snapshot_url = snapshot_url
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock
        self.logger = structlog.get_logger("tier-engine")

        self.chain = ProviderChain(
            [self._from_snapshot_endpoint, self._from_ledger],
            metrics=metrics,
            name="tier-snapshot-chain",
        )

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def get_tiers(self, addresses: Iterable[str]) -> Dict[str, WalletTierRecord]:
        """Tier record per address; unranked addresses get the default record."""
        snapshot = await self.get_snapshot()
        return snapshot.lookup(addresses)

    async def get_snapshot(self) -> TierSnapshot:
        """Cached snapshot, or a freshly acquired one (cached until it turns 24h old)."""
        snapshot = TierSnapshot.from_dict(await self.store.get(CACHE_KEY))
        if snapshot is not None:
            return snapshot

        result = await self.chain.resolve([CACHE_KEY])
        snapshot = result.values.get(CACHE_KEY)
        if not result.succeeded or snapshot is None:
            raise ExhaustedRetriesError("No tier snapshot source succeeded", key=CACHE_KEY)

        ttl = ttl_until(snapshot.snapshot_timestamp + SNAPSHOT_MAX_AGE_MS, self.now_ms())
        if ttl > 0:
            await self.store.set(CACHE_KEY, snapshot.to_dict(), ttl)
        else:
            self.logger.warning("Snapshot already expired, not caching", snapshot_timestamp=snapshot.snapshot_timestamp)
        return snapshot

    async def _from_snapshot_endpoint(self, keys: List[str]) -> ProviderResult:
        if not self.snapshot_url:
            return ProviderResult.failed(keys)

        payload = await fetch_snapshot_endpoint(self.session, self.snapshot_url)
        snapshot = validate_snapshot(payload, self.now_ms())
        self.logger.info("Using precomputed tier snapshot", total_wallets=snapshot.total_wallets)
        return ProviderResult(succeeded=True, values={key: snapshot for key in keys})

    async def _from_ledger(self, keys: List[str]) -> ProviderResult:
        async def attempt_dry_run(attempt: int):
            return await self.ledger.dry_run(
                self.wallets_process_id,
                {"Action": "Get-Wallets"},
                cu_url=self.ledger.endpoint_for(attempt),
            )

        result = await self.retry_policy.execute(attempt_dry_run)
        data = result.first_data_json(default={})
        wallets = data.get("wallets") if isinstance(data, dict) else None
        snapshot_timestamp = data.get("snapshotTimestamp") if isinstance(data, dict) else None
        if not isinstance(wallets, list) or not isinstance(snapshot_timestamp, (int, float)):
            raise InvalidResponseShapeError("Wallet list response is missing wallets or snapshotTimestamp", upstream="ledger")

        snapshot = TierSnapshot.from_ranked_wallets(
            [wallet for wallet in wallets if isinstance(wallet, dict) and "address" in wallet],
            int(snapshot_timestamp),
        )
        self.logger.info("Rebuilt tier snapshot from ledger", total_wallets=snapshot.total_wallets)
        return ProviderResult(succeeded=True, values={key: snapshot for key in keys})

    _from_snapshot_endpoint.provider_name = "tier-snapshot-endpoint"
    _from_ledger.provider_name = "tier-ledger"


async def fetch_snapshot_endpoint(session: aiohttp.ClientSession, url: str) -> Any:
    try:
        async with session.get(url, headers={"accept": "application/json"}) as response:
            if response.status >= 400:
                raise TransientUpstreamError(
                    f"Snapshot endpoint error: {response.status}",
                    upstream=url,
                    status=response.status,
                )
            return await response.json(content_type=None)
    except aiohttp.ClientError as e:
        raise TransientUpstreamError(f"Snapshot endpoint request failed: {e}", upstream=url) from e
