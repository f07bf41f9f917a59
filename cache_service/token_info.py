"""Token metadata read from each token's ledger process."""

import math
from typing import Any, Dict, Optional

import structlog

from cachecore.framework.cache import CacheResolution, CacheResolver
from cachecore.framework.refresher import RefreshReport, ShardedRefresher
from cachecore.ledger.client import DryRunResult, LedgerClient, LedgerMessage, TagMatch
from cachecore.utils.errors import InvalidResponseShapeError


logger = structlog.get_logger(__name__)

NAMESPACE = "tokenInfo:"


def token_info_key(token_id: str) -> str:
    return f"{NAMESPACE}{token_id}"


def _denomination(value: Any) -> float:
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return int(number) if number.is_integer() else number


def _from_data(message: LedgerMessage, token_id: str) -> Optional[Dict[str, Any]]:
    data = message.parse_data_json()
    if not isinstance(data, dict):
        return None

    ticker = data.get("Ticker") or data.get("ticker")
    name = data.get("Name") or data.get("name")
    if not ticker or not name:
        return None

    collectible = (
        isinstance(data.get("transferable"), bool)
        or isinstance(data.get("Transferable"), bool)
        or ticker == "ATOMIC"
    )
    return {
        "Ticker": ticker,
        "Name": name,
        "Denomination": _denomination(data.get("Denomination") or data.get("denomination")),
        "Logo": data.get("Logo") or data.get("logo") or token_id,
        "type": "collectible" if collectible else "asset",
    }


def _from_tags(message: LedgerMessage) -> Optional[Dict[str, Any]]:
    def tag(name: str) -> Optional[str]:
        return message.find_tag(name, TagMatch.CASE_INSENSITIVE)

    ticker, name = tag("Ticker"), tag("Name")
    if not ticker and not name:
        return None

    return {
        "Name": name,
        "Ticker": ticker,
        "Denomination": _denomination(tag("Denomination")),
        "Logo": tag("Logo"),
        "type": "collectible" if tag("Transferable") or ticker == "ATOMIC" else "asset",
    }


def parse_token_info(result: DryRunResult, token_id: str) -> Dict[str, Any]:
    """
    Token metadata from an ``Action=Info`` dry-run.

    Messages are tried in order. A message's ``Data`` JSON wins when it has
    both a ticker and a name; otherwise its tags are read case-insensitively
    and used when they carry a ticker or a name.
    """
    for message in result.messages:
        info = _from_data(message, token_id) or _from_tags(message)
        if info is not None:
            return info

    raise InvalidResponseShapeError("Could not load token info.", upstream="ledger")


class TokenInfoService:
    """Token metadata served from cache regardless of age and refreshed on schedule."""

    def __init__(
        self,
        resolver: CacheResolver,
        ledger: LedgerClient,
        refresher: ShardedRefresher,
        ttl: int = 86400,
    ):
        self.resolver = resolver
        self.ledger = ledger
        self.refresher = refresher
        self.ttl = ttl

    async def fetch_token_info(self, token_id: str) -> Dict[str, Any]:
        result = await self.ledger.dry_run(token_id, {"Action": "Info"})
        logger.debug("Fetched token info", token_id=token_id)
        return parse_token_info(result, token_id)

    async def get_token_info(self, token_id: str) -> CacheResolution:
        return await self.resolver.resolve(
            token_info_key(token_id),
            lambda: self.fetch_token_info(token_id),
            None,
            ttl=self.ttl,
        )

    async def refresh_all_token_infos(
        self,
        num_chunks: int = 1,
        concurrency: int = 10,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ) -> RefreshReport:
        """Re-read today's shard of cached tokens from the ledger."""
        return await self.refresher.refresh_all(
            NAMESPACE,
            self.fetch_token_info,
            num_chunks=num_chunks,
            concurrency=concurrency,
            max_retries=max_retries,
            base_delay=base_delay,
            ttl=self.ttl,
        )
