"""Fair-launch project (FLP) token registry listing."""

import math
from typing import Any, Dict, List, Optional

import structlog

from cachecore.framework.cache import CacheResolution, CacheResolver
from cachecore.framework.retry import RetryPolicy
from cachecore.ledger.client import LedgerClient
from cachecore.utils.errors import InvalidResponseShapeError


logger = structlog.get_logger(__name__)

CACHE_KEY = "flp-tokens"

FLP_REGISTRY_PROCESS_ID = "It-_AKlEfARBmJdbJew1nG9_hIaZt0t20wQc28mFGBE"
FLP_DELEGATION_PROCESS_ID = "NRP0xtzeV9MHgwLmgD254erUB7mUjMBhBkYkNYkbNEo"

# Always listed first.
PINNED_TOKEN_ID = "7GoQfmSOct_aUOWKM4xbKGg6DzAmOgdKwg8Kf-CbHm4"

TEST_TOKEN_FLP_IDS = frozenset([
    "T3M4QSF7VGa0le7KtxBDHOaIcjnZeC-SQ7nh3ABuufs",
    "So2HpldZaaVFbeH8mUGGzQBVdEzAx5HvMyMaZ47az_M",
    "4mowY7A-b6WJyVR-Tde2m3Zcl_JVxil21c15PXiHhfA",
    "-ntvNGm4onpKXS8SZ6-5sFnmjRHfMNAwS_JuR-pO504",
    "WRkDu1hOeNksAlli1R4LUUh674Q79DjSOSegdIiI68U",
    "c0-R2wvW1yRnRjQdUqetgD9tDJSCGpeJjz1HthfXwQ8",
    "wsT2snFHYQ7AX7OxnrFViyu4v5il6sIb9EYxTnBnMQc",
    "FyQ9uMx1XevItG1kE65BMvbbqcvdOGJrC_nb-PPIawk",
    "xswbZRtkjQQ8D1h6tx503iLaAxxPLWP10J2TvgbRZXk",
    "NQy9H6oAE-m55BheXbGu70nEWiiGMsL8lM9YsNJ8gD4",
    "gkcnuAZeFeqPvFvNABFKGRKGE_AsmA0T3I1_jOFF0MU",
    "Gmf5PyNLd1R4uENH2ITg03KxKMi25g1ZJl1F6AplQRc",
])

# Rewards for these projects must be claimed by hand.
MANUAL_CLAIMABLE_FLP_IDS = frozenset([
    "NXZjrPKh-fQx8BUCG_OXBUtB4Ix8Xf0gbUtREFoWQ2Q",
    "rW7h9J9jE2Xp36y4SKn2HgZaOuzRmbMfBRPwrFFifHE",
    "3eZ6_ry6FD9CB58ImCQs6Qx_rJdDUGhz-D2W1AqzHD8",
    "Wc8Rg-owsWSvrmb5XAlmSs3_4UtHo9i5ui2o9UCFuTk",
])


def _number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def to_flp_token(raw: Dict[str, Any]) -> Dict[str, Any]:
    denomination = _number(raw.get("flp_token_denomination"))
    return {
        "id": raw.get("flp_token_process"),
        "flpId": raw.get("flp_id"),
        "name": raw.get("flp_token_name"),
        "ticker": raw.get("flp_token_ticker"),
        "denomination": int(denomination) if denomination.is_integer() else denomination,
        "logo": raw.get("flp_token_logo"),
        "autoClaim": raw.get("flp_id") not in MANUAL_CLAIMABLE_FLP_IDS,
    }


def is_listed(token: Dict[str, Any]) -> bool:
    denomination = token["denomination"]
    return (
        token["id"] is not None
        and bool(token["name"])
        and bool(token["ticker"])
        and not (isinstance(denomination, float) and math.isnan(denomination))
        and token["flpId"] not in TEST_TOKEN_FLP_IDS
    )


def build_listing(raw_tokens: List[Dict[str, Any]], delegations: Dict[str, float]) -> List[Dict[str, Any]]:
    """Map, filter and order registry entries: pinned token first, then by delegated AO."""
    tokens = [to_flp_token(raw) for raw in raw_tokens if isinstance(raw, dict)]
    tokens = [token for token in tokens if is_listed(token)]

    def sort_key(token: Dict[str, Any]):
        delegated = _number(delegations.get(token["flpId"], 0))
        if math.isnan(delegated):
            delegated = 0
        return (token["id"] != PINNED_TOKEN_ID, -delegated)

    return sorted(tokens, key=sort_key)


class FlpTokenService:
    """Registry listing cached as a single entry."""

    def __init__(
        self,
        resolver: CacheResolver,
        ledger: LedgerClient,
        retry_policy: Optional[RetryPolicy] = None,
        ttl: int = 86400,
        registry_process_id: str = FLP_REGISTRY_PROCESS_ID,
        delegation_process_id: str = FLP_DELEGATION_PROCESS_ID,
    ):
        self.resolver = resolver
        self.ledger = ledger
        self.retry_policy = retry_policy or RetryPolicy()
        self.ttl = ttl
        self.registry_process_id = registry_process_id
        self.delegation_process_id = delegation_process_id
        self.logger = structlog.get_logger("flp-token-service")

    async def fetch_delegations(self) -> Dict[str, float]:
        """Delegated AO per project; empty when the tracker cannot be read."""
        try:
            result = await self.retry_policy.execute(
                lambda attempt: self.ledger.dry_run(
                    self.delegation_process_id,
                    {"Action": "Get-Total-Delegated-AO-By-Project"},
                )
            )
            data = result.first_data_json(default={})
        except Exception as e:
            self.logger.warning("Delegation totals unavailable, ordering without them", error=str(e))
            return {}

        combined = data.get("combined") if isinstance(data, dict) else None
        return combined if isinstance(combined, dict) else {}

    async def fetch_flp_tokens(self) -> List[Dict[str, Any]]:
        result = await self.retry_policy.execute(
            lambda attempt: self.ledger.dry_run(self.registry_process_id, {"Action": "Get-FLPs"})
        )
        raw_tokens = result.first_data_json(default=[])
        if not isinstance(raw_tokens, list):
            raise InvalidResponseShapeError("FLP registry response is not a list", upstream="ledger")

        delegations = await self.fetch_delegations()
        return build_listing(raw_tokens, delegations)

    async def get_flp_tokens(self) -> CacheResolution:
        return await self.resolver.resolve(CACHE_KEY, self.fetch_flp_tokens, None, ttl=self.ttl)

    async def update_flp_tokens(self) -> CacheResolution:
        return await self.resolver.refresh(CACHE_KEY, self.fetch_flp_tokens, ttl=self.ttl)
