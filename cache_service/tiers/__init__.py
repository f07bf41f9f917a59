"""Percentile wallet tiers."""

from .engine import TierEngine, TierSnapshot, WalletTierRecord, validate_snapshot
from .table import TIERS, is_valid_address, progress_of, tier_of, tier_thresholds

__all__ = [
    "TierEngine",
    "TierSnapshot",
    "WalletTierRecord",
    "validate_snapshot",
    "TIERS",
    "is_valid_address",
    "progress_of",
    "tier_of",
    "tier_thresholds",
]
