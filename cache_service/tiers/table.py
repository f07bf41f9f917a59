"""Percentile tier table and rank arithmetic."""

import math
import re
from dataclasses import dataclass
from typing import List, Tuple

ADDRESS_PATTERN = re.compile(r"^[a-z0-9_-]{43}$", re.IGNORECASE)

PROGRESS_SCALE = 10 ** 6


@dataclass(frozen=True)
class Tier:
    """A percentile bucket: wallets ranked within the top ``threshold_percent``."""
    level: int
    name: str
    threshold_percent: int
    progress_min: int
    progress_max: int


TIERS: List[Tier] = [
    Tier(level=1, name="Prime", threshold_percent=2, progress_min=98, progress_max=100),
    Tier(level=2, name="Edge", threshold_percent=20, progress_min=80, progress_max=98),
    Tier(level=3, name="Reserve", threshold_percent=50, progress_min=50, progress_max=80),
    Tier(level=4, name="Select", threshold_percent=80, progress_min=20, progress_max=50),
    Tier(level=5, name="Core", threshold_percent=100, progress_min=0, progress_max=20),
]

LOWEST_TIER = TIERS[-1].level


def _max_rank(threshold_percent: int, total: int) -> int:
    return math.ceil(threshold_percent * total / 100)


def tier_thresholds(total: int) -> List[Tuple[int, int]]:
    """``(min_rank, max_rank)`` per tier for ``total`` ranked wallets; empty when total <= 0."""
    if total <= 0:
        return []

    spans = []
    previous_max = 0
    for tier in TIERS:
        max_rank = _max_rank(tier.threshold_percent, total)
        spans.append((previous_max + 1, max_rank))
        previous_max = max_rank
    return spans


def tier_of(rank: int, total: int) -> int:
    """1-based tier level of ``rank`` among ``total`` wallets."""
    if rank <= 0 or total <= 0:
        return LOWEST_TIER

    for tier in TIERS:
        if rank <= _max_rank(tier.threshold_percent, total):
            return tier.level
    return LOWEST_TIER


def progress_of(rank: int, total: int) -> float:
    """Share of wallets ranked at or below ``rank``, in percent, truncated to six decimals."""
    if rank <= 0 or total <= 0:
        return 0
    return math.floor(((total - rank + 1) / total) * 100 * PROGRESS_SCALE) / PROGRESS_SCALE


def tier_name(level: int) -> str:
    for tier in TIERS:
        if tier.level == level:
            return tier.name
    raise KeyError(level)


def is_valid_address(address) -> bool:
    return isinstance(address, str) and ADDRESS_PATTERN.fullmatch(address) is not None
