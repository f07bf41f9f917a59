"""Deterministic day-based partitioning of a keyspace."""

import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

SECONDS_PER_DAY = 86400

_FNV_OFFSET = 0x811C9DC5
_FNV_PRIME = 0x01000193
_MASK32 = 0xFFFFFFFF


def stable_hash(key: str) -> int:
    """
    32-bit FNV-1a over the key's UTF-16 code units, followed by the
    murmur3 finalizer for avalanche.

    Pure: the result depends only on ``key``, never on process state
    (unlike the builtin ``hash``, which is salted per interpreter).
    """
    h = _FNV_OFFSET
    encoded = key.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        h ^= encoded[i] | (encoded[i + 1] << 8)
        h = (h * _FNV_PRIME) & _MASK32

    h ^= h >> 16
    h = (h * 0x85EBCA6B) & _MASK32
    h ^= h >> 13
    h = (h * 0xC2B2AE35) & _MASK32
    h ^= h >> 16
    return h


def stable_day_counter(now: Optional[float] = None) -> int:
    """Whole UTC days elapsed since 1970-01-01."""
    if now is None:
        now = time.time()
    return int(now // SECONDS_PER_DAY)


def shard_of(key: str, num_chunks: int) -> int:
    """Shard index of ``key`` among ``num_chunks`` shards."""
    if num_chunks < 1:
        raise ValueError("num_chunks must be >= 1")
    return stable_hash(key) % num_chunks


@dataclass(frozen=True)
class ShardPlan:
    """Which shard a run on a given day is responsible for."""
    num_chunks: int
    today_index: int

    @classmethod
    def for_day(cls, num_chunks: int, day: int) -> "ShardPlan":
        if num_chunks < 1:
            raise ValueError("num_chunks must be >= 1")
        return cls(num_chunks=num_chunks, today_index=day % num_chunks)

    @classmethod
    def today(cls, num_chunks: int, clock: Callable[[], float] = time.time) -> "ShardPlan":
        return cls.for_day(num_chunks, stable_day_counter(clock()))

    def owns(self, key: str) -> bool:
        return shard_of(key, self.num_chunks) == self.today_index

    def select(self, keys: Iterable[str]) -> List[str]:
        return [key for key in keys if self.owns(key)]
