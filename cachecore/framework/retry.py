"""Bounded retry with attempt-indexed backoff."""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

import structlog


logger = structlog.get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[int], Awaitable[T]]
DelayFn = Callable[[int], float]
SleepFn = Callable[[float], Awaitable[None]]


def fixed_delay(seconds: float) -> DelayFn:
    """Same delay after every failed attempt."""
    return lambda attempt: seconds


def exponential_backoff(base: float, factor: float = 2.0, max_delay: Optional[float] = None) -> DelayFn:
    """``base * factor**attempt``, capped at ``max_delay`` when given."""
    def delay(attempt: int) -> float:
        value = base * (factor ** attempt)
        if max_delay is not None:
            return min(value, max_delay)
        return value
    return delay


async def execute_with_retry(
    operation: Operation,
    max_attempts: int = 3,
    delay: DelayFn = fixed_delay(1.0),
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """
    Run ``operation(attempt)`` until it succeeds or ``max_attempts`` is used up.

    The 0-based attempt index is passed through so callers can vary behaviour
    per attempt (for example alternating between two upstream endpoints).
    ``delay(attempt)`` is slept after each failed attempt except the last one;
    on exhaustion the last error is re-raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(max_attempts):
        try:
            return await operation(attempt)
        except Exception as e:
            if attempt == max_attempts - 1:
                logger.warning(
                    "Retries exhausted",
                    attempts=max_attempts,
                    error=str(e),
                )
                raise
            wait = delay(attempt)
            logger.warning(
                "Attempt failed, retrying",
                attempt=attempt + 1,
                max_attempts=max_attempts,
                delay=wait,
                error=str(e),
            )
            await sleep(wait)

    # unreachable: the last attempt either returns or raises
    raise RuntimeError("max attempts reached")


@dataclass
class RetryPolicy:
    """Retry settings bundled for reuse across call sites."""
    max_attempts: int = 3
    delay: DelayFn = field(default_factory=lambda: fixed_delay(1.0))
    sleep: SleepFn = asyncio.sleep

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def exponential(
        cls,
        max_attempts: int,
        base_delay: float,
        max_delay: Optional[float] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> "RetryPolicy":
        """Policy with ``base_delay * 2**attempt`` backoff."""
        return cls(
            max_attempts=max_attempts,
            delay=exponential_backoff(base_delay, 2.0, max_delay),
            sleep=sleep,
        )

    async def execute(self, operation: Operation) -> T:
        """Run ``operation`` under this policy."""
        return await execute_with_retry(
            operation,
            max_attempts=self.max_attempts,
            delay=self.delay,
            sleep=self.sleep,
        )
