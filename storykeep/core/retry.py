"""
Shared retry policy for remote I/O: a fixed attempt budget and a pluggable delay strategy.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .config import (
    PUBLISH_INITIAL_DELAY_SEC,
    PUBLISH_MAX_ATTEMPTS,
    SETTINGS_FETCH_MAX_ATTEMPTS,
    SETTINGS_FETCH_RETRY_DELAY_SEC,
)
from ..util.logging import logger

T = TypeVar("T")

# attempt number (1-based) of the failed attempt -> seconds to wait before the next one
DelayStrategy = Callable[[int], float]


def fixed_delay(seconds: float) -> DelayStrategy:
    """Same delay after every failed attempt, no jitter."""
    def strategy(attempt: int) -> float:
        return seconds
    return strategy


def exponential_backoff(initial: float, factor: float = 2.0) -> DelayStrategy:
    """initial, initial*factor, initial*factor**2, ..."""
    def strategy(attempt: int) -> float:
        return initial * (factor ** (attempt - 1))
    return strategy


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    delay_strategy: DelayStrategy

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1: {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        return self.delay_strategy(attempt)


def settings_fetch_policy() -> RetryPolicy:
    return RetryPolicy(SETTINGS_FETCH_MAX_ATTEMPTS, fixed_delay(SETTINGS_FETCH_RETRY_DELAY_SEC))


def publish_policy() -> RetryPolicy:
    return RetryPolicy(PUBLISH_MAX_ATTEMPTS, exponential_backoff(PUBLISH_INITIAL_DELAY_SEC))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    name: str = "operation",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
) -> T:
    """
    Run operation until it succeeds or the policy's attempt budget is spent.

    Sleeps between attempts, never after the last one. The last exception is
    re-raised unchanged when the budget is exhausted; exceptions not listed in
    retry_on propagate immediately.
    """
    sleep = sleep or asyncio.sleep
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as e:
            if attempt >= policy.max_attempts:
                raise

            delay = policy.delay_for(attempt)
            logger.log_retry_attempt(name, attempt, policy.max_attempts, delay, e)
            if on_retry is not None:
                on_retry(attempt, e, delay)
            await sleep(delay)
