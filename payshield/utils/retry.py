"""
Bounded retry with exponential backoff, shared by the OCR, reasoning and
push adapters. Each adapter supplies its own retryability predicate.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from payshield.errors import TransientServiceError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.3  # seconds
    max_delay: float = 2.0
    factor: float = 2.0
    jitter: bool = True


def compute_delay(policy: RetryPolicy, attempt: int, rng: Callable[[], float] = random.random) -> float:
    """Delay before the retry that follows ``attempt`` (1-based)."""
    delay = min(policy.max_delay, policy.base_delay * (policy.factor ** (attempt - 1)))
    if policy.jitter:
        delay *= 0.7 + rng() * 0.6
    return delay


def is_transient(error: BaseException) -> bool:
    """Default predicate: only errors classified as transient are retried."""
    return isinstance(error, TransientServiceError)


async def with_retry(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    is_retryable: Callable[[BaseException], bool] = is_transient,
    on_retry: Optional[Callable[[BaseException, int], None]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``operation(attempt)`` until it succeeds, a non-retryable error is
    raised, or ``policy.attempts`` is exhausted. The last error propagates.
    """
    attempts = max(1, policy.attempts)
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation(attempt)
        except Exception as error:
            if attempt >= attempts or not is_retryable(error):
                raise
            if on_retry is not None:
                on_retry(error, attempt)
            await sleep(compute_delay(policy, attempt))
