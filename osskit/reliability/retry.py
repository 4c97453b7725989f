"""
Retry Policy: Exponential Backoff with Jitter

Implements the per-request retry strategy:
- Exponential backoff: 100ms × 2^n
- Full jitter: random(0, backoff) to prevent thundering herd
- Only errors flagged retryable (TransportError, 5xx ServiceError) are retried
- Exhaustion returns the last underlying error unchanged

Session-level resume is a separate, checkpoint-driven concern
(see osskit.transfer.multipart); nothing here persists state.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from osskit.core.config import RetryConfig
from osskit.core.errors import OssError
from osskit.core.types import Result

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration."""

    max_retries: int = 3
    base_delay_ms: int = 100
    max_delay_ms: int = 10000
    exponential_base: float = 2.0
    jitter: bool = True  # Full jitter

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        """No retries (append, complete: non-idempotent or position-bound)."""
        return cls(max_retries=0)

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
        )


@dataclass
class RetryStats:
    """Retry attempt statistics."""
    total_attempts: int = 0
    failed_attempts: int = 0
    total_delay_ms: float = 0.0
    last_error: Optional[str] = None


async def retry_with_backoff(
    func: Callable[[], Awaitable[Result[T, OssError]]],
    policy: Optional[RetryPolicy] = None,
    *,
    sleep: Sleep = asyncio.sleep,
    stats: Optional[RetryStats] = None,
    on_retry: Optional[Callable[[int, OssError], None]] = None,
) -> Result[T, OssError]:
    """
    Execute an async Result-returning operation with retry and backoff.

    Args:
        func: Zero-argument coroutine factory; called once per attempt.
        policy: Retry configuration (default if None).
        sleep: Awaitable delay, injectable for tests.
        stats: Optional accumulator for attempt counts.
        on_retry: Called with (attempt, error) before each backoff.

    Returns:
        The first Ok, the first non-retryable Err, or the last Err once
        retries are exhausted.
    """
    if policy is None:
        policy = RetryPolicy.default()
    if stats is None:
        stats = RetryStats()

    attempt = 0
    while True:
        stats.total_attempts += 1
        result = await func()
        if result.is_ok():
            return result

        error = result.error
        stats.failed_attempts += 1
        stats.last_error = str(error)

        if not error.retryable or attempt >= policy.max_retries:
            if error.retryable:
                logger.warning(
                    "Giving up after %d attempts: %s", stats.total_attempts, error
                )
            return result

        delay = calculate_backoff(
            attempt=attempt,
            base_delay_ms=policy.base_delay_ms,
            max_delay_ms=policy.max_delay_ms,
            exponential_base=policy.exponential_base,
            jitter=policy.jitter,
        )
        stats.total_delay_ms += delay
        if on_retry is not None:
            on_retry(attempt + 1, error)

        logger.debug(f"Retrying in {delay:.0f}ms (attempt {attempt + 2}): {error}")
        await sleep(delay / 1000)
        attempt += 1


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    exponential_base: float,
    jitter: bool,
) -> float:
    """
    Calculate backoff delay with optional jitter.

    Full jitter: random(0, min(cap, base * 2^attempt))
    """
    # Exponential delay
    delay = min(max_delay_ms, base_delay_ms * (exponential_base ** attempt))

    # Full jitter
    if jitter:
        delay = random.uniform(0, delay)

    return delay
