"""Retry and backoff utilities.

Used for two things: delivering retry signals to the downstream scheduler
over HTTP, and re-running optimistic read-merge-write cycles (metric
recording) that lost a compare-and-set race.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from jobwatch.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """How often and how patiently to retry."""

    max_attempts: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 10.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """
    Seconds to wait after the given zero-based failed attempt.

    min(backoff_base * 2^attempt, backoff_max), scaled by a random factor in
    [0.5, 1.5) when jitter is enabled.
    """
    delay = min(config.backoff_base * (2**attempt), config.backoff_max)
    if config.jitter:
        delay *= 0.5 + random.random()
    return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Await `fn()` until it succeeds or the attempts run out.

    Exceptions outside `retryable_exceptions` propagate on the first attempt;
    the last retryable exception is re-raised once attempts are exhausted.

    Example:
        ```python
        execution = await retry_with_backoff(
            attempt,
            config=RetryConfig(max_attempts=5, retryable_exceptions=(ConflictError,)),
            operation_name=f"record_metrics:{execution_id}",
        )
        ```
    """
    config = config or RetryConfig()
    if config.max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {config.max_attempts}")

    attempt = 0
    while True:
        try:
            return await fn()
        except config.retryable_exceptions as e:
            attempt += 1
            if attempt >= config.max_attempts:
                logger.bind(
                    operation=operation_name,
                    attempts=attempt,
                    error=str(e),
                ).error("retry_exhausted")
                raise

            delay = backoff_delay(attempt - 1, config)
            logger.bind(
                operation=operation_name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                delay_seconds=round(delay, 3),
                error=str(e),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)
