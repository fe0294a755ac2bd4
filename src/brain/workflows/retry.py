"""Retry with exponential backoff for workflow operations.

Note-store calls and specialist agent runs fail transiently; both go through
`async_with_retry` (or `StepRunner`, which shares the backoff schedule).
Errors that `brain.errors.is_retriable` rejects are re-raised on first sight.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Awaitable, Callable, TypeVar

from brain.errors import is_retriable
from brain.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

__all__ = [
    "async_with_retry",
    "backoff_delay",
    "RetryConfig",
    "MaxRetriesExceeded",
    "DEFAULT_CONFIG",
    "NO_RETRY",
]


class MaxRetriesExceeded(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, operation_name: str, attempts: int, last_exception: Exception | None = None):
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(
            f"{operation_name} failed after {attempts} attempts"
            + (f": {last_exception}" if last_exception else "")
        )


class RetryConfig:
    """Attempt budget and backoff schedule for one kind of operation."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        should_retry: Callable[[Exception], bool] = is_retriable,
    ):
        """Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts (including first try)
            base_delay: Initial delay between retries in seconds
            max_delay: Maximum delay between retries in seconds
            exponential_base: Base for exponential backoff calculation
            should_retry: Predicate deciding whether a caught exception is
                worth another attempt
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.should_retry = should_retry


DEFAULT_CONFIG = RetryConfig(max_attempts=3, base_delay=2.0, max_delay=30.0)

# Single attempt; hook handlers must answer the host promptly
NO_RETRY = RetryConfig(max_attempts=1, base_delay=0)


def backoff_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before retrying after zero-based `attempt`, with up to 10% jitter."""
    delay = min(config.base_delay * (config.exponential_base**attempt), config.max_delay)
    # Non-crypto jitter for backoff scheduling.
    return delay + random.uniform(0, delay * 0.1)  # nosec B311


async def async_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    operation_name: str | None = None,
    **kwargs: Any,
) -> T:
    """Await `func` until it succeeds or the attempt budget runs out.

    Raises:
        MaxRetriesExceeded: All attempts failed with retriable errors
        Exception: A non-retriable error, re-raised on first occurrence
    """
    config = config or DEFAULT_CONFIG
    name = operation_name or getattr(func, "__name__", "operation")

    for attempt in range(config.max_attempts):
        try:
            return await func(*args, **kwargs)
        except Exception as exc:
            if not config.should_retry(exc):
                raise
            if attempt + 1 >= config.max_attempts:
                logger.error("retry_exhausted", operation=name, attempts=config.max_attempts, error=str(exc))
                raise MaxRetriesExceeded(name, config.max_attempts, exc) from exc

            delay = backoff_delay(attempt, config)
            logger.warning(
                "retry_scheduled",
                operation=name,
                attempt=attempt + 1,
                max_attempts=config.max_attempts,
                delay_seconds=round(delay, 2),
                error=str(exc),
            )
            await asyncio.sleep(delay)

    raise MaxRetriesExceeded(name, config.max_attempts)
