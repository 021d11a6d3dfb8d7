"""Retry and backoff utilities for outbound calls.

A single combinator, `retry_with_backoff`, is shared by the generation client
and the delivery client. What gets retried is decided by the policy's
`should_retry` predicate; by default only errors carrying a retryable HTTP
status code (408, 429, >=500) are retried.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from promptloop.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({408, 429})


def is_retryable_status(status_code: int | None) -> bool:
    """Return True for request timeout, rate limiting and server errors."""
    if status_code is None:
        return False
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


def error_status(error: BaseException) -> int | None:
    """Extract an HTTP status code from an exception, if it carries one."""
    status = getattr(error, "status_code", None)
    if isinstance(status, int) and not isinstance(status, bool):
        return status
    return None


def is_retryable_error(error: BaseException) -> bool:
    """Default retry predicate: the error carries a retryable status code."""
    return is_retryable_status(error_status(error))


def backoff_delay(attempt: int, base: float = 0.4, cap: float = 4.0) -> float:
    """Delay in seconds after the given 1-based attempt: base * 2^(attempt-1), capped."""
    return min(base * (2 ** max(0, attempt - 1)), cap)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 2
    backoff_base: float = 0.4
    backoff_max: float = 4.0
    jitter: bool = False
    should_retry: Callable[[BaseException], bool] = field(default=is_retryable_error)

    def delay_for(self, attempt: int) -> float:
        delay = backoff_delay(attempt, self.backoff_base, self.backoff_max)
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay

    @property
    def attempts(self) -> int:
        return max(1, int(self.max_attempts))


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    operation_name: str = "operation",
    on_error: Callable[[int, Exception], Awaitable[None]] | None = None,
) -> T:
    """
    Execute async function with exponential backoff retry.

    Each failure is passed to `on_error(attempt, error)` before the retry
    decision is made, so callers can keep a receipt of every attempt. The
    error is re-raised immediately when the policy says it is not retryable,
    or once `max_attempts` calls have been made.

    Args:
        fn: Async function to execute (no arguments)
        policy: Retry policy, uses defaults if not provided
        operation_name: Name for logging purposes
        on_error: Optional async hook called with (attempt, error) on each failure

    Returns:
        Result of fn()

    Raises:
        Exception: The last error once retrying stops

    Example:
        ```python
        result = await retry_with_backoff(
            lambda: generate(prompt, options),
            policy=RetryPolicy(max_attempts=2),
            operation_name="generate",
        )
        ```
    """
    policy = policy or RetryPolicy()
    max_attempts = policy.attempts

    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if on_error is not None:
                await on_error(attempt, e)

            if not policy.should_retry(e):
                raise

            if attempt >= max_attempts:
                logger.bind(
                    operation=operation_name,
                    attempts=max_attempts,
                    error=str(e),
                ).error("retry_exhausted")
                raise

            delay = policy.delay_for(attempt)
            logger.bind(
                operation=operation_name,
                attempt=attempt,
                max_attempts=max_attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("Unexpected state in retry_with_backoff")
