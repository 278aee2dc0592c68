"""
Bounded retry with exponential backoff and jitter.

Used around calls to external services whose transient failures (throttling,
brief unavailability) should be absorbed inside a single job attempt.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from riskjobs.config.logging import get_logger
from riskjobs.v1.core.exceptions import ConfigurationError

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 200
DEFAULT_MAX_DELAY_MS = 5000


def compute_backoff_delay(
    attempt: int,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
    rand: Callable[[], float] = random.random,
) -> float:
    """Delay in milliseconds to wait after the given (1-based) failed attempt."""
    exponential = base_delay_ms * (2 ** (attempt - 1))
    jitter = rand() * base_delay_ms
    return min(exponential + jitter, max_delay_ms)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay_ms: float = DEFAULT_BASE_DELAY_MS,
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS,
    is_retryable: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[Exception, int], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds or the retry budget is spent.

    Args:
        fn: Zero-argument coroutine factory, invoked once per attempt
        max_attempts: Upper bound on invocations of ``fn``
        base_delay_ms: Base of the exponential backoff and jitter range
        max_delay_ms: Cap applied to every computed delay
        is_retryable: Predicate deciding whether an error may be retried
        on_retry: Observer called with the error and failed attempt number
            before each backoff sleep
        sleep: Awaitable sleep taking seconds

    Returns:
        The value returned by the first successful attempt

    Raises:
        ConfigurationError: If ``max_attempts`` is below 1
        Exception: The error from the final attempt, or the first
            non-retryable error
    """
    if max_attempts < 1:
        raise ConfigurationError(
            "max_attempts must be >= 1", {"max_attempts": max_attempts}
        )

    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt == max_attempts:
                raise
            if is_retryable is not None and not is_retryable(e):
                raise

            if on_retry is not None:
                on_retry(e, attempt)

            delay_ms = compute_backoff_delay(attempt, base_delay_ms, max_delay_ms)
            logger.debug(
                "Retrying after failure",
                attempt=attempt,
                max_attempts=max_attempts,
                delay_ms=round(delay_ms, 1),
                error=str(e),
            )
            await sleep(delay_ms / 1000)

    # Unreachable: the final attempt either returns or re-raises
    raise AssertionError("with_retry exhausted without result")
