"""Exponential backoff with jitter for Cloud Tasks calls.

Retries on transient gRPC errors (deadline exceeded, unavailable, internal,
resource exhausted) and on local call timeouts. Permanent errors (not found,
invalid argument, permission denied) are raised on the first attempt.
Logs each retry attempt.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from google.api_core import exceptions

logger = logging.getLogger(__name__)

T = TypeVar("T")

# gRPC error classes that trigger a retry
RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    exceptions.DeadlineExceeded,
    exceptions.ServiceUnavailable,
    exceptions.InternalServerError,
    exceptions.TooManyRequests,
    exceptions.ResourceExhausted,
    asyncio.TimeoutError,
)


def is_transient(exc: BaseException) -> bool:
    return isinstance(exc, RETRYABLE_EXCEPTIONS)


class RetryExhausted(Exception):
    """Every attempt failed with a transient error."""

    def __init__(self, last: BaseException, attempts: int) -> None:
        super().__init__(f"{type(last).__name__} after {attempts} attempts")
        self.last = last
        self.attempts = attempts


async def call_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    name: str,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    jitter: float = 0.3,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> tuple[T, int]:
    """Await ``fn()`` with retries; returns ``(result, attempts_used)``.

    Args:
        fn: Zero-argument coroutine factory, called once per attempt.
        name: Operation name for log lines.
        max_attempts: Total attempts including the first.
        base_delay: Initial delay in seconds.
        max_delay: Maximum delay cap in seconds.
        jitter: Jitter factor (0.0-1.0).
        sleep: Awaitable sleep, replaceable in tests.

    Raises:
        RetryExhausted: transient failures on every attempt.
        Exception: the first non-transient error, unchanged.
    """
    attempts = max(1, max_attempts)
    for attempt in range(attempts):
        try:
            return await fn(), attempt + 1
        except RETRYABLE_EXCEPTIONS as e:
            if attempt == attempts - 1:
                raise RetryExhausted(e, attempts) from e
            delay = compute_delay(attempt, base_delay, max_delay, jitter)
            logger.warning(
                "Retry %d/%d for %s (%s), waiting %.1fs",
                attempt + 1,
                attempts - 1,
                name,
                type(e).__name__,
                delay,
            )
            await sleep(delay)
    raise AssertionError("unreachable")


def compute_delay(attempt: int, base_delay: float, max_delay: float, jitter: float) -> float:
    """Exponential backoff: base * 2^attempt, capped, with +/- jitter."""
    delay = min(base_delay * (2**attempt), max_delay)
    jitter_amount = delay * jitter
    delay += random.uniform(-jitter_amount, jitter_amount)
    return max(0.0, delay)
