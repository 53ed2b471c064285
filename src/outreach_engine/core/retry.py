"""Retry with exponential backoff for transient mailbox failures.

Two users:
- ``retry_async`` wraps a single outbound call (SMTP send)
- ``tick_backoff`` spaces out poller ticks after consecutive failures

Usage:
    from outreach_engine.core.retry import retry_async, MAILBOX_RETRY_CONFIG

    await retry_async(smtp_send, message, config=MAILBOX_RETRY_CONFIG)
"""
from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from outreach_engine.core.exceptions import MailboxError, TransientIOError
from outreach_engine.core.log_setup import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class RetryExhausted(TransientIOError):
    """Every attempt failed with a retryable error."""

    error_code = "RETRY_EXHAUSTED"

    def __init__(self, message: str, last_error: Exception | None = None, attempts: int = 0):
        super().__init__(message, details={"attempts": attempts}, cause=last_error)
        self.last_error = last_error
        self.attempts = attempts


@dataclass(frozen=True)
class RetryConfig:
    """Backoff policy."""

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0
    jitter: float = 0.1  # fraction of the delay
    retryable_exceptions: tuple[type[Exception], ...] = (TransientIOError,)

    def calculate_delay(self, attempt: int) -> float:
        """Delay after the 1-based ``attempt``, capped at ``max_delay``."""
        delay = min(self.base_delay * self.exponential_base ** (attempt - 1), self.max_delay)
        if self.jitter:
            spread = delay * self.jitter
            delay += random.uniform(-spread, spread)
        return max(0.1, min(delay, self.max_delay))

    def is_retryable(self, exception: Exception) -> bool:
        return isinstance(exception, self.retryable_exceptions)


MAILBOX_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay=1.0,
    max_delay=30.0,
    retryable_exceptions=(MailboxError, ConnectionError, OSError),
)


def tick_backoff(consecutive_failures: int, interval_seconds: float) -> float:
    """Delay before the next poll tick after failures.

    The first retry comes after an eighth of the interval, doubling per
    consecutive failure until it reaches the regular interval.
    """
    if consecutive_failures <= 0:
        return interval_seconds
    config = RetryConfig(
        base_delay=max(1.0, interval_seconds / 8),
        max_delay=interval_seconds,
        jitter=0.0,
    )
    return config.calculate_delay(consecutive_failures)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig = MAILBOX_RETRY_CONFIG,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying retryable errors.

    Non-retryable errors propagate on the first occurrence.

    Raises:
        RetryExhausted: If the last attempt also failed with a retryable error
    """
    name = getattr(func, "__name__", repr(func))
    last_error: Exception | None = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not config.is_retryable(e):
                raise
            last_error = e

        if attempt == config.max_attempts:
            break

        delay = config.calculate_delay(attempt)
        log.warning(
            "Retrying after transient failure",
            func=name,
            attempt=attempt,
            max_attempts=config.max_attempts,
            error=f"{type(last_error).__name__}: {last_error}",
            delay=round(delay, 2),
        )
        await asyncio.sleep(delay)

    raise RetryExhausted(
        f"All {config.max_attempts} attempts failed for {name}",
        last_error=last_error,
        attempts=config.max_attempts,
    )
