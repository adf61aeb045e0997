"""Exponential backoff with jitter for upstream calls."""

import random
import time
from typing import Callable, Optional, TypeVar

from loguru import logger

from pagesdns.app.errors import is_transient

T = TypeVar("T")

JITTER = 0.2


def backoff_delay(
    attempt: int, initial_delay: float, max_delay: float, rand: Callable[[], float] = random.random
) -> float:
    """Delay in seconds before retry number ``attempt`` (1-based).

    Doubles from ``initial_delay`` with ±20% jitter and never exceeds
    ``max_delay``.
    """
    base = initial_delay * (2 ** (attempt - 1))
    jitter = 1 + JITTER * (2 * rand() - 1)
    return min(base * jitter, max_delay)


def with_retry(
    fn: Callable[[], T],
    max_retries: int = 5,
    initial_delay: float = 0.3,
    max_delay: float = 10.0,
    should_retry: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], None] = time.sleep,
    label: Optional[str] = None,
) -> T:
    """Call ``fn`` until it succeeds, the error is not retriable, or
    ``max_retries`` retries have been spent. The last error is re-raised."""
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as exc:
            attempt += 1
            if attempt > max_retries or not should_retry(exc):
                raise
            delay = backoff_delay(attempt, initial_delay, max_delay)
            logger.warning(
                f"[retry] {label or getattr(fn, '__name__', 'call')}: attempt "
                f"{attempt}/{max_retries} in {delay:.2f}s after: {exc}"
            )
            sleep(delay)
