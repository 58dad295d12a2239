# -*- encoding: utf-8 -*-
"""
Superbridge Relayer
superbridge_relayer.retry module

Bounded retry with exponential backoff for chain transaction submission.

Delays are pure powers of two with no jitter and no cap; the attempt limit
is the only bound. There is never a sleep after the final attempt.
"""

import logging
import time

from superbridge_relayer.errors import RetryExhausted

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE = 2.0  # seconds


def exponential_delay(attempt, base=DEFAULT_BACKOFF_BASE):
    """Seconds to wait after failed attempt number `attempt` (1-based)."""
    return base ** attempt


def retry_with_backoff(
    fn,
    attempts=DEFAULT_ATTEMPTS,
    delay=exponential_delay,
    sleep=time.sleep,
    retry_on=(Exception,),
    description="operation",
    exhausted=RetryExhausted,
):
    """Call fn() until it succeeds or `attempts` calls have failed.

    Args:
        fn: Zero-argument callable to invoke.
        attempts: Maximum number of calls.
        delay: Callable mapping the 1-based failed attempt number to seconds.
        sleep: Sleep function, injectable for tests.
        retry_on: Exception types that trigger a retry. Anything else
                  propagates immediately.
        description: Used in log lines and the exhaustion error.
        exhausted: RetryExhausted subclass raised when all attempts fail.

    Returns:
        Whatever fn() returned on the first successful call.

    Raises:
        exhausted: after `attempts` failures, chained to the last error.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            last_error = exc
            if attempt == attempts:
                logger.error(
                    "%s failed on attempt %d/%d: %s",
                    description, attempt, attempts, exc,
                )
                break
            wait = delay(attempt)
            logger.warning(
                "%s failed on attempt %d/%d: %s; retrying in %.1fs",
                description, attempt, attempts, exc, wait,
            )
            sleep(wait)

    raise exhausted(description, attempts, last_error) from last_error
