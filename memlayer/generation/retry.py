"""
Bounded retry with a fixed delay between attempts.

Used around backend calls that may fail transiently (model still loading,
connection refused, 5xx). The last error is re-raised on exhaustion.
"""

import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from memlayer.errors import BackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException, retry_on: Tuple[Type[BaseException], ...]) -> bool:
    """Retry only listed error types, and never errors flagged non-retryable."""
    if not isinstance(error, retry_on):
        return False
    return getattr(error, "retryable", True)


def retry_call(
    fn: Callable[[], T],
    attempts: int,
    sleep_s: float,
    retry_on: Tuple[Type[BaseException], ...] = (BackendError,),
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Call ``fn`` up to ``attempts`` times with ``sleep_s`` between failures.

    Args:
        fn: Zero-argument callable to invoke
        attempts: Maximum number of calls (>= 1)
        sleep_s: Fixed delay in seconds between attempts
        retry_on: Exception types considered retryable
        sleep: Sleep function (default: time.sleep)

    Returns:
        Result of the first successful call

    Raises:
        The last error when every attempt fails, or the first
        non-retryable error immediately.
    """
    sleep = sleep or time.sleep
    attempts = max(1, attempts)

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:
            if not is_retryable(e, retry_on) or attempt == attempts:
                raise
            logger.info(f"Attempt {attempt}/{attempts} failed ({type(e).__name__}: {e}); retrying")
            if sleep_s > 0:
                sleep(sleep_s)
