"""Exponential backoff for transient store errors."""

import time
from typing import Callable, Optional, TypeVar

import structlog

from ..errors import TransientStoreError

logger = structlog.get_logger("equiplend")

T = TypeVar("T")

RETRYABLE_CODES = frozenset(
    {"unavailable", "deadline-exceeded", "resource-exhausted", "aborted"}
)


def is_retryable(error: BaseException) -> bool:
    """True for store errors worth another attempt."""
    return isinstance(error, TransientStoreError) and error.code in RETRYABLE_CODES


def with_retry(
    operation: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """Execute operation with exponential backoff retry.

    Args:
        operation: Callable to execute
        attempts: Total attempts, including the first
        base_delay: Delay before the first retry; doubles after each failure
        sleep: Sleep function (``time.sleep`` unless given)

    Returns:
        Result of operation

    Raises:
        TransientStoreError: When the last attempt still fails. Any other
            error propagates immediately.
    """
    sleep = sleep or time.sleep
    attempts = max(attempts, 1)
    backoff = base_delay

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except TransientStoreError as e:
            if not is_retryable(e) or attempt == attempts:
                raise
            logger.debug(
                "store_retry", attempt=attempt, code=e.code, delay=backoff, error=str(e)
            )
            sleep(backoff)
            backoff *= 2

    raise RuntimeError("unreachable")  # pragma: no cover
