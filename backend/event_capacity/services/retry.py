"""
Caller-side retry for lock contention.

Only LockTimeout is retried: it means another transaction held the event
row for longer than the store's lock_timeout. Business outcomes
(CapacityExceeded, DuplicateBooking, ...) and connectivity failures are
raised on the first occurrence.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from event_capacity.core.config import get_settings
from event_capacity.core.exceptions import LockTimeout
from event_capacity.core.logging import get_logger
from event_capacity.core.metrics import lock_retries

logger = get_logger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Exponential backoff with jitter: base * 2^(attempt-1) + U(0, base)."""
    return base_delay * (2 ** (attempt - 1)) + random.uniform(0, base_delay)


async def retry_on_lock_timeout(
    operation: Callable[[], Awaitable[T]],
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
) -> T:
    settings = get_settings()
    attempts = settings.LOCK_RETRY_ATTEMPTS if attempts is None else attempts
    base_delay = settings.LOCK_RETRY_BASE_DELAY if base_delay is None else base_delay

    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except LockTimeout as exc:
            if attempt == attempts:
                logger.warning("lock_retry_exhausted", event_id=exc.event_id, attempts=attempts)
                raise

            delay = backoff_delay(attempt, base_delay)
            lock_retries.inc()
            logger.info(
                "lock_retry",
                event_id=exc.event_id,
                attempt=attempt,
                delay_ms=round(delay * 1000, 2),
            )
            await asyncio.sleep(delay)

    # Loop always returns or raises
    raise AssertionError("unreachable")
