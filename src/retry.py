"""
Exponential backoff for idempotent spreadsheet reads.

Writes are never retried here: re-sending a create or a state change
after an ambiguous failure could apply it twice.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def with_retry(
    fn: Callable[[], T],
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    is_retryable: Callable[[Exception], bool] = lambda e: True,
    operation: str = "call",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call ``fn`` until it succeeds, up to ``attempts`` times.

    Delay before retry ``i`` (0-based) is ``min(max_delay, base_delay * 2**i)``
    plus up to ``base_delay`` of jitter. Non-retryable errors are raised
    immediately.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except Exception as e:
            if attempt == attempts or not is_retryable(e):
                logger.error(f"{operation} failed after {attempt} attempt(s): {e}")
                raise
            delay = min(max_delay, base_delay * 2 ** (attempt - 1)) + random.uniform(0, base_delay)
            logger.warning(
                f"{operation} attempt {attempt}/{attempts} failed ({e}); retrying in {delay:.2f}s"
            )
            sleep(delay)
    raise RuntimeError(f"{operation}: retry loop exited without a result")
