import time
import random
from typing import Callable, Optional, Tuple, Type, TypeVar

from loguru import logger

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (1-based), before jitter."""
    return min(max_delay, base_delay * (2 ** (attempt - 1)))


def call_with_retry(
    fn: Callable[[], T],
    *,
    retry_on: Tuple[Type[BaseException], ...],
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    max_retries: int = 3,
    base_delay: float = 0.8,
    max_delay: float = 8.0,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "call",
) -> T:
    """
    Generic retry wrapper for generator calls.
    Retries on `retry_on` errors (filtered by `should_retry`) with exponential backoff.
    """
    attempt = 0

    while True:
        try:
            return fn()

        except retry_on as e:
            if should_retry is not None and not should_retry(e):
                raise

            attempt += 1
            if attempt > max_retries:
                raise

            delay = backoff_delay(attempt, base_delay, max_delay)
            jitter = random.uniform(0, delay * 0.3)
            sleep_time = delay + jitter

            logger.warning(f"[{label} retry] attempt {attempt}/{max_retries} - sleeping {sleep_time:.2f}s ({e})")
            sleep(sleep_time)
