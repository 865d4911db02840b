import random
import time
from typing import Callable, Iterable, Optional, TypeVar

T = TypeVar("T")


def retry(
    func: Callable[[], T],
    retries: int = 1,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    jitter: float = 0.1,
    retry_on: Iterable[type[BaseException]] = (Exception,),
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """Call ``func`` up to ``retries`` times with exponential backoff.

    ``retries`` counts total attempts, so 1 means no retry at all. The last
    failure is re-raised unchanged.
    """
    retry_on = tuple(retry_on)
    attempts = max(1, retries)
    delay = base_delay
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:  # type: ignore[misc]
            if attempt == attempts - 1:
                raise
            sleep_for = min(delay, max_delay) + random.uniform(0, delay * jitter)
            if on_retry:
                on_retry(attempt + 1, exc, sleep_for)
            time.sleep(sleep_for)
            delay = min(delay * 2, max_delay)
    # Unreachable
    raise RuntimeError("retry exhausted")
