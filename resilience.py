"""
Resilience Utilities: Retry Logic and Exponential Backoff
Provides error recovery mechanisms for notification delivery and cycle retries.
"""
import time
import random
import logging
import functools
from typing import Callable, Type, Tuple


logger = logging.getLogger("DeskPilotResilience")


def compute_backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float = 2.0,
    jitter: bool = False
) -> float:
    """
    Compute the wait before retry number ``attempt`` (1-based).

    Args:
        attempt: Number of consecutive failures so far
        base_delay: Delay used for the first retry
        max_delay: Upper bound on the delay
        exponential_base: Growth factor per failure
        jitter: Scale the delay by a random factor in [0.5, 1.5)

    Returns:
        float: Delay in seconds
    """
    if attempt <= 0:
        return base_delay

    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)
    if jitter:
        delay = min(delay * (0.5 + random.random()), max_delay)
    return delay


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: Tuple[Type[Exception], ...] = (Exception,)
) -> Callable:
    """
    Decorator for exponential backoff retry logic.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential calculation
        jitter: Add random jitter to delay
        exceptions: Exception types that trigger a retry

    Returns:
        Callable: Decorated function

    Example:
        @exponential_backoff(max_retries=3, base_delay=1.0)
        def post_webhook():
            return requests.post(url, json=payload)
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except exceptions as e:
                    if attempt == max_retries:
                        logger.error(
                            f"Function {func.__name__} failed after {max_retries} retries. "
                            f"Last error: {e}"
                        )
                        raise

                    delay = compute_backoff_delay(
                        attempt + 1,
                        base_delay,
                        max_delay,
                        exponential_base=exponential_base,
                        jitter=jitter
                    )

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries} failed for {func.__name__}: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )

                    time.sleep(delay)

        return wrapper

    return decorator
