"""
Retry logic with exponential backoff.

Decorator for automatic retry with exponential backoff on retryable errors.
"""

import asyncio
import functools
import random
import time
from typing import Callable, Type, Tuple, Any, TypeVar

from shared.errors import RetryableError, RateLimitError
from shared.logging import get_logger

T = TypeVar("T")
logger = get_logger("retry")


def _compute_delay(error: Exception, attempt: int, base_delay: float, max_delay: float, jitter: bool) -> float:
    """Exponential delay, overridden by a provider-supplied retry_after."""
    retry_after = getattr(error, "retry_after", None)
    if retry_after:
        return min(float(retry_after), max_delay)
    delay = min(base_delay * (2 ** attempt), max_delay)
    if jitter:
        delay += random.uniform(0, delay * 0.1)
    return delay


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 2,
    max_delay: float = 30,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = (RetryableError, RateLimitError)
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 2)
        max_delay: Upper bound for a single delay in seconds (default: 30)
        jitter: Add up to 10% random jitter to each delay
        retryable_exceptions: Tuple of exception types to retry on

    Returns:
        Decorated function

    Example:
        @retry_with_backoff(max_attempts=3, base_delay=2)
        async def call_api():
            # Will retry on RetryableError
            response = await api_client.call(...)
            return response
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> T:
                for attempt in range(max_attempts):
                    try:
                        return await func(*args, **kwargs)
                    except retryable_exceptions as e:
                        if attempt >= max_attempts - 1:
                            logger.error(
                                f"All {max_attempts} retry attempts failed for {func.__name__}",
                                extra={"error": str(e)}
                            )
                            raise
                        delay = _compute_delay(e, attempt, base_delay, max_delay, jitter)
                        logger.warning(
                            f"Retry attempt {attempt + 1}/{max_attempts} for {func.__name__} "
                            f"after {delay:.2f}s delay",
                            extra={"error": str(e), "attempt": attempt + 1}
                        )
                        await asyncio.sleep(delay)
                raise RuntimeError(f"Function {func.__name__} failed after {max_attempts} attempts")

            return async_wrapper
        else:
            @functools.wraps(func)
            def sync_wrapper(*args: Any, **kwargs: Any) -> T:
                for attempt in range(max_attempts):
                    try:
                        return func(*args, **kwargs)
                    except retryable_exceptions as e:
                        if attempt >= max_attempts - 1:
                            logger.error(
                                f"All {max_attempts} retry attempts failed for {func.__name__}",
                                extra={"error": str(e)}
                            )
                            raise
                        delay = _compute_delay(e, attempt, base_delay, max_delay, jitter)
                        logger.warning(
                            f"Retry attempt {attempt + 1}/{max_attempts} for {func.__name__} "
                            f"after {delay:.2f}s delay",
                            extra={"error": str(e), "attempt": attempt + 1}
                        )
                        time.sleep(delay)
                raise RuntimeError(f"Function {func.__name__} failed after {max_attempts} attempts")

            return sync_wrapper

    return decorator
