"""Bounded retry with exponential backoff for provider requests."""

import asyncio
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

from localvault.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)


def compute_backoff(
    attempt: int,
    backoff_base: float,
    backoff_max: float,
    retry_after: float | None = None,
) -> float:
    """Delay before the next attempt.

    A server-supplied retry_after wins over the exponential schedule; both
    are capped at backoff_max.
    """
    if retry_after is not None and retry_after >= 0:
        return min(retry_after, backoff_max)
    return min(backoff_base * (2 ** (attempt - 1)), backoff_max)


def async_retry(
    max_attempts: int = 3,
    backoff_base: float = 1.0,
    backoff_max: float = 60.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    should_retry: Callable[[Exception], bool] | None = None,
    on_retry: Callable[[Exception, int], None] | None = None,
):
    """Retry an async callable on transient errors.

    Attempt n failing waits backoff_base * 2^(n-1) seconds (capped at
    backoff_max) before attempt n+1. An exception carrying a
    ``retry_after`` attribute (seconds, e.g. from a 429) overrides the
    schedule.

    Args:
        max_attempts: Total attempts, including the first
        backoff_base: Delay after the first failure (seconds)
        backoff_max: Upper bound for any single delay (seconds)
        exceptions: Exception types that count as failures
        should_retry: Predicate; a failure it rejects is raised immediately
        on_retry: Called with (exception, attempt) before each delay

    Example:
        send = async_retry(max_attempts=3, exceptions=(ProviderApiError,))(send_once)
        body = await send(url)
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        name = getattr(func, "__name__", repr(func))

        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    message = sanitize_log_message(str(e))
                    if should_retry is not None and not should_retry(e):
                        raise
                    if attempt >= max_attempts:
                        logger.error("%s gave up after %d attempts: %s", name, attempt, message)
                        raise

                    delay = compute_backoff(
                        attempt, backoff_base, backoff_max, getattr(e, "retry_after", None)
                    )
                    logger.warning(
                        "%s attempt %d/%d failed (%s), next try in %.1fs",
                        name, attempt, max_attempts, message, delay,
                    )
                    if on_retry is not None:
                        on_retry(e, attempt)
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
