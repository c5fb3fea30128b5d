"""
Retry helpers for transient storage failures.
"""

import asyncio
import functools
from typing import Callable, Tuple, Type
import structlog

from ..errors import StorageError

logger = structlog.get_logger(__name__)


def with_retry(
    max_attempts: int = 3,
    backoff_factor: float = 0.2,
    exceptions: Tuple[Type[BaseException], ...] = (StorageError,),
):
    """Retry an async callable with exponential backoff.

    Only use this for reads and for transitions whose effect is deduplicated by
    the conditional update (the sweeper). Never wrap accept or cancel.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts - 1:
                        logger.error(
                            "Function failed after all retry attempts",
                            function=func.__name__,
                            attempts=max_attempts,
                            error=str(e),
                        )
                        raise

                    delay = backoff_factor * (2 ** attempt)
                    logger.warning(
                        "Function failed, retrying",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_attempts=max_attempts,
                        delay_seconds=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


async def call_with_retry(func: Callable, *args, max_attempts: int = 3,
                          backoff_factor: float = 0.2, **kwargs):
    """Invoke ``func`` once under ``with_retry`` with runtime-configured limits."""
    wrapped = with_retry(max_attempts=max_attempts, backoff_factor=backoff_factor)(func)
    return await wrapped(*args, **kwargs)
