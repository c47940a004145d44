"""
Retry utilities for transient failures.

Used for compensating actions that must not be abandoned after a single
failed attempt, such as returning a reservation token's capacity after the
booking write failed.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (OperationalError, DBAPIError, ConnectionError, TimeoutError)


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 0.1,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    operation: str = "operation",
) -> T:
    """
    Retry an async callable with exponential backoff.

    Delay between attempts is ``base_delay * (2 ** attempt)``.

    Args:
        func: Zero-argument coroutine factory to execute
        max_attempts: Maximum number of attempts
        base_delay: Base delay in seconds
        retry_on: Exception types that trigger another attempt
        operation: Name used in log records

    Returns:
        The result of the first successful call

    Raises:
        The last exception once attempts are exhausted, or any exception
        not listed in ``retry_on`` immediately.
    """
    for attempt in range(max_attempts):
        try:
            return await func()
        except retry_on as e:
            if attempt >= max_attempts - 1:
                logger.error(
                    "Retry attempts exhausted",
                    extra={
                        "operation": operation,
                        "attempts": max_attempts,
                        "error": str(e),
                    }
                )
                raise

            delay = base_delay * (2 ** attempt)
            logger.warning(
                "Transient failure, retrying",
                extra={
                    "operation": operation,
                    "attempt": attempt + 1,
                    "max_attempts": max_attempts,
                    "retry_delay": delay,
                    "error": str(e),
                }
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"retry_async called with max_attempts={max_attempts}")
