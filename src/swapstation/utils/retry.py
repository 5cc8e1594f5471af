"""Retry decorator with exponential backoff for outbound deliveries."""

import asyncio
from collections.abc import Callable, Coroutine
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import structlog

from swapstation.utils.exceptions import NotificationError

P = ParamSpec("P")
T = TypeVar("T")

logger = structlog.get_logger(__name__)


def backoff_delays(max_retries: int, base_delay: float, max_delay: float) -> list[float]:
    """Delays slept between attempts: base, 2*base, 4*base, ... capped at max_delay."""
    return [min(base_delay * (2**n), max_delay) for n in range(max_retries)]


def is_client_error(error: Exception) -> bool:
    """A delivery the receiver refused with a 4xx status will be refused again."""
    status = getattr(error, "delivery_status", None)
    return status is not None and 400 <= status < 500


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple[type[Exception], ...] = (NotificationError,),
    give_up: Callable[[Exception], bool] = is_client_error,
) -> Callable[[Callable[P, Coroutine[Any, Any, T]]], Callable[P, Coroutine[Any, Any, T]]]:
    """Decorator that retries an async function with exponential backoff.

    Args:
        max_retries: Attempts after the first one.
        base_delay: Delay before the first retry, doubled for each further retry.
        max_delay: Upper bound for a single delay.
        retry_on: Exception types that trigger a retry.
        give_up: Predicate marking an error as permanent; it is raised at once.

    Returns:
        Decorated function.
    """
    delays = backoff_delays(max_retries, base_delay, max_delay)

    def decorator(
        func: Callable[P, Coroutine[Any, Any, T]]
    ) -> Callable[P, Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if give_up(e):
                        raise
                    if attempt > len(delays):
                        logger.error(
                            "Giving up after retries",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise
                    delay = delays[attempt - 1]
                    logger.warning(
                        "Retrying after error",
                        function=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                await asyncio.sleep(delay)

        return wrapper

    return decorator
