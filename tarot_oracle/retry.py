"""Caller-side retry for transient oracle failures using tenacity."""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import QueueTimeout

F = TypeVar("F", bound=Callable[..., Any])

TRANSIENT_ERRORS = (QueueTimeout, TimeoutError, ConnectionError)


def with_transient_retry(
    name: str,
    max_retries: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
) -> Callable[[F], F]:
    """Decorator to retry an async call on queue timeouts and connection errors.

    The gateway itself never retries; front ends opt into this policy.

    Args:
        name: Name of the caller for log messages
        max_retries: Maximum number of attempts
        min_wait: Lower bound of the exponential wait, in seconds
        max_wait: Upper bound of the exponential wait, in seconds

    Returns:
        Decorated function with retry logic; the last error is re-raised

    """

    def decorator(func: F) -> F:
        @retry(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                f"{name} attempt {retry_state.attempt_number}: {retry_state.outcome.exception() if retry_state.outcome else 'Unknown error'}",
            ),
        )
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator
