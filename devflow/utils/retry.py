"""Retry utilities for handling transient failures.

Provides the RetryPolicy value object used by the workflow runtime to
retry activities, and the ``async_retry`` decorator used around raw
network calls.

Key Exports:
    RetryPolicy: Exponential backoff parameters plus non-retryable kinds.
    async_retry: Decorator for adding retry logic to async functions.

Backoff Formula:
    delay(attempt) = min(initial_interval * backoff_coefficient ** (attempt - 1), max_interval)
    With the defaults (1s, x2, cap 60s): 1s, 2s, 4s, ... 60s.

Example:
    >>> policy = RetryPolicy(max_attempts=5)
    >>> [policy.delay_for(n) for n in range(1, 5)]
    [1.0, 2.0, 4.0, 8.0]
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_NON_RETRYABLE = ("ValidationError", "AuthenticationError")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters for one class of activity.

    Attributes:
        max_attempts: Total attempts including the first one
        initial_interval: Delay in seconds before the second attempt
        backoff_coefficient: Multiplier applied to the delay per attempt
        max_interval: Upper bound on any single delay
        non_retryable_error_kinds: Error ``kind`` tags that fail immediately
    """

    max_attempts: int = 3
    initial_interval: float = 1.0
    backoff_coefficient: float = 2.0
    max_interval: float = 60.0
    non_retryable_error_kinds: tuple[str, ...] = DEFAULT_NON_RETRYABLE

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        delay = self.initial_interval * self.backoff_coefficient ** (attempt - 1)
        return min(delay, self.max_interval)

    def is_retryable(self, error: BaseException) -> bool:
        """Whether ``error`` may be retried under this policy.

        Errors carrying a ``kind`` tag are checked against the non-retryable
        list and their own ``retryable`` flag. Anything else is retryable.
        """
        kind = getattr(error, "kind", None)
        if kind is None:
            return True
        if kind in self.non_retryable_error_kinds:
            return False
        return bool(getattr(error, "retryable", True))


NO_RETRY = RetryPolicy(max_attempts=1)


async def call_with_retry(
    policy: RetryPolicy,
    func: Callable[[], Awaitable[T]],
    *,
    name: str,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Call ``func`` until it succeeds, a non-retryable error occurs, or
    attempts run out.

    Args:
        policy: Retry parameters
        func: Zero-argument coroutine factory, called once per attempt
        name: Name used in log events
        sleep: Awaitable delay function, injectable for tests

    Returns:
        The first successful result.

    Raises:
        The last error raised by ``func``.
    """
    attempt = 1
    while True:
        try:
            return await func()
        except Exception as e:
            if not policy.is_retryable(e):
                log.warning("retry_skipped_non_retryable", function=name, attempt=attempt, error=str(e))
                raise
            if attempt >= policy.max_attempts:
                log.error("retry_exhausted", function=name, attempts=attempt, error=str(e))
                raise

            delay = policy.delay_for(attempt)
            log.warning(
                "retry_attempt",
                function=name,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay=delay,
                error=str(e),
            )
            await sleep(delay)
            attempt += 1


def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    initial_interval: float = 1.0,
    max_interval: float = 60.0,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator for async functions with exponential backoff retry logic.

    Only exceptions in ``exceptions`` are retried; anything else propagates
    immediately.

    Args:
        max_attempts: Maximum number of attempts before giving up
        backoff_factor: Multiplier applied to the delay after each attempt
        exceptions: Exception types that trigger a retry
        initial_interval: Delay before the second attempt
        max_interval: Cap on a single delay

    Example:
        >>> @async_retry(max_attempts=4, exceptions=(TransientIntegrationError,))
        ... async def post_completion(payload: dict) -> dict:
        ...     ...
    """
    policy = RetryPolicy(
        max_attempts=max_attempts,
        initial_interval=initial_interval,
        backoff_coefficient=backoff_factor,
        max_interval=max_interval,
        non_retryable_error_kinds=(),
    )

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        log.error("retry_exhausted", function=func.__name__, attempts=attempt, error=str(e))
                        raise
                    delay = policy.delay_for(attempt)
                    log.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)
                    attempt += 1

        return wrapper

    return decorator
