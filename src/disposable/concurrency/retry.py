import asyncio
import random
import time
from typing import Any, Coroutine, Literal, Optional, TypeVar
from collections.abc import Callable

from disposable.config.logging_config import get_logger

log = get_logger(__name__)

T = TypeVar("T")

Backoff = Literal["linear", "exponential"]


def backoff_delay(
    attempt: int,
    initial_delay: float,
    backoff: Backoff = "exponential",
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
) -> float:
    """
    Delay before retrying after the given 1-based failed attempt.

    linear:      initial_delay * attempt
    exponential: initial_delay * exponential_base ** (attempt - 1)
    """
    if attempt < 1:
        raise ValueError("attempt is 1-based")
    if backoff == "linear":
        delay = initial_delay * attempt
    else:
        delay = initial_delay * (exponential_base ** (attempt - 1))
    return min(delay, max_delay)


async def retry_with_backoff(
    func: Callable[[], Coroutine[Any, Any, T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff: Backoff = "exponential",
    exponential_base: float = 2.0,
    jitter: bool = False,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    description: str = "Operation",
) -> T:
    """
    Run an async callable, retrying failures up to a fixed attempt budget.

    This is the bounded-retry half of the retry primitive; `poll_until` is the
    poll/deadline half.

    Args:
        func: Async function to execute and retry on failure.
        max_attempts: Total attempts including the first one (>= 1).
        initial_delay: Base delay in seconds.
        max_delay: Maximum delay cap in seconds.
        backoff: "linear" (delay * attempt) or "exponential".
        exponential_base: Base for exponential backoff.
        jitter: Multiply each delay by a random factor in [0.5, 1.5].
        retryable_exceptions: Exception types that trigger a retry. Anything
            else propagates immediately.
        description: Used in log messages.

    Returns:
        The return value of the first successful call.

    Raises:
        The last exception once the attempt budget is exhausted.

    Example:
        await retry_with_backoff(
            lambda: start_container(handle),
            max_attempts=3,
            initial_delay=1.0,
            backoff="linear",
        )
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except retryable_exceptions as e:
            if attempt >= max_attempts:
                log.error(
                    f"{description} failed after {attempt} attempts: {e}",
                    extra={"attempt": attempt, "max_attempts": max_attempts},
                )
                raise

            delay = backoff_delay(attempt, initial_delay, backoff, exponential_base, max_delay)
            if jitter:
                delay *= random.uniform(0.5, 1.5)

            log.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}), retrying in {delay:.2f}s: {e}",
                extra={"attempt": attempt, "next_delay": delay},
            )
            await asyncio.sleep(delay)


async def poll_until(
    probe: Callable[[], Coroutine[Any, Any, Optional[T]]],
    timeout: float,
    interval: float = 0.1,
    clock: Callable[[], float] = time.monotonic,
) -> Optional[T]:
    """
    Call ``probe`` every ``interval`` seconds until it returns something
    other than None or ``timeout`` seconds have elapsed.

    The probe always runs at least once. Exceptions raised by the probe
    propagate.

    Returns:
        The first non-None probe result, or None on timeout.
    """
    if interval <= 0:
        raise ValueError("interval must be positive")

    deadline = clock() + timeout
    while True:
        result = await probe()
        if result is not None:
            return result
        remaining = deadline - clock()
        if remaining <= 0:
            return None
        await asyncio.sleep(min(interval, remaining))


class RetryPolicy:
    """
    A reusable retry configuration.

    Example:
        start_policy = RetryPolicy(max_attempts=3, initial_delay=1.0, backoff="linear")
        await start_policy.execute(lambda: start(container))
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff: Backoff = "exponential",
        exponential_base: float = 2.0,
        jitter: bool = False,
        retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    ):
        self.max_attempts: int = max_attempts
        self.initial_delay: float = initial_delay
        self.max_delay: float = max_delay
        self.backoff: Backoff = backoff
        self.exponential_base: float = exponential_base
        self.jitter: bool = jitter
        self.retryable_exceptions: tuple[type[Exception], ...] = retryable_exceptions

    async def execute(self, func: Callable[[], Coroutine[Any, Any, T]], description: str = "Operation") -> T:
        """Execute a function with this retry policy."""
        return await retry_with_backoff(
            func=func,
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            backoff=self.backoff,
            exponential_base=self.exponential_base,
            jitter=self.jitter,
            retryable_exceptions=self.retryable_exceptions,
            description=description,
        )

    def __repr__(self) -> str:
        return f"RetryPolicy(max_attempts={self.max_attempts}, initial_delay={self.initial_delay}, backoff={self.backoff!r})"


__all__ = ["RetryPolicy", "backoff_delay", "poll_until", "retry_with_backoff"]
