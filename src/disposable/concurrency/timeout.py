import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

_ASYNCIO_TIMEOUT_ERROR = asyncio.TimeoutError


class OperationTimeoutError(Exception):
    """Raised when an operation does not finish within its deadline."""

    def __init__(self, timeout_seconds: float, message: str | None = None):
        self.timeout_seconds = timeout_seconds
        self.message = message or f"Operation timed out after {timeout_seconds}s"
        super().__init__(self.message)


async def with_timeout(
    coro: Callable[[], Awaitable[T]],
    timeout_seconds: float | None,
    exception_message: str | None = None,
) -> T:
    """
    Await ``coro()`` with an optional timeout.

    ``timeout_seconds=None`` waits indefinitely.

    Raises:
        OperationTimeoutError: If the operation times out.

    Example:
        await with_timeout(lambda: runtime.terminate(container_id), timeout_seconds=30)
    """
    if timeout_seconds is None:
        return await coro()
    try:
        return await asyncio.wait_for(coro(), timeout=timeout_seconds)
    except _ASYNCIO_TIMEOUT_ERROR:
        raise OperationTimeoutError(
            timeout_seconds,
            exception_message or f"Operation timed out after {timeout_seconds}s",
        ) from None


__all__ = ["OperationTimeoutError", "with_timeout"]
