from .keyed_lock import KeyedLock
from .retry import RetryPolicy, backoff_delay, poll_until, retry_with_backoff
from .timeout import OperationTimeoutError, with_timeout

__all__ = [
    "KeyedLock",
    "OperationTimeoutError",
    "RetryPolicy",
    "backoff_delay",
    "poll_until",
    "retry_with_backoff",
    "with_timeout",
]
