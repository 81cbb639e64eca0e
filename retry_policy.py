"""Decides whether a failed attempt is tried again, and after how long."""
from errors import ClassifiedError, ErrorKind, is_retryable

BASE_BACKOFF_MS = 1000
MAX_BACKOFF_MS = 5000


class RetryPolicy:
    def __init__(self, max_retries: int, base_backoff_ms: int = BASE_BACKOFF_MS, max_backoff_ms: int = MAX_BACKOFF_MS):
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.max_retries = max_retries
        self.base_backoff_ms = base_backoff_ms
        self.max_backoff_ms = max_backoff_ms

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def should_retry(self, error: ClassifiedError, attempt: int, allow_retry: bool = True) -> bool:
        """
        `attempt` is the 1-based number of the attempt that just failed.
        `allow_retry` is False for calls that may not be repeated safely;
        those are still retried on 429, which the upstream rejected unprocessed.
        """
        if attempt >= self.max_attempts:
            return False
        if not is_retryable(error):
            return False
        return allow_retry or error.kind is ErrorKind.RATE_LIMITED

    def backoff_ms(self, step: int) -> int:
        return min(self.base_backoff_ms * 2 ** step, self.max_backoff_ms)

    def delay_ms(self, error: ClassifiedError, step: int) -> float:
        """
        Delay before the next attempt. A 429 waits exactly its Retry-After;
        anything else uses exponential backoff for the given step.
        """
        if error.kind is ErrorKind.RATE_LIMITED and error.retry_after_seconds is not None:
            return error.retry_after_seconds * 1000
        return self.backoff_ms(step)
