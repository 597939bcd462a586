"""Error classification and retry/backoff policy."""

import asyncio
from datetime import timedelta
from enum import Enum
from typing import Optional

import httpx
from pydantic import BaseModel

from ingestion.adapters.base import AuthError, FatalError, RateLimitError, TransientError
from ingestion.core.config import Settings, get_settings


class ErrorKind(str, Enum):
    """Failure classes that drive scheduler branches."""
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    FATAL = "fatal"


class SyncAction(str, Enum):
    """What the scheduler does with a failed sync."""
    DEFER = "defer"
    RETRY = "retry"
    SUSPEND = "suspend"


class RetryPolicy(BaseModel):
    """Attempt cap and delay schedule the task queue applies."""
    name: str
    max_attempts: int
    base_delay: float
    multiplier: float = 2.0
    max_delay: float

    def should_retry(self, attempt: int) -> bool:
        """``attempt`` is the number of attempts already made."""
        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> timedelta:
        seconds = self.base_delay * self.multiplier ** max(attempt - 1, 0)
        return timedelta(seconds=min(seconds, self.max_delay))


class BackoffPolicy:
    """Maps failures to scheduler actions and queue retry policies."""

    def __init__(self, settings: Optional[Settings] = None, max_error_count: Optional[int] = None):
        settings = settings or get_settings()
        self.max_error_count = max_error_count or settings.max_error_count

        self.generic_policy = RetryPolicy(
            name="generic",
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )
        # Shorter fixed delay, larger attempt budget
        self.timeout_policy = RetryPolicy(
            name="timeout",
            max_attempts=settings.timeout_retry_attempts,
            base_delay=settings.timeout_retry_delay,
            multiplier=1.0,
            max_delay=settings.timeout_retry_delay,
        )
        self.no_retry_policy = RetryPolicy(name="no_retry", max_attempts=1, base_delay=0, max_delay=0)

    @staticmethod
    def classify(error: BaseException) -> ErrorKind:
        if isinstance(error, RateLimitError):
            return ErrorKind.RATE_LIMIT
        if isinstance(error, AuthError):
            return ErrorKind.AUTH
        if isinstance(error, FatalError):
            return ErrorKind.FATAL
        if isinstance(error, TransientError):
            return ErrorKind.TIMEOUT if error.timeout else ErrorKind.TRANSIENT
        if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
            return ErrorKind.TIMEOUT
        # Anything unclassified is treated like a network hiccup
        return ErrorKind.TRANSIENT

    def should_suspend(self, error_count: int) -> bool:
        return error_count >= self.max_error_count

    def decide(self, kind: ErrorKind, error_count: int) -> SyncAction:
        """Pick the scheduler action for a failure.

        ``error_count`` is the count after this failure was recorded.
        """
        if kind == ErrorKind.RATE_LIMIT:
            return SyncAction.DEFER
        if self.should_suspend(error_count):
            return SyncAction.SUSPEND
        return SyncAction.RETRY

    def retry_policy_for(self, error: BaseException) -> RetryPolicy:
        kind = self.classify(error)
        if kind == ErrorKind.TIMEOUT:
            return self.timeout_policy
        if kind in (ErrorKind.AUTH, ErrorKind.FATAL):
            return self.no_retry_policy
        return self.generic_policy
