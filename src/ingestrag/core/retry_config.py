"""Retry configuration for ingestrag.

Two layers of retry live here:

- ``create_retry_decorator`` wraps individual provider calls with short
  exponential backoff for network blips.
- ``create_item_retrying`` drives whole-item attempts in the processor:
  a bounded number of attempts with a longer wait after rate limits.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity import (
    retry as tenacity_retry,
)
from tenacity.wait import wait_base

from ingestrag.core.exceptions import DegenerateResultError, ProviderError, RateLimitError
from ingestrag.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryConfig:
    """Configuration for provider-level retry behavior.

    Attributes:
        max_attempts: Maximum number of retry attempts
        min_wait_seconds: Minimum wait time between retries
        max_wait_seconds: Maximum wait time between retries
        exponential_multiplier: Multiplier for exponential backoff
    """

    def __init__(
        self,
        max_attempts: int = 3,
        min_wait_seconds: float = 4.0,
        max_wait_seconds: float = 60.0,
        exponential_multiplier: float = 1.0,
    ):
        self.max_attempts = max_attempts
        self.min_wait_seconds = min_wait_seconds
        self.max_wait_seconds = max_wait_seconds
        self.exponential_multiplier = exponential_multiplier


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Log retry attempts with structured context.

    Args:
        retry_state: Current state of the retry call
    """
    fn_name = retry_state.fn.__name__ if retry_state.fn else "item_attempt"
    exception = retry_state.outcome.exception() if retry_state.outcome else None

    logger.warning(
        "retry_attempt",
        function=fn_name,
        attempt=retry_state.attempt_number,
        max_attempts=getattr(retry_state.retry_object.stop, "max_attempt_number", None),
        wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
        error=str(exception) if exception else None,
        error_type=type(exception).__name__ if exception else None,
    )


def create_retry_decorator(
    config: RetryConfig,
    exception_types: tuple[type[Exception], ...],
) -> Any:
    """Create a provider-call retry decorator with the specified configuration.

    Args:
        config: Retry configuration
        exception_types: Tuple of exception types to retry on

    Returns:
        Configured retry decorator
    """
    return tenacity_retry(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.exponential_multiplier,
            min=config.min_wait_seconds,
            max=config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(exception_types),
        before_sleep=log_retry_attempt,
        reraise=True,
    )


def is_retryable_item_error(exc: BaseException) -> bool:
    """Whether a failed item attempt is worth another attempt."""
    if isinstance(exc, ProviderError):
        return exc.retryable
    return isinstance(exc, DegenerateResultError | ConnectionError | TimeoutError)


class wait_item_backoff(wait_base):
    """Wait after a failed item attempt.

    Rate limits wait ``rate_limit_seconds`` (or the provider's retry-after
    hint); everything else waits ``base_seconds`` times the attempt number.
    """

    def __init__(self, base_seconds: float = 5.0, rate_limit_seconds: float = 30.0) -> None:
        self.base_seconds = base_seconds
        self.rate_limit_seconds = rate_limit_seconds

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError):
            if exc.retry_after is not None:
                return max(exc.retry_after, 0.0)
            return self.rate_limit_seconds
        return self.base_seconds * retry_state.attempt_number


def create_item_retrying(
    max_attempts: int,
    *,
    base_seconds: float = 5.0,
    rate_limit_seconds: float = 30.0,
    sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> AsyncRetrying:
    """Build the attempt loop used for one work item.

    Args:
        max_attempts: Total attempts including the first
        base_seconds: Per-attempt multiplier for transient failures
        rate_limit_seconds: Wait after a rate limit without retry-after hint
        sleep: Awaitable sleep function; tests pass a no-op

    Returns:
        AsyncRetrying iterator; the last exception is re-raised when exhausted
    """
    kwargs: dict[str, Any] = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_item_backoff(base_seconds, rate_limit_seconds),
        retry=retry_if_exception(is_retryable_item_error),
        before_sleep=log_retry_attempt,
        reraise=True,
        **kwargs,
    )


RETRY_CONFIG_DEFAULT = RetryConfig(
    max_attempts=3,
    min_wait_seconds=4.0,
    max_wait_seconds=60.0,
    exponential_multiplier=1.0,
)

NETWORK_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
)
