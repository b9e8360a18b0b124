"""Common functionality for OpenAI-backed providers."""

from __future__ import annotations

from typing import Any

from openai import (  # type: ignore
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
)
from openai import RateLimitError as OpenAIRateLimitError  # type: ignore

from ingestrag.core.exceptions import ProviderError, RateLimitError
from ingestrag.core.logging_config import get_logger
from ingestrag.core.retry_config import RetryConfig, create_retry_decorator

logger = get_logger(__name__)


def _retry_after(e: OpenAIRateLimitError) -> float | None:
    response = getattr(e, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def wrap_openai_error(e: Exception, provider: str, operation: str) -> ProviderError:
    """Map an OpenAI SDK exception onto the ingestrag provider errors.

    Rate limits become RateLimitError so the item processor applies its
    longer wait. Timeouts, connection failures and 5xx responses are
    retryable; other 4xx responses are not.
    """
    if isinstance(e, ProviderError):
        return e
    message = f"{provider} {operation} failed: {e}"
    if isinstance(e, OpenAIRateLimitError):
        return RateLimitError(message, provider=provider, retry_after=_retry_after(e))
    if isinstance(e, APIConnectionError | APITimeoutError | ConnectionError | TimeoutError):
        return ProviderError(message, provider=provider, retryable=True)
    if isinstance(e, APIStatusError):
        return ProviderError(message, provider=provider, retryable=e.status_code >= 500)
    if isinstance(e, APIError):
        return ProviderError(message, provider=provider, retryable=True)
    return ProviderError(message, provider=provider, retryable=False)


class OpenAIProviderMixin:
    """Mixin providing client setup, call retry and error mapping.

    Only network-level failures are retried inside the provider. Rate limits
    surface immediately so the caller's own backoff policy applies.
    """

    _provider_name: str = "openai"
    _retryable_exceptions: tuple[type[Exception], ...] = (
        APIConnectionError,
        APITimeoutError,
        ConnectionError,
        TimeoutError,
    )

    def __init__(
        self,
        *,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        model: str,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.client = client or AsyncOpenAI(api_key=api_key or None)
        self.model = model
        self._retry_config = retry_config or RetryConfig()
        self._logger = logger.bind(provider=self._provider_name, model=model)

    def _get_retry_decorator(self) -> Any:
        return create_retry_decorator(
            config=self._retry_config,
            exception_types=self._retryable_exceptions,
        )

    def _wrap_error(self, e: Exception, operation: str) -> ProviderError:
        return wrap_openai_error(e, self._provider_name, operation)
