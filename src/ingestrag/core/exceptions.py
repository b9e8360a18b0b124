"""Structured exception hierarchy for ingestrag.

Exception Hierarchy:
    IngestRAGError (base)
    ├── PipelineError
    ├── ProviderError
    │   └── RateLimitError
    ├── DegenerateResultError
    ├── ConfigurationError
    ├── StateError
    ├── LockError
    │   ├── LockConflictError
    │   └── LockStoreUnavailableError
    └── ScanError

Usage:
    from ingestrag.core.exceptions import LockConflictError, ProviderError

    try:
        await pipeline.process(max_items=5)
    except LockConflictError as e:
        logger.warning("run_skipped", holder=e.holder.description)
    except ProviderError as e:
        if e.retryable:
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ingestrag.core.models import LockInfo


class IngestRAGError(Exception):
    """Base exception class for all ingestrag errors.

    Example:
        try:
            await pipeline.scan(scan_config)
        except IngestRAGError as e:
            logger.error("scan_failed", error=str(e))
    """

    pass


class PipelineError(IngestRAGError):
    """Exception raised when a processing stage fails for a work item.

    Args:
        message: Human-readable error message.
        stage: The stage that failed (e.g., "extract", "embed", "store").
        item_key: External key of the item being processed, if available.

    Attributes:
        stage: The stage that failed.
        item_key: The item key being processed.
    """

    def __init__(self, message: str, stage: str, item_key: str | None = None) -> None:
        """Initialize PipelineError with context."""
        super().__init__(message)
        self.stage = stage
        self.item_key = item_key


class ProviderError(IngestRAGError):
    """Exception raised when an external provider fails.

    Wraps errors from external services (OpenAI, yt-dlp, listing pages) and
    records whether the failure is transient.

    Args:
        message: Human-readable error message.
        provider: The name of the provider that failed (e.g., "openai", "youtube").
        retryable: Whether the error is transient and can be retried.
            Defaults to False.

    Attributes:
        provider: The name of the failed provider.
        retryable: Whether the error can be retried.

    Example:
        raise ProviderError(
            "Whisper returned HTTP 503",
            provider="openai",
            retryable=True
        )
    """

    def __init__(self, message: str, provider: str, retryable: bool = False) -> None:
        """Initialize ProviderError with context."""
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable


class RateLimitError(ProviderError):
    """Provider signalled a rate limit.

    Always retryable. ``retry_after`` carries the provider's suggested wait in
    seconds when it sent one.
    """

    def __init__(self, message: str, provider: str, retry_after: float | None = None) -> None:
        super().__init__(message, provider=provider, retryable=True)
        self.retry_after = retry_after


class DegenerateResultError(IngestRAGError):
    """An attempt produced output that is technically valid but unusable.

    Raised for a sub-range that is too short or an extraction that yields no
    chunks. Treated as retryable by the item processor.

    Args:
        message: Human-readable error message.
        reason: Short machine-friendly reason (e.g., "subrange_too_short").
    """

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class ConfigurationError(IngestRAGError):
    """Exception raised when configuration validation fails.

    Example:
        raise ConfigurationError(
            "OPENAI_API_KEY is required but not set. "
            "Please set the INGESTRAG_OPENAI_API_KEY environment variable."
        )
    """

    def __init__(self, message: str) -> None:
        """Initialize ConfigurationError."""
        super().__init__(message)


class StateError(IngestRAGError):
    """Exception raised when database or state management fails.

    Wraps SQLite errors and illegal work item status transitions.

    Example:
        raise StateError(
            "Failed to store chunks: database is locked"
        )
    """

    def __init__(self, message: str) -> None:
        """Initialize StateError."""
        super().__init__(message)


class LockError(IngestRAGError):
    """Base class for task lock failures."""


class LockConflictError(LockError):
    """Raised when a task type is already locked by another run.

    Args:
        message: Human-readable error message.
        holder: Snapshot of the lock currently held.
        elapsed_minutes: Minutes since the holder acquired the lock.
    """

    def __init__(self, message: str, holder: LockInfo | None, elapsed_minutes: int = 0) -> None:
        super().__init__(message)
        self.holder = holder
        self.elapsed_minutes = elapsed_minutes


class LockStoreUnavailableError(LockError):
    """Raised when the durable lock store cannot be read or written."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ScanError(IngestRAGError):
    """Exception raised when a listing page cannot be fetched or parsed.

    Args:
        message: Human-readable error message.
        url: The listing URL that failed.

    Attributes:
        url: The listing URL that failed.
    """

    def __init__(self, message: str, url: str | None = None) -> None:
        """Initialize ScanError with context."""
        super().__init__(message)
        self.url = url


__all__ = [
    "ConfigurationError",
    "DegenerateResultError",
    "IngestRAGError",
    "LockConflictError",
    "LockError",
    "LockStoreUnavailableError",
    "PipelineError",
    "ProviderError",
    "RateLimitError",
    "ScanError",
    "StateError",
]
