"""Core ingestrag components.

Configuration, models, exceptions, protocols, logging and the persistent
state store shared by every pipeline.
"""

from __future__ import annotations

from ingestrag.core.cancellation import StopToken
from ingestrag.core.config import IngestRAGConfig
from ingestrag.core.exceptions import (
    ConfigurationError,
    DegenerateResultError,
    IngestRAGError,
    LockConflictError,
    LockError,
    LockStoreUnavailableError,
    PipelineError,
    ProviderError,
    RateLimitError,
    ScanError,
    StateError,
)
from ingestrag.core.logging_config import configure_logging, get_logger
from ingestrag.core.models import (
    ItemResult,
    ItemStatus,
    LockInfo,
    MaintenancePlan,
    PipelineStats,
    ProcessReport,
    ScanConfig,
    ScanMode,
    ScanSummary,
    WorkItem,
)
from ingestrag.core.protocols import (
    BoundaryClassifier,
    ContentExtractor,
    EmbeddingProvider,
    IndexMaintainer,
    ListingSource,
    LockStore,
)
from ingestrag.core.retry_config import RetryConfig, create_retry_decorator
from ingestrag.core.state import StateManager

__all__ = [
    # Protocols
    "BoundaryClassifier",
    # Exceptions
    "ConfigurationError",
    "ContentExtractor",
    "DegenerateResultError",
    "EmbeddingProvider",
    "IndexMaintainer",
    # Config
    "IngestRAGConfig",
    "IngestRAGError",
    # Models
    "ItemResult",
    "ItemStatus",
    "ListingSource",
    "LockConflictError",
    "LockError",
    "LockInfo",
    "LockStore",
    "LockStoreUnavailableError",
    "MaintenancePlan",
    "PipelineError",
    "PipelineStats",
    "ProcessReport",
    "ProviderError",
    "RateLimitError",
    "RetryConfig",
    "ScanConfig",
    "ScanError",
    "ScanMode",
    "ScanSummary",
    "StateError",
    # State
    "StateManager",
    "StopToken",
    "WorkItem",
    # Logging
    "configure_logging",
    "create_retry_decorator",
    "get_logger",
]
