"""ingestrag package.

Incremental ingestion of external content (sermon videos, weekly
bulletins, monthly newsletters) into a chunked, embedded store for RAG.

Usage:
    from ingestrag import IngestRAGConfig, build_registry

    async with build_registry(IngestRAGConfig()) as registry:
        pipeline = registry["bulletin"]
        await pipeline.scan(pipeline.scan_config(max_pages=3))
        report = await pipeline.process(max_items=5)
"""

from __future__ import annotations

__version__ = "0.1.0"

from ingestrag.core import (
    IngestRAGConfig,
    ItemStatus,
    RetryConfig,
    StateManager,
    configure_logging,
    get_logger,
)
from ingestrag.core.provider_factory import build_registry
from ingestrag.pipeline import IngestionPipeline, PipelineRegistry

__all__ = [
    "IngestRAGConfig",
    "IngestionPipeline",
    "ItemStatus",
    "PipelineRegistry",
    "RetryConfig",
    "StateManager",
    "__version__",
    "build_registry",
    "configure_logging",
    "get_logger",
]
