"""Per-content-type ingestion pipelines and their registry."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterator, Mapping
from typing import Any

from ingestrag.core.cancellation import StopToken
from ingestrag.core.config import IngestRAGConfig
from ingestrag.core.exceptions import ConfigurationError, LockConflictError
from ingestrag.core.logging_config import Timer, get_logger, run_context
from ingestrag.core.models import (
    AcquireResult,
    ItemStatus,
    MaintenanceResult,
    PipelineStats,
    ProcessReport,
    ScanConfig,
    ScanMode,
    ScanSummary,
)
from ingestrag.core.protocols import (
    ContentExtractor,
    EmbeddingProvider,
    IndexMaintainer,
    ListingSource,
    LockStore,
)
from ingestrag.core.state import StateManager
from ingestrag.maintenance import ConsistencyMaintainer
from ingestrag.processor import ProcessingPolicy, RetryableProcessor
from ingestrag.source.scanner import SourceScanner

logger = get_logger(__name__)


def _conflict(result: AcquireResult) -> LockConflictError:
    return LockConflictError(
        result.message, holder=result.holder, elapsed_minutes=result.elapsed_minutes
    )


class IngestionPipeline:
    """Scan, process and maintain one content type.

    Processing runs hold the task type's lock for their whole duration and
    release it on every exit path. Scans are not locked: inserts are
    idempotent on ``(pipeline_type, external_key)``.
    """

    def __init__(
        self,
        task_type: str,
        config: IngestRAGConfig,
        *,
        state: StateManager,
        lock_store: LockStore,
        listing: ListingSource,
        extractor: ContentExtractor,
        embedder: EmbeddingProvider,
        index_maintainer: IndexMaintainer | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.task_type = task_type
        self._config = config
        self._state = state
        self._lock_store = lock_store
        self._listing = listing
        self._extractor = extractor
        self._scanner = SourceScanner(
            state,
            listing,
            task_type,
            page_timeout_seconds=config.scan_page_timeout_seconds,
            page_delay_seconds=config.scan_page_delay_seconds,
            sleep=sleep,
        )
        self._processor = RetryableProcessor(
            state,
            extractor,
            embedder,
            policy=ProcessingPolicy.from_config(config),
            index_maintainer=index_maintainer,
            lock_store=lock_store,
            sleep=sleep,
        )
        self._maintainer = ConsistencyMaintainer(
            state, task_type, orphan_age_seconds=config.orphan_age_seconds
        )
        self._closed = False

    @property
    def lock_store(self) -> LockStore:
        return self._lock_store

    @property
    def maintenance(self) -> ConsistencyMaintainer:
        return self._maintainer

    def scan_config(
        self,
        list_url: str | None = None,
        start_key: str | None = None,
        end_key: str | None = None,
        max_pages: int | None = None,
    ) -> ScanConfig:
        """Build a scan config, filling the listing URL and page limit from settings."""
        url = list_url or self._config.list_url_for(self.task_type)
        if not url:
            raise ConfigurationError(f"No listing URL configured for '{self.task_type}'")
        return ScanConfig(
            list_url=url,
            start_key=start_key,
            end_key=end_key,
            max_pages=max_pages or self._config.scan_max_pages,
        )

    async def scan(self, scan_config: ScanConfig, full_rescan: bool = False) -> ScanSummary:
        """Discover new items and summarise the pipeline afterwards.

        Args:
            scan_config: Listing URL, bounds and page limit.
            full_rescan: Read every page and drop pending/failed placeholders first.
        """
        await self._state.initialize()
        mode = ScanMode.FULL if full_rescan else ScanMode.INCREMENTAL
        result = await self._scanner.scan(scan_config, mode)
        stats = await self._state.stats(self.task_type)
        return ScanSummary(
            total=stats.total_items,
            pending=stats.pending_items,
            completed=stats.completed_items,
            new_saved=result.new_count,
            items=await self._state.list_items(self.task_type),
        )

    async def process(
        self, max_items: int | None = None, description: str | None = None
    ) -> ProcessReport:
        """Process up to ``max_items`` pending items under the task lock.

        Raises:
            LockConflictError: Another run holds the lock for this task type.
        """
        await self._state.initialize()
        max_items = max_items or self._config.default_max_items
        run_logger = logger.bind(task_type=self.task_type, max_items=max_items)

        acquired = await self._lock_store.acquire(
            self.task_type, description or f"{self.task_type} process ({max_items})"
        )
        if not acquired.granted:
            run_logger.warning("process_lock_refused", elapsed_minutes=acquired.elapsed_minutes)
            raise _conflict(acquired)

        try:
            with run_context(task_type=self.task_type, lock_id=acquired.lock_id), Timer(
                run_logger, "process"
            ) as timer:
                items = await self._state.list_items(
                    self.task_type, statuses=[ItemStatus.PENDING], limit=max_items
                )
                token = StopToken(self._lock_store, self.task_type)
                report = await self._processor.process_batch(items, token, self.task_type)
                stats = await self._state.stats(self.task_type)
                report.remaining_count = stats.pending_items
                timer.complete(
                    processed=report.processed_count,
                    remaining=report.remaining_count,
                    stopped_by_user=report.stopped_by_user,
                )
            return report
        finally:
            await self._lock_store.release(self.task_type)

    async def stats(self) -> PipelineStats:
        await self._state.initialize()
        return await self._state.stats(self.task_type)

    async def reset(self) -> MaintenanceResult:
        """Delete every item and chunk of this pipeline.

        Raises:
            LockConflictError: A processing run currently holds the lock.
        """
        await self._state.initialize()
        acquired = await self._lock_store.acquire(self.task_type, f"{self.task_type} reset")
        if not acquired.granted:
            raise _conflict(acquired)
        try:
            result = await self._state.reset_pipeline(self.task_type)
        finally:
            await self._lock_store.release(self.task_type)
        logger.info(
            "pipeline_reset",
            task_type=self.task_type,
            items_deleted=result.items_deleted,
            chunks_deleted=result.chunks_deleted,
        )
        return result

    async def close(self) -> None:
        """Close listing and extractor resources. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        for resource in (self._listing, self._extractor):
            close = getattr(resource, "close", None)
            if close is not None:
                await close()

    async def __aenter__(self) -> IngestionPipeline:
        await self._state.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()


class PipelineRegistry(Mapping[str, IngestionPipeline]):
    """The configured pipelines sharing one state store and one lock store."""

    def __init__(
        self,
        state: StateManager,
        lock_store: LockStore,
        pipelines: Mapping[str, IngestionPipeline] | None = None,
    ) -> None:
        self.state = state
        self.lock_store = lock_store
        self._pipelines: dict[str, IngestionPipeline] = dict(pipelines or {})

    def register(self, pipeline: IngestionPipeline) -> None:
        self._pipelines[pipeline.task_type] = pipeline

    def __getitem__(self, task_type: str) -> IngestionPipeline:
        return self._pipelines[task_type]

    def __iter__(self) -> Iterator[str]:
        return iter(self._pipelines)

    def __len__(self) -> int:
        return len(self._pipelines)

    async def initialize(self) -> None:
        await self.state.initialize()

    async def close(self) -> None:
        for pipeline in self._pipelines.values():
            await pipeline.close()
        await self.state.close()

    async def __aenter__(self) -> PipelineRegistry:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()
