"""Per-item processing with bounded retries and atomic chunk storage."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ingestrag.core.cancellation import StopToken
from ingestrag.core.exceptions import (
    DegenerateResultError,
    IngestRAGError,
    LockError,
    RateLimitError,
    StateError,
)
from ingestrag.core.logging_config import get_logger
from ingestrag.core.models import ChunkDraft, ItemResult, ItemStatus, ProcessReport, WorkItem
from ingestrag.core.protocols import ContentExtractor, EmbeddingProvider, IndexMaintainer, LockStore
from ingestrag.core.retry_config import create_item_retrying
from ingestrag.core.state import StateManager

if TYPE_CHECKING:
    from ingestrag.core.config import IngestRAGConfig

logger = get_logger(__name__)


@dataclass
class ProcessingPolicy:
    """Tunable limits of item processing.

    Attributes:
        max_attempts: Attempts per item including the first
        boundary_detection: Look for a relevant sub-range on the first attempt
        min_subrange_seconds: Shorter detected sub-ranges are degenerate
        retry_base_seconds: Wait multiplier (times attempt number) for transient errors
        rate_limit_wait_seconds: Wait after a rate limit without a retry-after hint
        inter_item_delay_seconds: Pause between items of one batch
        embed_batch_size: Texts per embedding request
    """

    max_attempts: int = 3
    boundary_detection: bool = True
    min_subrange_seconds: float = 1200.0
    retry_base_seconds: float = 5.0
    rate_limit_wait_seconds: float = 30.0
    inter_item_delay_seconds: float = 2.0
    embed_batch_size: int = 64

    @classmethod
    def from_config(cls, config: IngestRAGConfig) -> ProcessingPolicy:
        return cls(
            max_attempts=config.max_attempts,
            boundary_detection=config.boundary_detection,
            min_subrange_seconds=config.min_subrange_seconds,
            retry_base_seconds=config.retry_base_seconds,
            rate_limit_wait_seconds=config.rate_limit_wait_seconds,
            inter_item_delay_seconds=config.inter_item_delay_seconds,
            embed_batch_size=config.embed_batch_size,
        )


class RetryableProcessor:
    """Runs extract -> (sub-range) -> chunk -> embed -> store for work items.

    Each item gets at most ``policy.max_attempts`` attempts. Sub-range
    detection only runs on the first attempt so a bad boundary cannot fail
    every retry. Chunks and the ``completed`` status are committed together;
    a failed attempt leaves no partial chunks behind. Errors never escape
    ``process``: exhausted or non-retryable items end ``failed`` with the
    last error recorded.
    """

    def __init__(
        self,
        state: StateManager,
        extractor: ContentExtractor,
        embedder: EmbeddingProvider,
        *,
        policy: ProcessingPolicy | None = None,
        index_maintainer: IndexMaintainer | None = None,
        lock_store: LockStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.state = state
        self.extractor = extractor
        self.embedder = embedder
        self.policy = policy or ProcessingPolicy()
        self.index_maintainer = index_maintainer
        self.lock_store = lock_store
        self._sleep = sleep

    async def _embed(self, drafts: Sequence[ChunkDraft]) -> list[list[float]]:
        texts = [draft.content for draft in drafts]
        size = self.policy.embed_batch_size
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), size):
            vectors.extend(await self.embedder.embed(texts[offset : offset + size]))
        if len(vectors) != len(texts):
            raise DegenerateResultError(
                f"embedder returned {len(vectors)} vectors for {len(texts)} chunks",
                reason="embedding_count_mismatch",
            )
        return vectors

    async def _attempt(self, item: WorkItem, attempt_number: int) -> int:
        extraction = await self.extractor.extract(item)
        segments = extraction.segments

        if (
            attempt_number == 1
            and self.policy.boundary_detection
            and self.extractor.supports_subrange
        ):
            boundary = await self.extractor.detect_subrange(extraction)
            if boundary is not None:
                if boundary.duration < self.policy.min_subrange_seconds:
                    raise DegenerateResultError(
                        f"sub-range of {boundary.duration:.0f}s is shorter than "
                        f"{self.policy.min_subrange_seconds:.0f}s",
                        reason="subrange_too_short",
                    )
                segments = [
                    s for s in segments if boundary.start <= s.start < boundary.end
                ]
                logger.info(
                    "subrange_applied",
                    item_key=item.external_key,
                    start=boundary.start,
                    end=boundary.end,
                    confidence=boundary.confidence,
                    segments_kept=len(segments),
                )

        drafts = self.extractor.chunk(segments)
        if not drafts:
            raise DegenerateResultError("extraction produced no chunks", reason="no_chunks")

        embeddings = await self._embed(drafts)
        return await self.state.complete_item(item.id, drafts, embeddings)

    async def _fail(self, item: WorkItem, error: str, item_logger: Any) -> None:
        try:
            await self.state.mark_failed(item.id, error)
        except StateError as e:
            item_logger.error("item_mark_failed_error", error=str(e))

    async def process(self, item: WorkItem) -> ItemResult:
        """Process one pending item to ``completed`` or ``failed``.

        Args:
            item: A work item in ``pending`` status.

        Returns:
            ItemResult with the final status, chunk count, last error and
            ``retry_count`` (attempts beyond the first).
        """
        item_logger = logger.bind(pipeline_type=item.pipeline_type, item_key=item.external_key)

        try:
            await self.state.mark_processing(item.id)
        except StateError as e:
            item_logger.warning("item_not_processable", error=str(e))
            current = await self.state.get_item(item.id)
            return ItemResult(
                key=item.external_key,
                status=current.status if current else item.status,
                error=str(e),
            )

        item_logger.info("item_processing_started")
        attempt_number = 0
        retrying = create_item_retrying(
            self.policy.max_attempts,
            base_seconds=self.policy.retry_base_seconds,
            rate_limit_seconds=self.policy.rate_limit_wait_seconds,
            sleep=self._sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    await self.state.record_attempt(item.id)
                    try:
                        chunk_count = await self._attempt(item, attempt_number)
                    except RateLimitError as e:
                        item_logger.warning("item_rate_limited", attempt=attempt_number, error=str(e))
                        raise
                    except DegenerateResultError as e:
                        item_logger.warning(
                            "item_degenerate", attempt=attempt_number, reason=e.reason
                        )
                        raise
        except Exception as e:
            error = str(e) or type(e).__name__
            item_logger.error(
                "item_failed",
                attempts=attempt_number,
                error=error,
                error_type=type(e).__name__,
            )
            await self._fail(item, error, item_logger)
            return ItemResult(
                key=item.external_key,
                status=ItemStatus.FAILED,
                error=error,
                retry_count=max(attempt_number - 1, 0),
            )

        if self.index_maintainer is not None:
            try:
                await self.index_maintainer.refresh(item)
            except IngestRAGError as e:
                item_logger.warning("index_refresh_failed", error=str(e))

        item_logger.info("item_completed", chunk_count=chunk_count, attempts=attempt_number)
        return ItemResult(
            key=item.external_key,
            status=ItemStatus.COMPLETED,
            chunk_count=chunk_count,
            retry_count=attempt_number - 1,
        )

    async def _heartbeat(
        self, task_type: str | None, current_item: str | None, processed: int, total: int
    ) -> None:
        if self.lock_store is None or task_type is None:
            return
        try:
            await self.lock_store.heartbeat(task_type, current_item, processed, total)
        except LockError as e:
            logger.warning("heartbeat_failed", task_type=task_type, error=str(e))

    async def process_batch(
        self,
        items: Sequence[WorkItem],
        token: StopToken | None = None,
        task_type: str | None = None,
    ) -> ProcessReport:
        """Process items one after another, honouring stop requests between items.

        Args:
            items: Pending items in processing order.
            token: Stop signal checked before each item.
            task_type: Lock to heartbeat progress into.

        Returns:
            ProcessReport; on a stop the unstarted items stay ``pending``.
        """
        token = token or StopToken()
        report = ProcessReport()
        total = len(items)

        for index, item in enumerate(items):
            if await token.stop_requested():
                report.stopped_by_user = True
                report.remaining_count = total - index
                logger.info(
                    "batch_stopped_by_user",
                    task_type=task_type,
                    processed=index,
                    remaining=report.remaining_count,
                )
                break

            await self._heartbeat(task_type, item.title, index, total)
            result = await self.process(item)
            report.results.append(result)
            report.processed_count += 1
            await self._heartbeat(task_type, None, index + 1, total)

            if index < total - 1 and self.policy.inter_item_delay_seconds > 0:
                await self._sleep(self.policy.inter_item_delay_seconds)

        return report
