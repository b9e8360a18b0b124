"""Pydantic data models for ingestrag."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class ItemStatus(StrEnum):
    """Processing status of a work item.

    Transitions only move forward: pending -> processing -> completed | failed.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ScanMode(StrEnum):
    """How a listing scan treats already-known items."""

    INCREMENTAL = "incremental"
    FULL = "full"


class WorkItem(BaseModel):
    """One discovered unit of content awaiting or finished ingestion."""

    id: int
    pipeline_type: str
    external_key: str
    title: str
    reference: str
    sequence: int | None = None
    status: ItemStatus = ItemStatus.PENDING
    attempt_count: int = 0
    chunk_count: int = 0
    last_error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    discovered_at: datetime
    updated_at: datetime


class ContentSegment(BaseModel):
    """A span of extracted text with its anchor positions.

    Anchors are seconds for transcripts and page numbers for scanned issues.
    """

    text: str
    start: float
    end: float


class Extraction(BaseModel):
    """Raw content extracted for one work item."""

    segments: list[ContentSegment] = Field(default_factory=list)
    title: str | None = None
    duration: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Boundary(BaseModel):
    """Relevant sub-range detected inside an extraction."""

    start: float
    end: float
    confidence: float
    reasoning: str = ""

    @property
    def duration(self) -> float:
        return self.end - self.start


class ChunkDraft(BaseModel):
    """A chunk produced by the chunker, before embedding."""

    ordinal: int
    content: str
    anchor_start: float
    anchor_end: float


class Chunk(BaseModel):
    """A persisted chunk of a work item."""

    item_id: int
    ordinal: int
    content: str
    anchor_start: float
    anchor_end: float
    embedding: list[float] | None = None


class LockInfo(BaseModel):
    """Snapshot of a task lock."""

    task_type: str
    lock_id: str
    is_active: bool = True
    started_at: datetime
    description: str = ""
    current_item: str | None = None
    processed_count: int = 0
    total_count: int = 0
    stop_requested: bool = False

    def elapsed_minutes(self, now: datetime) -> int:
        return int((now - self.started_at).total_seconds() // 60)


class AcquireResult(BaseModel):
    """Outcome of a lock acquisition attempt."""

    granted: bool
    lock_id: str | None = None
    holder: LockInfo | None = None
    message: str = ""
    elapsed_minutes: int = 0


class ListingEntry(BaseModel):
    """One entry seen on an external listing page."""

    key: str
    title: str
    reference: str
    sequence: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ScanConfig(BaseModel):
    """Parameters of one listing scan."""

    list_url: str
    start_key: str | None = None
    end_key: str | None = None
    max_pages: int = Field(default=10, ge=1)


class ScanResult(BaseModel):
    """Outcome of one listing scan."""

    discovered: list[ListingEntry] = Field(default_factory=list)
    new_count: int = 0
    pages_scanned: int = 0
    stopped_reason: str = "max_pages"


class ScanSummary(BaseModel):
    """Scan outcome plus the pipeline's item counts after the scan."""

    total: int
    pending: int
    completed: int
    new_saved: int
    items: list[WorkItem] = Field(default_factory=list)


class ItemResult(BaseModel):
    """Outcome of processing one work item."""

    key: str
    status: ItemStatus
    chunk_count: int = 0
    error: str | None = None
    retry_count: int = 0


class ProcessReport(BaseModel):
    """Outcome of one batch processing run."""

    stopped_by_user: bool = False
    processed_count: int = 0
    remaining_count: int = 0
    results: list[ItemResult] = Field(default_factory=list)


class PlannedDeletion(BaseModel):
    """A work item the maintainer proposes to delete."""

    item_id: int
    external_key: str
    title: str
    status: ItemStatus
    chunk_count: int
    reason: str


class MaintenancePlan(BaseModel):
    """Set of planned deletions for one pipeline."""

    pipeline_type: str
    deletions: list[PlannedDeletion] = Field(default_factory=list)

    @property
    def total_items(self) -> int:
        return len(self.deletions)

    @property
    def total_chunks(self) -> int:
        return sum(d.chunk_count for d in self.deletions)


class MaintenanceResult(BaseModel):
    """Counts of rows removed by a maintenance or reset run."""

    items_deleted: int = 0
    chunks_deleted: int = 0


class PipelineStats(BaseModel):
    """Aggregate item and chunk counts for one pipeline."""

    total_items: int = 0
    completed_items: int = 0
    pending_items: int = 0
    processing_items: int = 0
    failed_items: int = 0
    total_chunks: int = 0
    embedded_chunks: int = 0
