"""Request and response schemas of the HTTP API.

Fields are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ingestrag.core.models import (
    ItemResult,
    LockInfo,
    MaintenancePlan,
    MaintenanceResult,
    PipelineStats,
    ProcessReport,
    ScanSummary,
    WorkItem,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -- Lock --


class LockRequest(ApiModel):
    task_type: str = Field(min_length=1)
    description: str = ""


class LockUpdateRequest(ApiModel):
    action: str
    task_type: str = Field(min_length=1)
    current_item: str | None = None
    processed_count: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)


class LockHolder(ApiModel):
    task_type: str
    description: str
    started_at: datetime
    current_item: str | None = None
    processed_count: int = 0
    total_count: int = 0

    @classmethod
    def from_lock(cls, lock: LockInfo) -> LockHolder:
        return cls(
            task_type=lock.task_type,
            description=lock.description,
            started_at=lock.started_at,
            current_item=lock.current_item,
            processed_count=lock.processed_count,
            total_count=lock.total_count,
        )


class LockGrantedResponse(ApiModel):
    granted: Literal[True] = True
    lock_id: str


class LockConflictResponse(ApiModel):
    granted: Literal[False] = False
    holder: LockHolder | None = None
    message: str
    elapsed_minutes: int = 0


class LockStatusResponse(ApiModel):
    locked: bool
    task_type: str | None = None
    description: str | None = None
    started_at: datetime | None = None
    elapsed_minutes: int | None = None
    current_item: str | None = None
    processed_count: int | None = None
    total_count: int | None = None
    stop_requested: bool | None = None

    @classmethod
    def from_lock(cls, lock: LockInfo | None, now: datetime) -> LockStatusResponse:
        if lock is None:
            return cls(locked=False)
        return cls(
            locked=True,
            task_type=lock.task_type,
            description=lock.description,
            started_at=lock.started_at,
            elapsed_minutes=lock.elapsed_minutes(now),
            current_item=lock.current_item,
            processed_count=lock.processed_count,
            total_count=lock.total_count,
            stop_requested=lock.stop_requested,
        )


class LockUpdateResponse(ApiModel):
    updated: bool


class LockReleaseResponse(ApiModel):
    released: bool = True


# -- Pipelines --


class ScanConfigBody(ApiModel):
    list_url: str | None = None
    start_key: str | None = None
    end_key: str | None = None
    max_pages: int | None = Field(default=None, ge=1)


class PipelineActionRequest(ApiModel):
    action: str
    config: ScanConfigBody = Field(default_factory=ScanConfigBody)
    full_rescan: bool = False
    max_items: int | None = Field(default=None, ge=1)
    description: str | None = None


class WorkItemResponse(ApiModel):
    key: str
    title: str
    reference: str
    status: str
    attempt_count: int
    chunk_count: int
    last_error: str | None = None
    updated_at: datetime

    @classmethod
    def from_item(cls, item: WorkItem) -> WorkItemResponse:
        return cls(
            key=item.external_key,
            title=item.title,
            reference=item.reference,
            status=item.status.value,
            attempt_count=item.attempt_count,
            chunk_count=item.chunk_count,
            last_error=item.last_error,
            updated_at=item.updated_at,
        )


class ScanResponse(ApiModel):
    total: int
    pending: int
    completed: int
    new_saved: int
    items: list[WorkItemResponse]

    @classmethod
    def from_summary(cls, summary: ScanSummary) -> ScanResponse:
        return cls(
            total=summary.total,
            pending=summary.pending,
            completed=summary.completed,
            new_saved=summary.new_saved,
            items=[WorkItemResponse.from_item(i) for i in summary.items],
        )


class ItemResultResponse(ApiModel):
    key: str
    status: str
    chunk_count: int
    error: str | None = None
    retry_count: int

    @classmethod
    def from_result(cls, result: ItemResult) -> ItemResultResponse:
        return cls(
            key=result.key,
            status=result.status.value,
            chunk_count=result.chunk_count,
            error=result.error,
            retry_count=result.retry_count,
        )


class ProcessResponse(ApiModel):
    stopped_by_user: bool
    processed_count: int
    remaining_count: int
    results: list[ItemResultResponse]

    @classmethod
    def from_report(cls, report: ProcessReport) -> ProcessResponse:
        return cls(
            stopped_by_user=report.stopped_by_user,
            processed_count=report.processed_count,
            remaining_count=report.remaining_count,
            results=[ItemResultResponse.from_result(r) for r in report.results],
        )


class DeletionCountsResponse(ApiModel):
    items_deleted: int
    chunks_deleted: int

    @classmethod
    def from_result(cls, result: MaintenanceResult) -> DeletionCountsResponse:
        return cls(items_deleted=result.items_deleted, chunks_deleted=result.chunks_deleted)


class StatsResponse(ApiModel):
    total_items: int
    completed_items: int
    pending_items: int
    processing_items: int
    failed_items: int
    total_chunks: int
    embedded_chunks: int

    @classmethod
    def from_stats(cls, stats: PipelineStats) -> StatsResponse:
        return cls(**stats.model_dump())


class PlannedDeletionResponse(ApiModel):
    key: str
    title: str
    status: str
    chunk_count: int
    reason: str


class MaintenancePlanResponse(ApiModel):
    pipeline_type: str
    total_items: int
    total_chunks: int
    deletions: list[PlannedDeletionResponse]

    @classmethod
    def from_plan(cls, plan: MaintenancePlan) -> MaintenancePlanResponse:
        return cls(
            pipeline_type=plan.pipeline_type,
            total_items=plan.total_items,
            total_chunks=plan.total_chunks,
            deletions=[
                PlannedDeletionResponse(
                    key=d.external_key,
                    title=d.title,
                    status=d.status.value,
                    chunk_count=d.chunk_count,
                    reason=d.reason,
                )
                for d in plan.deletions
            ],
        )


class HealthResponse(ApiModel):
    status: str
    version: str
    pipelines: list[str]
