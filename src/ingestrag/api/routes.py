"""HTTP routes for task locks, pipelines and maintenance.

Route map:

    /api/lock                                  POST    Acquire a task lock
    /api/lock                                  GET     Lock status
    /api/lock                                  PATCH   Report progress or request a stop
    /api/lock                                  DELETE  Release a task lock
    /api/pipelines/{task_type}                 POST    scan | process | reset
    /api/pipelines/{task_type}                 GET     Pipeline stats
    /api/pipelines/{task_type}/maintenance     GET     Analyze (read-only plan)
    /api/pipelines/{task_type}/maintenance     DELETE  Preview or execute the plan
    /api/stats                                 GET     Stats of every pipeline
    /api/health                                GET     Liveness and configured pipelines

Services are resolved from ``app.state`` through ``Depends``.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from ingestrag import __version__
from ingestrag.api.schemas import (
    DeletionCountsResponse,
    HealthResponse,
    LockConflictResponse,
    LockGrantedResponse,
    LockHolder,
    LockReleaseResponse,
    LockRequest,
    LockStatusResponse,
    LockUpdateRequest,
    LockUpdateResponse,
    MaintenancePlanResponse,
    PipelineActionRequest,
    ProcessResponse,
    ScanResponse,
    StatsResponse,
)
from ingestrag.core.exceptions import ConfigurationError
from ingestrag.core.logging_config import get_logger
from ingestrag.core.protocols import LockStore
from ingestrag.lock._base import utcnow
from ingestrag.pipeline import IngestionPipeline, PipelineRegistry

logger = get_logger(__name__)

router = APIRouter(prefix="/api")


def _get_registry(request: Request) -> PipelineRegistry:
    return request.app.state.registry


def _get_lock_store(request: Request) -> LockStore:
    return request.app.state.registry.lock_store


RegistryDep = Annotated[PipelineRegistry, Depends(_get_registry)]
LockStoreDep = Annotated[LockStore, Depends(_get_lock_store)]


def _get_pipeline(task_type: str, registry: RegistryDep) -> IngestionPipeline:
    if task_type not in registry:
        raise HTTPException(status_code=404, detail=f"Unknown pipeline: {task_type}")
    return registry[task_type]


PipelineDep = Annotated[IngestionPipeline, Depends(_get_pipeline)]


# -- Lock --


@router.post("/lock", response_model=None)
async def acquire_lock(
    body: LockRequest, lock_store: LockStoreDep
) -> LockGrantedResponse | JSONResponse:
    result = await lock_store.acquire(body.task_type, body.description)
    if not result.granted:
        conflict = LockConflictResponse(
            holder=LockHolder.from_lock(result.holder) if result.holder else None,
            message=result.message,
            elapsed_minutes=result.elapsed_minutes,
        )
        return JSONResponse(
            status_code=409, content=conflict.model_dump(by_alias=True, mode="json")
        )
    return LockGrantedResponse(lock_id=result.lock_id or "")


@router.get("/lock")
async def lock_status(
    lock_store: LockStoreDep, task_type: Annotated[str, Query(alias="taskType")]
) -> LockStatusResponse:
    lock = await lock_store.status(task_type)
    return LockStatusResponse.from_lock(lock, utcnow())


@router.patch("/lock")
async def update_lock(body: LockUpdateRequest, lock_store: LockStoreDep) -> LockUpdateResponse:
    if body.action == "progress":
        await lock_store.heartbeat(
            body.task_type, body.current_item, body.processed_count, body.total_count
        )
        return LockUpdateResponse(updated=True)
    if body.action == "stop":
        flagged = await lock_store.request_stop(body.task_type)
        logger.info("stop_requested", task_type=body.task_type, flagged=flagged)
        return LockUpdateResponse(updated=flagged)
    raise HTTPException(status_code=400, detail=f"Unknown lock action: {body.action}")


@router.delete("/lock")
async def release_lock(
    lock_store: LockStoreDep, task_type: Annotated[str, Query(alias="taskType")]
) -> LockReleaseResponse:
    await lock_store.release(task_type)
    return LockReleaseResponse()


# -- Pipelines --


@router.post("/pipelines/{task_type}", response_model=None)
async def run_pipeline_action(
    body: PipelineActionRequest, pipeline: PipelineDep
) -> ScanResponse | ProcessResponse | DeletionCountsResponse:
    if body.action == "scan":
        try:
            scan_config = pipeline.scan_config(
                list_url=body.config.list_url,
                start_key=body.config.start_key,
                end_key=body.config.end_key,
                max_pages=body.config.max_pages,
            )
        except ConfigurationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        summary = await pipeline.scan(scan_config, full_rescan=body.full_rescan)
        return ScanResponse.from_summary(summary)
    if body.action == "process":
        report = await pipeline.process(body.max_items, body.description)
        return ProcessResponse.from_report(report)
    if body.action == "reset":
        return DeletionCountsResponse.from_result(await pipeline.reset())
    raise HTTPException(status_code=400, detail=f"Unknown pipeline action: {body.action}")


@router.get("/pipelines/{task_type}")
async def pipeline_stats(pipeline: PipelineDep) -> StatsResponse:
    return StatsResponse.from_stats(await pipeline.stats())


@router.get("/pipelines/{task_type}/maintenance")
async def analyze_maintenance(
    pipeline: PipelineDep, action: str = "analyze"
) -> MaintenancePlanResponse:
    if action != "analyze":
        raise HTTPException(status_code=400, detail=f"Unknown maintenance action: {action}")
    return MaintenancePlanResponse.from_plan(await pipeline.maintenance.analyze())


@router.delete("/pipelines/{task_type}/maintenance", response_model=None)
async def run_maintenance(
    pipeline: PipelineDep, mode: str = "preview"
) -> MaintenancePlanResponse | DeletionCountsResponse:
    if mode not in ("preview", "execute"):
        raise HTTPException(status_code=400, detail=f"Unknown maintenance mode: {mode}")
    plan = await pipeline.maintenance.analyze()
    if mode == "preview":
        return MaintenancePlanResponse.from_plan(plan)
    return DeletionCountsResponse.from_result(await pipeline.maintenance.execute(plan))


# -- Overview --


@router.get("/stats")
async def all_stats(registry: RegistryDep) -> dict[str, StatsResponse]:
    return {
        task_type: StatsResponse.from_stats(await pipeline.stats())
        for task_type, pipeline in registry.items()
    }


@router.get("/health")
async def health(registry: RegistryDep) -> HealthResponse:
    return HealthResponse(status="ok", version=__version__, pipelines=list(registry))
