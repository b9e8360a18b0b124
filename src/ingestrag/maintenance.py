"""Detection and removal of inconsistent work items."""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from ingestrag.core.logging_config import get_logger
from ingestrag.core.models import (
    ItemStatus,
    MaintenancePlan,
    MaintenanceResult,
    PlannedDeletion,
    WorkItem,
)
from ingestrag.core.state import StateManager

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")

REASON_EMPTY = "completed but empty"
REASON_ORPHANED = "orphaned, presumed crashed worker"


def normalize_title(title: str) -> str:
    """Case-fold a title and collapse its whitespace for duplicate matching."""
    return _WHITESPACE.sub(" ", title).strip().casefold()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ConsistencyMaintainer:
    """Finds completed-but-empty, orphaned and duplicate items of one pipeline.

    ``analyze`` is read-only. ``execute`` deletes what a plan lists, chunks
    before their item, and tolerates items that are already gone.
    """

    def __init__(
        self,
        state: StateManager,
        pipeline_type: str,
        orphan_age_seconds: float = 7200.0,
        *,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.state = state
        self.pipeline_type = pipeline_type
        self.orphan_age = timedelta(seconds=orphan_age_seconds)
        self._now = now

    @staticmethod
    def _planned(item: WorkItem, reason: str) -> PlannedDeletion:
        return PlannedDeletion(
            item_id=item.id,
            external_key=item.external_key,
            title=item.title,
            status=item.status,
            chunk_count=item.chunk_count,
            reason=reason,
        )

    async def analyze(self) -> MaintenancePlan:
        """Build a deletion plan without changing anything.

        Each item appears at most once, under the first matching reason:
        completed but empty, then orphaned, then duplicate title. Among
        completed items sharing a normalized title the one with the most
        chunks (then the most recently updated) is kept.
        """
        items = await self.state.list_items(self.pipeline_type)
        cutoff = self._now() - self.orphan_age
        deletions: list[PlannedDeletion] = []
        groups: dict[str, list[WorkItem]] = {}

        for item in items:
            if item.status == ItemStatus.COMPLETED and item.chunk_count == 0:
                deletions.append(self._planned(item, REASON_EMPTY))
            elif (
                item.status in (ItemStatus.PENDING, ItemStatus.PROCESSING)
                and item.updated_at < cutoff
            ):
                deletions.append(self._planned(item, REASON_ORPHANED))
            elif item.status == ItemStatus.COMPLETED:
                groups.setdefault(normalize_title(item.title), []).append(item)

        for group in groups.values():
            if len(group) < 2:
                continue
            keeper = max(group, key=lambda i: (i.chunk_count, i.updated_at))
            reason = f"duplicate of '{keeper.external_key}' ({keeper.chunk_count} chunks)"
            deletions.extend(self._planned(i, reason) for i in group if i.id != keeper.id)

        plan = MaintenancePlan(pipeline_type=self.pipeline_type, deletions=deletions)
        logger.info(
            "maintenance_analyzed",
            pipeline_type=self.pipeline_type,
            items=plan.total_items,
            chunks=plan.total_chunks,
        )
        return plan

    async def execute(self, plan: MaintenancePlan) -> MaintenanceResult:
        """Delete the items of a plan and report what was actually removed."""
        result = MaintenanceResult()
        for deletion in plan.deletions:
            items_deleted, chunks_deleted = await self.state.delete_item(deletion.item_id)
            result.items_deleted += items_deleted
            result.chunks_deleted += chunks_deleted
            if items_deleted:
                logger.debug(
                    "maintenance_item_deleted",
                    pipeline_type=self.pipeline_type,
                    item_key=deletion.external_key,
                    reason=deletion.reason,
                )

        logger.info(
            "maintenance_executed",
            pipeline_type=self.pipeline_type,
            items_deleted=result.items_deleted,
            chunks_deleted=result.chunks_deleted,
        )
        return result
