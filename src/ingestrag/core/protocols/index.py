from typing import Protocol, runtime_checkable

from ingestrag.core.models import WorkItem


@runtime_checkable
class IndexMaintainer(Protocol):
    """Hook run after an item's chunks are committed."""

    async def refresh(self, item: WorkItem) -> None: ...
