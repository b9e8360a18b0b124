from typing import Protocol, runtime_checkable

from ingestrag.core.models import Boundary, ChunkDraft, ContentSegment, Extraction, WorkItem


@runtime_checkable
class ContentExtractor(Protocol):
    """Turns a work item's reference into text segments and chunks."""

    @property
    def supports_subrange(self) -> bool: ...

    async def extract(self, item: WorkItem) -> Extraction: ...

    async def detect_subrange(self, extraction: Extraction) -> Boundary | None: ...

    def chunk(self, segments: list[ContentSegment]) -> list[ChunkDraft]: ...
