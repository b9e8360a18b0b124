from typing import Protocol, runtime_checkable

from ingestrag.core.models import Boundary, ContentSegment


@runtime_checkable
class BoundaryClassifier(Protocol):
    """Finds the relevant sub-range inside timed segments."""

    async def detect(self, segments: list[ContentSegment], duration: float) -> Boundary: ...
