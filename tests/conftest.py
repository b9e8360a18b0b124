"""Shared pytest fixtures for the ingestrag test suite."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from ingestrag.chunking import chunk_segments
from ingestrag.core.models import (
    Boundary,
    ChunkDraft,
    ContentSegment,
    Extraction,
    ListingEntry,
    WorkItem,
)
from ingestrag.core.state import StateManager

# ============================================================================
# Clock and Paths
# ============================================================================


class FakeClock:
    """Deterministic clock returning timezone-aware datetimes."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2024, 6, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Create a temporary database file path.

    Returns:
        Path: Path to a temporary SQLite database file.
    """
    return tmp_path / "test.db"


@pytest.fixture
def no_sleep() -> AsyncMock:
    """Awaitable sleep replacement that records requested waits."""
    return AsyncMock(return_value=None)


# ============================================================================
# State
# ============================================================================


@pytest.fixture
async def state(tmp_db_path: Path, clock: FakeClock) -> AsyncGenerator[StateManager, None]:
    """Initialized StateManager driven by the fake clock."""
    manager = StateManager(tmp_db_path, now=clock)
    await manager.initialize()
    yield manager
    await manager.close()


def entry(key: str, title: str | None = None, sequence: int | None = None) -> ListingEntry:
    return ListingEntry(
        key=key,
        title=title or f"Item {key}",
        reference=f"https://example.org/items/{key}",
        sequence=sequence,
    )


@pytest.fixture
def make_item(
    state: StateManager,
) -> Callable[..., Awaitable[WorkItem]]:
    """Insert a pending item and return it."""

    async def _make(
        key: str,
        pipeline_type: str = "bulletin",
        title: str | None = None,
        sequence: int | None = None,
    ) -> WorkItem:
        await state.insert_item_if_absent(pipeline_type, entry(key, title, sequence))
        item = await state.get_item_by_key(pipeline_type, key)
        assert item is not None
        return item

    return _make


@pytest.fixture
def complete_item(
    state: StateManager,
) -> Callable[[WorkItem, int], Awaitable[WorkItem]]:
    """Drive an item to completed with ``n`` embedded chunks."""

    async def _complete(item: WorkItem, n: int) -> WorkItem:
        await state.mark_processing(item.id)
        drafts = [
            ChunkDraft(
                ordinal=i,
                content=f"chunk {i} of {item.external_key}",
                anchor_start=i,
                anchor_end=i + 1,
            )
            for i in range(n)
        ]
        await state.complete_item(item.id, drafts, [[0.1, 0.2, 0.3] for _ in drafts])
        completed = await state.get_item(item.id)
        assert completed is not None
        return completed

    return _complete


# ============================================================================
# Fake Collaborators
# ============================================================================


class FakeListing:
    """In-memory paginated listing.

    ``pages[0]`` is page 1. Pages past the end are empty. Pages listed in
    ``errors`` raise; pages listed in ``slow_pages`` never answer in time.
    """

    def __init__(
        self,
        pages: list[list[ListingEntry]],
        *,
        errors: dict[int, Exception] | None = None,
        slow_pages: set[int] | None = None,
    ) -> None:
        self.pages = pages
        self.errors = errors or {}
        self.slow_pages = slow_pages or set()
        self.requested: list[int] = []

    async def fetch_page(self, list_url: str, page: int) -> list[ListingEntry]:
        self.requested.append(page)
        if page in self.errors:
            raise self.errors[page]
        if page in self.slow_pages:
            await asyncio.sleep(5)
        if page > len(self.pages):
            return []
        return list(self.pages[page - 1])

    async def resolve_bound(self, value: str) -> int | None:
        digits = value.replace("-", "")
        return int(digits) if digits.isdigit() else None


SAMPLE_SEGMENTS = [
    ContentSegment(text="Opening hymn and greetings.", start=0.0, end=600.0),
    ContentSegment(text="Today we read from the book of Ruth.", start=600.0, end=1800.0),
    ContentSegment(text="Faithfulness in ordinary days matters.", start=1800.0, end=3000.0),
    ContentSegment(text="Announcements and the offering.", start=3000.0, end=3600.0),
]


class FakeExtractor:
    """Content extractor with scripted failures and an optional boundary.

    Each entry of ``failures`` is consumed by one ``extract`` call: an
    exception is raised, ``None`` lets the call succeed.
    """

    def __init__(
        self,
        segments: list[ContentSegment] | None = None,
        *,
        boundary: Boundary | None = None,
        supports_subrange: bool = False,
        failures: list[Exception | None] | None = None,
        window: int = 500,
        overlap: int = 100,
    ) -> None:
        self.segments = SAMPLE_SEGMENTS if segments is None else segments
        self.boundary = boundary
        self._supports_subrange = supports_subrange
        self.failures = list(failures or [])
        self.window = window
        self.overlap = overlap
        self.extract_calls = 0
        self.detect_calls = 0

    @property
    def supports_subrange(self) -> bool:
        return self._supports_subrange

    async def extract(self, item: WorkItem) -> Extraction:
        self.extract_calls += 1
        if self.failures:
            failure = self.failures.pop(0)
            if failure is not None:
                raise failure
        return Extraction(segments=list(self.segments), title=item.title, duration=3600.0)

    async def detect_subrange(self, extraction: Extraction) -> Boundary | None:
        self.detect_calls += 1
        return self.boundary

    def chunk(self, segments: list[ContentSegment]) -> list[ChunkDraft]:
        return chunk_segments(segments, self.window, self.overlap)


class FakeEmbedder:
    """Deterministic embedder: one small vector per text."""

    def __init__(self, failures: list[Exception] | None = None) -> None:
        self.failures = list(failures or [])
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.failures:
            raise self.failures.pop(0)
        return [[float(len(text)), 1.0, 0.5] for text in texts]


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
