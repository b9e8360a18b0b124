"""Async tests for StateManager."""

import asyncio
from pathlib import Path

import pytest

from conftest import FakeClock, entry
from ingestrag.core.exceptions import StateError
from ingestrag.core.models import ChunkDraft, ItemStatus
from ingestrag.core.state import StateManager, decode_embedding, encode_embedding


def _drafts(n: int) -> list[ChunkDraft]:
    return [
        ChunkDraft(ordinal=i, content=f"text {i}", anchor_start=i * 10.0, anchor_end=i * 10.0 + 9)
        for i in range(n)
    ]


class TestStateManagerInitialization:
    """Test database initialization and schema creation."""

    @pytest.mark.asyncio
    async def test_parent_directory_creation(self, tmp_path: Path):
        """Parent directories are created if they don't exist."""
        nested = tmp_path / "nested" / "dirs" / "state.db"
        manager = StateManager(nested)
        await manager.initialize()

        assert nested.exists()
        await manager.close()

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, state: StateManager):
        await state.initialize()
        assert await state.known_keys("bulletin") == set()

    @pytest.mark.asyncio
    async def test_wal_mode_enabled(self, state: StateManager):
        assert state._db is not None
        async with state._db.execute("PRAGMA journal_mode") as cursor:
            row = await cursor.fetchone()
        assert row is not None
        assert row[0].upper() == "WAL"

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, tmp_db_path: Path):
        async with StateManager(tmp_db_path) as manager:
            assert manager._db is not None
        assert manager._db is None


class TestDiscovery:
    """Inserting and listing work items."""

    @pytest.mark.asyncio
    async def test_insert_is_idempotent_per_pipeline(self, state: StateManager):
        assert await state.insert_item_if_absent("bulletin", entry("2024-06-02")) is True
        assert await state.insert_item_if_absent("bulletin", entry("2024-06-02")) is False
        # Same key in another pipeline is a different item
        assert await state.insert_item_if_absent("news", entry("2024-06-02")) is True

        assert await state.known_keys("bulletin") == {"2024-06-02"}

    @pytest.mark.asyncio
    async def test_new_items_are_pending(self, state: StateManager, make_item):
        item = await make_item("k1")

        assert item.status == ItemStatus.PENDING
        assert item.attempt_count == 0
        assert item.chunk_count == 0

    @pytest.mark.asyncio
    async def test_metadata_round_trips(self, state: StateManager):
        listing_entry = entry("493")
        listing_entry.metadata = {"image_urls": ["https://example.org/files/1.jpg"]}
        await state.insert_item_if_absent("news", listing_entry)

        item = await state.get_item_by_key("news", "493")
        assert item is not None
        assert item.metadata == {"image_urls": ["https://example.org/files/1.jpg"]}

    @pytest.mark.asyncio
    async def test_list_items_orders_by_sequence_desc(self, state: StateManager, make_item):
        await make_item("a", sequence=20240519)
        await make_item("b", sequence=20240602)
        await make_item("c")
        await make_item("d", sequence=20240526)

        keys = [i.external_key for i in await state.list_items("bulletin")]
        assert keys == ["b", "d", "a", "c"]

    @pytest.mark.asyncio
    async def test_list_items_filters_and_limits(self, state, make_item, complete_item):
        done = await make_item("done", sequence=3)
        await make_item("p1", sequence=2)
        await make_item("p2", sequence=1)
        await complete_item(done, 2)

        pending = await state.list_items("bulletin", statuses=[ItemStatus.PENDING], limit=1)
        assert [i.external_key for i in pending] == ["p1"]
        assert await state.list_items("bulletin", statuses=[]) == []


class TestTransitions:
    """Status changes only move forward."""

    @pytest.mark.asyncio
    async def test_processing_then_failed(self, state: StateManager, make_item):
        item = await make_item("k1")
        await state.mark_processing(item.id)
        assert await state.record_attempt(item.id) == 1
        await state.mark_failed(item.id, "boom")

        failed = await state.get_item(item.id)
        assert failed is not None
        assert failed.status == ItemStatus.FAILED
        assert failed.last_error == "boom"
        assert failed.attempt_count == 1

    @pytest.mark.asyncio
    async def test_double_claim_rejected(self, state: StateManager, make_item):
        item = await make_item("k1")
        await state.mark_processing(item.id)

        with pytest.raises(StateError):
            await state.mark_processing(item.id)

    @pytest.mark.asyncio
    async def test_failed_is_terminal(self, state: StateManager, make_item):
        item = await make_item("k1")
        await state.mark_processing(item.id)
        await state.mark_failed(item.id, "boom")

        with pytest.raises(StateError):
            await state.mark_processing(item.id)

    @pytest.mark.asyncio
    async def test_updated_at_follows_clock(self, state, make_item, clock: FakeClock):
        item = await make_item("k1")
        clock.advance(3600)
        await state.mark_processing(item.id)

        updated = await state.get_item(item.id)
        assert updated is not None
        assert updated.updated_at == clock.now
        assert updated.discovered_at == item.discovered_at


class TestCompleteItem:
    """Chunks and completion are committed together."""

    @pytest.mark.asyncio
    async def test_complete_stores_chunks_and_count(self, state: StateManager, make_item):
        item = await make_item("k1")
        await state.mark_processing(item.id)

        stored = await state.complete_item(item.id, _drafts(3), [[1.0, 2.0]] * 3)

        assert stored == 3
        done = await state.get_item(item.id)
        assert done is not None
        assert done.status == ItemStatus.COMPLETED
        assert done.chunk_count == 3
        chunks = await state.get_chunks(item.id)
        assert [c.ordinal for c in chunks] == [0, 1, 2]
        assert chunks[1].anchor_start == 10.0
        assert chunks[0].embedding == pytest.approx([1.0, 2.0])

    @pytest.mark.asyncio
    async def test_complete_requires_processing(self, state: StateManager, make_item):
        item = await make_item("k1")

        with pytest.raises(StateError):
            await state.complete_item(item.id, _drafts(2), [[1.0]] * 2)

        assert await state.get_chunks(item.id) == []
        pending = await state.get_item(item.id)
        assert pending is not None
        assert pending.status == ItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_complete_rejects_empty_and_mismatched(self, state, make_item):
        item = await make_item("k1")
        await state.mark_processing(item.id)

        with pytest.raises(StateError):
            await state.complete_item(item.id, [], [])
        with pytest.raises(StateError):
            await state.complete_item(item.id, _drafts(2), [[1.0]])

        assert await state.get_chunks(item.id) == []


class TestConcurrentWrites:
    """Pipelines share one connection; one writer's rollback must not undo another's work."""

    @pytest.mark.asyncio
    async def test_rollback_does_not_split_completion(self, state: StateManager, make_item):
        done = await make_item("a")
        still_pending = await make_item("b")
        await state.mark_processing(done.id)

        results = await asyncio.gather(
            state.complete_item(done.id, _drafts(3), [None] * 3),
            state.mark_failed(still_pending.id, "not claimed"),
            return_exceptions=True,
        )

        assert results[0] == 3
        assert isinstance(results[1], StateError)
        item = await state.get_item(done.id)
        assert item is not None
        assert item.status == ItemStatus.COMPLETED
        assert item.chunk_count == 3
        assert len(await state.get_chunks(done.id)) == 3

    @pytest.mark.asyncio
    async def test_interleaved_completions_and_deletes(self, state, make_item):
        items = [await make_item(f"k{i}") for i in range(6)]
        for item in items[:3]:
            await state.mark_processing(item.id)

        await asyncio.gather(
            *(state.complete_item(item.id, _drafts(2), [None] * 2) for item in items[:3]),
            *(state.delete_item(item.id) for item in items[3:]),
            *(state.mark_failed(item.id, "not claimed") for item in items[3:]),
            return_exceptions=True,
        )

        for item in items[:3]:
            stored = await state.get_item(item.id)
            assert stored is not None
            assert stored.status == ItemStatus.COMPLETED
            assert len(await state.get_chunks(item.id)) == 2
        for item in items[3:]:
            assert await state.get_item(item.id) is None


class TestDeletionAndStats:
    """Deletion, reset and aggregate counts."""

    @pytest.mark.asyncio
    async def test_delete_item_counts_and_is_repeatable(self, state, make_item, complete_item):
        item = await complete_item(await make_item("k1"), 4)

        assert await state.delete_item(item.id) == (1, 4)
        assert await state.delete_item(item.id) == (0, 0)

    @pytest.mark.asyncio
    async def test_stats(self, state, make_item, complete_item):
        await complete_item(await make_item("a"), 2)
        await make_item("b")
        failed = await make_item("c")
        await state.mark_processing(failed.id)
        await state.mark_failed(failed.id, "x")
        await make_item("other", pipeline_type="news")

        stats = await state.stats("bulletin")

        assert stats.total_items == 3
        assert stats.completed_items == 1
        assert stats.pending_items == 1
        assert stats.failed_items == 1
        assert stats.total_chunks == 2
        assert stats.embedded_chunks == 2

    @pytest.mark.asyncio
    async def test_reset_pipeline_only_touches_one_pipeline(
        self, state, make_item, complete_item
    ):
        await complete_item(await make_item("a"), 2)
        await make_item("b")
        await make_item("n1", pipeline_type="news")

        result = await state.reset_pipeline("bulletin")

        assert result.items_deleted == 2
        assert result.chunks_deleted == 2
        assert await state.known_keys("bulletin") == set()
        assert await state.known_keys("news") == {"n1"}

    @pytest.mark.asyncio
    async def test_keyword_index_refresh(self, state, make_item, complete_item):
        item = await complete_item(await make_item("a"), 3)

        indexed = await state.refresh_keyword_index(item.id)

        assert indexed == (3 if state.keyword_index_enabled else 0)


class TestEmbeddingEncoding:
    def test_none_passes_through(self):
        assert encode_embedding(None) is None
        assert decode_embedding(None) is None

    def test_float32_precision(self):
        decoded = decode_embedding(encode_embedding([0.25, -1.5, 3.0]))
        assert decoded == pytest.approx([0.25, -1.5, 3.0])
