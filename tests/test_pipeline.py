"""Integration tests for IngestionPipeline and PipelineRegistry."""

from unittest.mock import AsyncMock

import pytest

from conftest import FakeEmbedder, FakeExtractor, FakeListing, entry
from ingestrag.core.config import IngestRAGConfig
from ingestrag.core.exceptions import ConfigurationError, LockConflictError, StateError
from ingestrag.core.models import ItemStatus
from ingestrag.core.provider_factory import build_registry
from ingestrag.lock import InMemoryLockStore
from ingestrag.pipeline import IngestionPipeline, PipelineRegistry

BULLETIN_URL = "https://example.org/Board/List/65"


def make_config(**kwargs) -> IngestRAGConfig:
    kwargs.setdefault("bulletin_list_url", BULLETIN_URL)
    kwargs.setdefault("inter_item_delay_seconds", 0.0)
    kwargs.setdefault("scan_page_delay_seconds", 0.0)
    return IngestRAGConfig(_env_file=None, **kwargs)


@pytest.fixture
def lock_store(clock) -> InMemoryLockStore:
    return InMemoryLockStore(now=clock)


@pytest.fixture
def make_pipeline(state, lock_store):
    """Build a bulletin pipeline over fakes."""

    def _make(
        listing: FakeListing | None = None,
        extractor: FakeExtractor | None = None,
        task_type: str = "bulletin",
        **config_kwargs,
    ) -> IngestionPipeline:
        return IngestionPipeline(
            task_type,
            make_config(**config_kwargs),
            state=state,
            lock_store=lock_store,
            listing=listing or FakeListing([]),
            extractor=extractor or FakeExtractor(),
            embedder=FakeEmbedder(),
            sleep=AsyncMock(),
        )

    return _make


class TestPipelineScan:
    """Discovery through the pipeline facade."""

    @pytest.mark.asyncio
    async def test_scan_summary_lists_all_items(self, make_pipeline, make_item, complete_item):
        await complete_item(await make_item("2024-05-26", sequence=20240526), 3)
        listing = FakeListing(
            [[entry("2024-06-02", sequence=20240602), entry("2024-05-26", sequence=20240526)]]
        )
        pipeline = make_pipeline(listing)

        summary = await pipeline.scan(pipeline.scan_config())

        assert summary.new_saved == 1
        assert summary.total == 2
        assert summary.pending == 1
        assert summary.completed == 1
        assert [i.external_key for i in summary.items] == ["2024-06-02", "2024-05-26"]

    @pytest.mark.asyncio
    async def test_scan_config_defaults_from_settings(self, make_pipeline):
        pipeline = make_pipeline(scan_max_pages=4)

        config = pipeline.scan_config(start_key="2024-06-02")

        assert config.list_url == BULLETIN_URL
        assert config.max_pages == 4
        assert config.start_key == "2024-06-02"

    @pytest.mark.asyncio
    async def test_scan_config_without_url(self, make_pipeline):
        pipeline = make_pipeline(task_type="news")

        with pytest.raises(ConfigurationError):
            pipeline.scan_config()

        assert pipeline.scan_config("https://example.org/news").list_url == (
            "https://example.org/news"
        )

    @pytest.mark.asyncio
    async def test_full_rescan(self, state, make_pipeline, make_item):
        await make_item("stale")
        pipeline = make_pipeline(FakeListing([[entry("9")]]))

        summary = await pipeline.scan(pipeline.scan_config(), full_rescan=True)

        assert await state.known_keys("bulletin") == {"9"}
        assert summary.total == 1


class TestPipelineProcess:
    """Processing runs under the task lock."""

    @pytest.mark.asyncio
    async def test_process_respects_max_items(self, state, make_pipeline, make_item, lock_store):
        for key, seq in (("a", 3), ("b", 2), ("c", 1)):
            await make_item(key, sequence=seq)
        pipeline = make_pipeline()

        report = await pipeline.process(max_items=2)

        assert report.processed_count == 2
        assert report.remaining_count == 1
        assert [r.key for r in report.results] == ["a", "b"]
        assert all(r.status == ItemStatus.COMPLETED for r in report.results)
        assert await lock_store.status("bulletin") is None

    @pytest.mark.asyncio
    async def test_process_default_max_items(self, make_pipeline, make_item):
        for i in range(3):
            await make_item(f"k{i}")

        report = await make_pipeline(default_max_items=2).process()

        assert report.processed_count == 2

    @pytest.mark.asyncio
    async def test_process_refused_while_locked(self, state, make_pipeline, make_item, lock_store):
        await make_item("a")
        await lock_store.acquire("bulletin", "bulletin process (5)")
        extractor = FakeExtractor()

        with pytest.raises(LockConflictError) as exc_info:
            await make_pipeline(extractor=extractor).process()

        assert exc_info.value.holder is not None
        assert exc_info.value.holder.description == "bulletin process (5)"
        assert extractor.extract_calls == 0
        item = await state.get_item_by_key("bulletin", "a")
        assert item is not None
        assert item.status == ItemStatus.PENDING
        # The holder's lock survives the refused run
        assert await lock_store.status("bulletin") is not None

    @pytest.mark.asyncio
    async def test_other_task_types_not_blocked(self, make_pipeline, make_item, lock_store):
        await make_item("a")
        await lock_store.acquire("sermon", "sermon process (5)")

        report = await make_pipeline().process()

        assert report.processed_count == 1

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self, state, make_pipeline, lock_store, monkeypatch):
        monkeypatch.setattr(state, "list_items", AsyncMock(side_effect=StateError("db gone")))

        with pytest.raises(StateError):
            await make_pipeline().process()

        assert await lock_store.status("bulletin") is None

    @pytest.mark.asyncio
    async def test_lock_carries_description(self, make_pipeline, make_item, lock_store):
        await make_item("a")
        seen = {}

        async def capture(_item):
            seen["lock"] = await lock_store.status("bulletin")

        pipeline = make_pipeline()
        pipeline._processor.index_maintainer = AsyncMock()
        pipeline._processor.index_maintainer.refresh.side_effect = capture

        await pipeline.process(max_items=3)

        assert seen["lock"].description == "bulletin process (3)"
        assert seen["lock"].processed_count == 0
        assert seen["lock"].current_item == "Item a"

    @pytest.mark.asyncio
    async def test_stop_request_leaves_rest_pending(self, make_pipeline, make_item, lock_store):
        for key, seq in (("a", 3), ("b", 2), ("c", 1)):
            await make_item(key, sequence=seq)

        async def stop(_item):
            await lock_store.request_stop("bulletin")

        pipeline = make_pipeline()
        pipeline._processor.index_maintainer = AsyncMock()
        pipeline._processor.index_maintainer.refresh.side_effect = stop

        report = await pipeline.process(max_items=3)

        assert report.stopped_by_user is True
        assert report.processed_count == 1
        assert report.remaining_count == 2
        assert await lock_store.status("bulletin") is None


class TestPipelineReset:
    @pytest.mark.asyncio
    async def test_reset_deletes_pipeline_items(
        self, state, make_pipeline, make_item, complete_item
    ):
        await complete_item(await make_item("a"), 2)
        await make_item("b")

        result = await make_pipeline().reset()

        assert result.items_deleted == 2
        assert result.chunks_deleted == 2
        assert (await state.stats("bulletin")).total_items == 0

    @pytest.mark.asyncio
    async def test_reset_refused_while_processing(self, state, make_pipeline, make_item, lock_store):
        await make_item("a")
        await lock_store.acquire("bulletin", "bulletin process (5)")

        with pytest.raises(LockConflictError):
            await make_pipeline().reset()

        assert await state.known_keys("bulletin") == {"a"}


class TestPipelineLifecycle:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, make_pipeline):
        listing = FakeListing([])
        listing.close = AsyncMock()
        extractor = FakeExtractor()
        extractor.close = AsyncMock()
        pipeline = make_pipeline(listing, extractor)

        await pipeline.close()
        await pipeline.close()

        listing.close.assert_awaited_once()
        extractor.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stats(self, make_pipeline, make_item, complete_item):
        await complete_item(await make_item("a"), 2)
        await make_item("b")

        stats = await make_pipeline().stats()

        assert stats.total_items == 2
        assert stats.completed_items == 1
        assert stats.total_chunks == 2


class TestPipelineRegistry:
    @pytest.mark.asyncio
    async def test_mapping_interface(self, state, lock_store, make_pipeline):
        registry = PipelineRegistry(state, lock_store)
        registry.register(make_pipeline())
        registry.register(make_pipeline(task_type="news"))

        assert len(registry) == 2
        assert set(registry) == {"bulletin", "news"}
        assert registry["news"].task_type == "news"
        assert "sermon" not in registry

    @pytest.mark.asyncio
    async def test_close_closes_pipelines_and_state(self, tmp_path, lock_store):
        from ingestrag.core.state import StateManager

        state = StateManager(tmp_path / "registry.db")
        listing = FakeListing([])
        listing.close = AsyncMock()
        pipeline = IngestionPipeline(
            "bulletin",
            make_config(),
            state=state,
            lock_store=lock_store,
            listing=listing,
            extractor=FakeExtractor(),
            embedder=FakeEmbedder(),
        )

        async with PipelineRegistry(state, lock_store, {"bulletin": pipeline}) as registry:
            assert registry.state._db is not None

        listing.close.assert_awaited_once()
        assert state._db is None


class TestBuildRegistry:
    def test_requires_api_key(self, monkeypatch, tmp_path):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        with pytest.raises(ConfigurationError):
            build_registry(make_config(database_path=str(tmp_path / "x.db")))

    def test_no_pipelines_needs_no_key(self, monkeypatch, tmp_path):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)

        registry = build_registry(
            make_config(enabled_pipelines=[], database_path=str(tmp_path / "x.db"))
        )

        assert len(registry) == 0

    def test_unknown_pipeline_type(self, tmp_path):
        config = make_config(
            openai_api_key="sk-test",
            enabled_pipelines=["podcast"],
            database_path=str(tmp_path / "x.db"),
        )

        with pytest.raises(ConfigurationError, match="podcast"):
            build_registry(config)

    @pytest.mark.asyncio
    async def test_builds_enabled_pipelines(self, tmp_path, lock_store):
        config = make_config(
            openai_api_key="sk-test",
            enabled_pipelines=["bulletin", "news"],
            database_path=str(tmp_path / "x.db"),
        )

        async with build_registry(config, lock_store=lock_store) as registry:
            assert set(registry) == {"bulletin", "news"}
            assert registry["news"].lock_store is lock_store
