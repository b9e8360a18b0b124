from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from ingestrag.core.config import IngestRAGConfig
from ingestrag.core.exceptions import ConfigurationError
from ingestrag.core.protocols import (
    ContentExtractor,
    EmbeddingProvider,
    ListingSource,
    LockStore,
)
from ingestrag.core.retry_config import RetryConfig
from ingestrag.core.state import StateManager

if TYPE_CHECKING:
    from ingestrag.pipeline import PipelineRegistry

BULLETIN_LINK_PATTERN = (
    r'href="(?P<ref>/Board/Detail/65/\d+[^"]*)"[^>]*'
    r'title="(?P<title>\d{4}년\s*\d{1,2}월\s*\d{1,2}일\s*주보)"'
)

PIPELINE_TYPES = ("sermon", "bulletin", "news")


def create_retry_config(config: IngestRAGConfig) -> RetryConfig:
    return RetryConfig(
        max_attempts=config.retry_max_attempts,
        min_wait_seconds=config.retry_min_wait_seconds,
        max_wait_seconds=config.retry_max_wait_seconds,
        exponential_multiplier=config.retry_exponential_multiplier,
    )


def create_embedding_provider(
    config: IngestRAGConfig, retry_config: RetryConfig
) -> EmbeddingProvider:
    from ingestrag.embed.openai import OpenAIEmbeddingProvider

    return OpenAIEmbeddingProvider(
        model=config.embedding_model,
        retry_config=retry_config,
        api_key=config.openai_api_key or None,
        dimensions=config.embedding_dimensions,
    )


def create_sermon_components(
    config: IngestRAGConfig, retry_config: RetryConfig
) -> tuple[ListingSource, ContentExtractor]:
    """YouTube playlist listing plus transcript extraction with sermon detection."""
    from ingestrag.boundary import KeywordBoundaryClassifier, OpenAIBoundaryClassifier
    from ingestrag.extract.youtube import YouTubeTranscriptExtractor
    from ingestrag.source.splitter import AudioSplitter
    from ingestrag.source.youtube import YdlSettings, YouTubePlaylistListing, YouTubeSource
    from ingestrag.transcribe.openai import OpenAITranscriber

    source = YouTubeSource(retry_config, YdlSettings.from_config(config))
    classifier = OpenAIBoundaryClassifier(
        api_key=config.openai_api_key or None,
        model=config.boundary_model,
        retry_config=retry_config,
        fallback=KeywordBoundaryClassifier(),
    )
    extractor = YouTubeTranscriptExtractor(
        source,
        OpenAITranscriber(
            api_key=config.openai_api_key or None,
            model=config.stt_model,
            retry_config=retry_config,
        ),
        classifier=classifier if config.boundary_detection else None,
        splitter=AudioSplitter(),
        work_dir=config.work_dir,
        audio_format=config.audio_format,
        language=config.stt_language,
        cleanup_audio=config.cleanup_audio,
        chunk_window=config.chunk_window,
        chunk_overlap=config.chunk_overlap,
    )
    return YouTubePlaylistListing(source), extractor


def create_board_components(
    pipeline_type: str, config: IngestRAGConfig, retry_config: RetryConfig
) -> tuple[ListingSource, ContentExtractor]:
    """HTML board listing plus page OCR for bulletins and newsletters."""
    from ingestrag.extract.ocr import (
        BULLETIN_OCR_PROMPT,
        NEWSLETTER_OCR_PROMPT,
        PageOcrExtractor,
    )
    from ingestrag.source.html_board import HtmlBoardListing

    is_news = pipeline_type == "news"
    if is_news:
        listing = HtmlBoardListing(link_pattern=config.news_link_pattern, resolve_details=True)
    else:
        listing = HtmlBoardListing(
            link_pattern=config.bulletin_link_pattern or BULLETIN_LINK_PATTERN
        )
    extractor = PageOcrExtractor(
        api_key=config.openai_api_key or None,
        model=config.ocr_model,
        prompt=NEWSLETTER_OCR_PROMPT if is_news else BULLETIN_OCR_PROMPT,
        retry_config=retry_config,
        chunk_window=config.chunk_window,
        chunk_overlap=config.chunk_overlap,
    )
    return listing, extractor


def build_registry(
    config: IngestRAGConfig,
    *,
    state: StateManager | None = None,
    lock_store: LockStore | None = None,
    **pipeline_kwargs: Any,
) -> PipelineRegistry:
    """Build every enabled pipeline over one shared state and lock store.

    Args:
        config: Application configuration.
        state: State store override (default: ``config.database_path``).
        lock_store: Lock store override (default: ``create_lock_store(config)``).
        **pipeline_kwargs: Extra keyword arguments for each IngestionPipeline.

    Returns:
        PipelineRegistry keyed by pipeline type.

    Raises:
        ConfigurationError: If an unknown pipeline type is enabled or no API key is set.
    """
    from ingestrag.lock import create_lock_store
    from ingestrag.pipeline import IngestionPipeline, PipelineRegistry
    from ingestrag.store.fts import FtsIndexMaintainer

    api_key = config.openai_api_key or os.environ.get("OPENAI_API_KEY")
    if config.enabled_pipelines and not api_key:
        raise ConfigurationError(
            "An OpenAI API key is required. Set INGESTRAG_OPENAI_API_KEY or OPENAI_API_KEY."
        )

    state = state or StateManager(config.database_path)
    lock_store = lock_store or create_lock_store(config)
    registry = PipelineRegistry(state, lock_store)
    if not config.enabled_pipelines:
        return registry

    retry_config = create_retry_config(config)
    embedder = create_embedding_provider(config, retry_config)
    index_maintainer = FtsIndexMaintainer(state)

    for pipeline_type in config.enabled_pipelines:
        if pipeline_type == "sermon":
            listing, extractor = create_sermon_components(config, retry_config)
        elif pipeline_type in ("bulletin", "news"):
            listing, extractor = create_board_components(pipeline_type, config, retry_config)
        else:
            raise ConfigurationError(
                f"Unknown pipeline type '{pipeline_type}'. Known: {', '.join(PIPELINE_TYPES)}"
            )
        registry.register(
            IngestionPipeline(
                pipeline_type,
                config,
                state=state,
                lock_store=lock_store,
                listing=listing,
                extractor=extractor,
                embedder=embedder,
                index_maintainer=index_maintainer,
                **pipeline_kwargs,
            )
        )
    return registry
