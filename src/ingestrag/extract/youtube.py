"""Transcript extraction for recorded talks hosted on YouTube."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path

from ingestrag.chunking import chunk_segments
from ingestrag.core.logging_config import get_logger
from ingestrag.core.models import Boundary, ChunkDraft, ContentSegment, Extraction, WorkItem
from ingestrag.core.protocols.boundary import BoundaryClassifier
from ingestrag.source.splitter import AudioSplitter
from ingestrag.source.youtube import YouTubeSource
from ingestrag.transcribe.openai import OpenAITranscriber

logger = get_logger(__name__)


class YouTubeTranscriptExtractor:
    """Download a video's audio, transcribe it and chunk the timed segments.

    Anchors are seconds from the start of the recording. When a boundary
    classifier is configured the extractor supports sub-range detection.
    """

    def __init__(
        self,
        source: YouTubeSource,
        transcriber: OpenAITranscriber,
        *,
        classifier: BoundaryClassifier | None = None,
        splitter: AudioSplitter | None = None,
        work_dir: Path | None = None,
        audio_format: str = "mp3",
        language: str | None = None,
        cleanup_audio: bool = True,
        chunk_window: int = 500,
        chunk_overlap: int = 100,
    ) -> None:
        self.source = source
        self.transcriber = transcriber
        self.classifier = classifier
        self.splitter = splitter or AudioSplitter()
        self.work_dir = work_dir
        self.audio_format = audio_format
        self.language = language
        self.cleanup_audio = cleanup_audio
        self.chunk_window = chunk_window
        self.chunk_overlap = chunk_overlap

    @property
    def supports_subrange(self) -> bool:
        return self.classifier is not None

    async def extract(self, item: WorkItem) -> Extraction:
        item_logger = logger.bind(item_key=item.external_key, operation="extract")
        if self.work_dir is not None:
            output_dir = self.work_dir / item.external_key
            output_dir.mkdir(parents=True, exist_ok=True)
        else:
            output_dir = Path(tempfile.mkdtemp(prefix="ingestrag_"))

        try:
            audio = await self.source.download(item.reference, output_dir, self.audio_format)
            segments: list[ContentSegment] = []
            parts = await self.splitter.split_if_needed(audio.path, output_dir, audio.duration)
            for part in parts:
                part_segments = await self.transcriber.transcribe(part.path, self.language)
                segments.extend(
                    s.model_copy(
                        update={
                            "start": s.start + part.offset_seconds,
                            "end": s.end + part.offset_seconds,
                        }
                    )
                    for s in part_segments
                )
        finally:
            if self.cleanup_audio:
                shutil.rmtree(output_dir, ignore_errors=True)

        duration = audio.duration or (segments[-1].end if segments else 0.0)
        item_logger.info("transcript_extracted", segments_count=len(segments), duration=duration)
        return Extraction(
            segments=segments,
            title=audio.title,
            duration=duration,
            metadata={"video_url": item.reference},
        )

    async def detect_subrange(self, extraction: Extraction) -> Boundary | None:
        if self.classifier is None or not extraction.segments:
            return None
        return await self.classifier.detect(extraction.segments, extraction.duration or 0.0)

    def chunk(self, segments: list[ContentSegment]) -> list[ChunkDraft]:
        return chunk_segments(segments, self.chunk_window, self.chunk_overlap)
