"""Content extractors: raw source -> anchored text segments -> chunks."""

from ingestrag.extract.ocr import PageOcrExtractor
from ingestrag.extract.youtube import YouTubeTranscriptExtractor

__all__ = ["PageOcrExtractor", "YouTubeTranscriptExtractor"]
