"""Speech-to-text providers."""

from ingestrag.transcribe.openai import OpenAITranscriber

__all__ = ["OpenAITranscriber"]
