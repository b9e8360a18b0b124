"""Timed transcripts from OpenAI Whisper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from openai import AsyncOpenAI  # type: ignore

from ingestrag.core.models import ContentSegment
from ingestrag.core.retry_config import RetryConfig
from ingestrag.providers._openai import OpenAIProviderMixin


def _field(segment: Any, name: str, default: Any) -> Any:
    # The SDK returns typed objects; raw JSON responses arrive as dicts.
    if isinstance(segment, dict):
        return segment.get(name, default)
    return getattr(segment, name, default)


class OpenAITranscriber(OpenAIProviderMixin):
    """Transcribe one audio file into segments timed in seconds.

    Segments Whisper itself flags as probably silent (``no_speech_prob``
    above ``max_no_speech_prob``) are dropped; on long recordings these are
    where it invents filler text.
    """

    _provider_name = "openai_stt"

    def __init__(
        self,
        *,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        model: str = "whisper-1",
        retry_config: RetryConfig | None = None,
        max_no_speech_prob: float = 0.8,
    ) -> None:
        super().__init__(client=client, api_key=api_key, model=model, retry_config=retry_config)
        self.max_no_speech_prob = max_no_speech_prob

    async def transcribe(
        self, audio_path: Path, language: str | None = None
    ) -> list[ContentSegment]:
        request: dict[str, Any] = {
            "model": self.model,
            "response_format": "verbose_json",
            "timestamp_granularities": ["segment"],
        }
        if language:
            request["language"] = language

        @self._get_retry_decorator()
        async def _create() -> Any:
            with audio_path.open("rb") as audio:
                return await self.client.audio.transcriptions.create(file=audio, **request)

        try:
            response = await _create()
        except Exception as e:
            self._logger.error(
                "transcription_failed", audio_path=str(audio_path), error=str(e)
            )
            raise self._wrap_error(e, "transcribe") from e

        raw = _field(response, "segments", None) or []
        segments = [
            ContentSegment(
                text=text,
                start=float(_field(s, "start", 0.0)),
                end=float(_field(s, "end", 0.0)),
            )
            for s in raw
            if (text := (_field(s, "text", "") or "").strip())
            and _field(s, "no_speech_prob", 0.0) <= self.max_no_speech_prob
        ]
        self._logger.info(
            "transcription_completed",
            audio_path=str(audio_path),
            segments_count=len(segments),
            dropped=len(raw) - len(segments),
        )
        return segments
