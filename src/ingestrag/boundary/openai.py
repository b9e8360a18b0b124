"""LLM-backed boundary classifier with keyword fallback."""

from __future__ import annotations

import json
from typing import Any

from openai import AsyncOpenAI  # type: ignore

from ingestrag.boundary.keyword import KeywordBoundaryClassifier
from ingestrag.core.exceptions import RateLimitError
from ingestrag.core.models import Boundary, ContentSegment
from ingestrag.core.retry_config import RetryConfig
from ingestrag.providers._openai import OpenAIProviderMixin

SYSTEM_PROMPT = (
    "You analyse transcripts of recorded church services and locate the sermon precisely."
)

USER_PROMPT = """Below is the transcript of a worship service recording.
Each line has the form [start - end] text.

{transcript}

Order of service: prayer -> scripture reading -> choir anthem -> SERMON -> offering hymn -> offering prayer

Find the sermon start time and end time.

1. The sermon starts right after the choir anthem has completely finished, after
   "amen" or "thank you", where the pastor begins speaking to the congregation.
   A sermon title announced during the opening prayer is NOT the start.
2. The sermon ends just before the offering ("봉헌", "헌금", "offering").
3. Sermons usually run 20-40 minutes or longer.

Respond with JSON only:
{{"startTime": "MM:SS", "endTime": "MM:SS", "confidence": 0.95, "reasoning": "why"}}"""


def format_time(seconds: float) -> str:
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}:{secs:02d}"


def parse_time(value: Any) -> float | None:
    """Parse MM:SS or HH:MM:SS into seconds."""
    if isinstance(value, int | float):
        return float(value)
    if not isinstance(value, str):
        return None
    try:
        parts = [float(p) for p in value.strip().split(":")]
    except ValueError:
        return None
    if len(parts) == 2:
        return parts[0] * 60 + parts[1]
    if len(parts) == 3:
        return parts[0] * 3600 + parts[1] * 60 + parts[2]
    return None


class OpenAIBoundaryClassifier(OpenAIProviderMixin):
    """Ask a chat model for the sermon boundary, trusting it above a confidence floor.

    The keyword heuristic answers whenever the model's reply is unusable,
    the call fails for a non-rate-limit reason, or its confidence is at or
    below ``min_confidence``. Rate limits propagate so the item is retried
    after the rate-limit wait.
    """

    _provider_name = "openai_boundary"

    def __init__(
        self,
        *,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        model: str = "gpt-4o-mini",
        retry_config: RetryConfig | None = None,
        fallback: KeywordBoundaryClassifier | None = None,
        min_confidence: float = 0.6,
    ) -> None:
        super().__init__(client=client, api_key=api_key, model=model, retry_config=retry_config)
        self.fallback = fallback or KeywordBoundaryClassifier()
        self.min_confidence = min_confidence

    async def detect(self, segments: list[ContentSegment], duration: float) -> Boundary:
        keyword_result = self.fallback.classify(segments)
        if not segments:
            return keyword_result

        operation_logger = self._logger.bind(
            operation="detect_boundary",
            segments_count=len(segments),
            duration_seconds=duration,
        )

        transcript = "\n".join(
            f"[{format_time(s.start)} - {format_time(s.end)}] {s.text}" for s in segments
        )
        retry_decorator = self._get_retry_decorator()

        @retry_decorator
        async def _complete_with_retry() -> Any:
            return await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": USER_PROMPT.format(transcript=transcript)},
                ],
                response_format={"type": "json_object"},
                temperature=0.3,
            )

        try:
            response = await _complete_with_retry()
        except Exception as e:
            wrapped = self._wrap_error(e, "detect_boundary")
            if isinstance(wrapped, RateLimitError):
                raise wrapped from e
            operation_logger.warning("boundary_model_failed", error=str(wrapped))
            return keyword_result

        boundary = self._parse(response)
        if boundary is None:
            operation_logger.warning("boundary_response_unusable")
            return keyword_result
        if boundary.confidence <= self.min_confidence:
            operation_logger.info(
                "boundary_low_confidence",
                confidence=boundary.confidence,
                keyword_confidence=keyword_result.confidence,
            )
            return keyword_result

        operation_logger.info(
            "boundary_detected",
            start=boundary.start,
            end=boundary.end,
            confidence=boundary.confidence,
        )
        return boundary

    @staticmethod
    def _parse(response: Any) -> Boundary | None:
        try:
            content = response.choices[0].message.content or "{}"
            payload = json.loads(content)
        except (AttributeError, IndexError, json.JSONDecodeError):
            return None
        if not isinstance(payload, dict):
            return None
        start = parse_time(payload.get("startTime"))
        end = parse_time(payload.get("endTime"))
        if start is None or end is None or end <= start:
            return None
        try:
            confidence = float(payload.get("confidence", 0.8))
        except (TypeError, ValueError):
            confidence = 0.8
        return Boundary(
            start=start,
            end=end,
            confidence=confidence,
            reasoning=str(payload.get("reasoning") or "model analysis"),
        )
