"""Keyword heuristic for locating the sermon inside a service recording."""

from __future__ import annotations

from collections.abc import Sequence

from ingestrag.core.models import Boundary, ContentSegment

CHOIR_KEYWORDS = ("찬양", "성가대", "합창", "특송", "노래", "찬송가", "찬송", "choir", "anthem")

SERMON_START_KEYWORDS = (
    "우리 찬양대",
    "감사합니다",
    "아멘",
    "사랑하는",
    "성도",
    "여러분",
    "말씀",
    "설교",
    "본문",
    "오늘",
    "간절히",
    "바랍니다",
    "함께",
    "sermon",
    "scripture",
    "beloved",
)

OFFERING_KEYWORDS = ("봉헌", "헌금", "드리", "드림", "십일조", "감사헌금", "예물", "offering", "tithe")

FALLBACK_START_RATIO = 0.2
FALLBACK_END_RATIO = 0.8
FALLBACK_CONFIDENCE = 0.3
KEYWORD_CONFIDENCE = 0.7


def _contains_any(text: str, keywords: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


class KeywordBoundaryClassifier:
    """Find the sermon between the last choir mention and the first offering mention.

    1. The choir ends at the last segment mentioning a choir keyword.
    2. The sermon starts at the first segment after it with a sermon-start keyword.
    3. The sermon ends where the first offering keyword appears after that.

    Without all three markers the middle 20-80% of segments is returned with
    low confidence.
    """

    def __init__(
        self,
        choir_keywords: Sequence[str] = CHOIR_KEYWORDS,
        sermon_start_keywords: Sequence[str] = SERMON_START_KEYWORDS,
        offering_keywords: Sequence[str] = OFFERING_KEYWORDS,
    ) -> None:
        self.choir_keywords = tuple(k.lower() for k in choir_keywords)
        self.sermon_start_keywords = tuple(k.lower() for k in sermon_start_keywords)
        self.offering_keywords = tuple(k.lower() for k in offering_keywords)

    def classify(self, segments: Sequence[ContentSegment]) -> Boundary:
        if not segments:
            return Boundary(start=0, end=0, confidence=0, reasoning="no segments")

        choir_end = -1
        for index, segment in enumerate(segments):
            if _contains_any(segment.text, self.choir_keywords):
                choir_end = index

        sermon_start = -1
        if choir_end != -1:
            for index in range(choir_end + 1, len(segments)):
                if _contains_any(segments[index].text, self.sermon_start_keywords):
                    sermon_start = index
                    break

        offering_start = -1
        search_from = sermon_start if sermon_start != -1 else choir_end + 1
        for index in range(search_from, len(segments)):
            if _contains_any(segments[index].text, self.offering_keywords):
                offering_start = index
                break

        if sermon_start == -1 or offering_start == -1:
            start_index = int(len(segments) * FALLBACK_START_RATIO)
            end_index = int(len(segments) * FALLBACK_END_RATIO)
            end_index = min(end_index, len(segments) - 1)
            return Boundary(
                start=segments[start_index].start,
                end=segments[end_index].end,
                confidence=FALLBACK_CONFIDENCE,
                reasoning="keywords not found; assumed the middle 20-80% of the recording",
            )

        return Boundary(
            start=segments[sermon_start].start,
            end=segments[offering_start].start,
            confidence=KEYWORD_CONFIDENCE,
            reasoning=(
                f'sermon starts at "{segments[sermon_start].text[:30]}", '
                f'offering starts at "{segments[offering_start].text[:30]}"'
            ),
        )

    async def detect(self, segments: list[ContentSegment], duration: float) -> Boundary:
        return self.classify(segments)
