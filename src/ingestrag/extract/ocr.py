"""Vision-model OCR of scanned pages linked from a board detail page."""

from __future__ import annotations

import base64
from typing import Any

import httpx
from openai import AsyncOpenAI  # type: ignore

from ingestrag.chunking import chunk_segments
from ingestrag.core.exceptions import ProviderError
from ingestrag.core.models import Boundary, ChunkDraft, ContentSegment, Extraction, WorkItem
from ingestrag.core.retry_config import RetryConfig
from ingestrag.providers._openai import OpenAIProviderMixin
from ingestrag.source.html_board import DEFAULT_HEADERS, extract_image_urls

BULLETIN_OCR_PROMPT = """This image is one page of a Korean church bulletin (order of worship).
Extract every piece of Korean text on the page exactly as printed.

Rules:
1. Split the page into sections, each starting with "###".
2. State the section type (order of worship, church news, announcements, prayer requests,
   offerings, volunteers, church school, scripture reading, hymns, new members, memorial...).
3. Keep names, titles, dates, times and places exactly as written.
4. Never invent text; mark unreadable text with [?].

Format:
### Section 1
Type: ...
Title: ...
Content: ...
"""

NEWSLETTER_OCR_PROMPT = """This image is one page of a Korean church newspaper.
Extract the text of every article on the page exactly as printed, in reading order.
Start each article with "###" followed by its headline. Never invent text; mark unreadable
text with [?]."""


class PageOcrExtractor(OpenAIProviderMixin):
    """Extract page images of an issue and OCR each page with a vision model.

    Image URLs come from the item's ``image_urls`` metadata when the listing
    recorded them, otherwise from the detail page. Anchors are 1-based page
    numbers. Pages whose image cannot be downloaded are skipped; model errors
    propagate so the item can be retried.
    """

    _provider_name = "openai_ocr"

    def __init__(
        self,
        *,
        client: AsyncOpenAI | None = None,
        api_key: str | None = None,
        model: str = "gpt-4o",
        http_client: httpx.AsyncClient | None = None,
        prompt: str = BULLETIN_OCR_PROMPT,
        retry_config: RetryConfig | None = None,
        image_path_hint: str | None = "/files/",
        max_tokens: int = 4096,
        chunk_window: int = 500,
        chunk_overlap: int = 100,
    ) -> None:
        super().__init__(client=client, api_key=api_key, model=model, retry_config=retry_config)
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(30.0),
            headers=DEFAULT_HEADERS,
            follow_redirects=True,
        )
        self._owns_http = http_client is None
        self.prompt = prompt
        self.image_path_hint = image_path_hint
        self.max_tokens = max_tokens
        self.chunk_window = chunk_window
        self.chunk_overlap = chunk_overlap

    @property
    def supports_subrange(self) -> bool:
        return False

    async def _image_urls(self, item: WorkItem) -> list[str]:
        urls = item.metadata.get("image_urls")
        if urls:
            return list(urls)
        try:
            response = await self._http.get(item.reference)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ProviderError(
                f"HTTP {exc.response.status_code} for {item.reference}",
                provider="http",
                retryable=exc.response.status_code >= 500,
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"HTTP error fetching {item.reference}: {exc}", provider="http", retryable=True
            ) from exc
        return extract_image_urls(response.text, self.image_path_hint)

    async def _image_data_url(self, url: str) -> str | None:
        try:
            response = await self._http.get(
                url, headers={"Accept": "image/jpeg,image/png,image/*", "Referer": url}
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._logger.warning("page_image_download_failed", url=url, error=str(exc))
            return None
        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
        encoded = base64.b64encode(response.content).decode("ascii")
        return f"data:{content_type};base64,{encoded}"

    async def _ocr(self, data_url: str) -> str:
        retry_decorator = self._get_retry_decorator()

        @retry_decorator
        async def _complete_with_retry() -> Any:
            return await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": self.prompt},
                            {"type": "image_url", "image_url": {"url": data_url, "detail": "high"}},
                        ],
                    }
                ],
                max_tokens=self.max_tokens,
            )

        try:
            response = await _complete_with_retry()
        except Exception as e:
            raise self._wrap_error(e, "ocr") from e
        return (response.choices[0].message.content or "").strip()

    async def extract(self, item: WorkItem) -> Extraction:
        operation_logger = self._logger.bind(item_key=item.external_key, operation="extract")
        urls = await self._image_urls(item)
        segments: list[ContentSegment] = []

        for page_number, url in enumerate(urls, start=1):
            data_url = await self._image_data_url(url)
            if data_url is None:
                continue
            text = await self._ocr(data_url)
            if text:
                segments.append(ContentSegment(text=text, start=page_number, end=page_number))

        operation_logger.info("pages_extracted", pages=len(urls), segments_count=len(segments))
        return Extraction(
            segments=segments,
            title=item.title,
            duration=float(len(urls)),
            metadata={"page_count": len(urls)},
        )

    async def detect_subrange(self, extraction: Extraction) -> Boundary | None:
        return None

    def chunk(self, segments: list[ContentSegment]) -> list[ChunkDraft]:
        return chunk_segments(segments, self.chunk_window, self.chunk_overlap)

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()
