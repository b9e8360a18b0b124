"""Tests for HTML board listings and detail-page parsing."""

from unittest.mock import AsyncMock

import httpx
import pytest

from ingestrag.core.exceptions import ScanError
from ingestrag.core.provider_factory import BULLETIN_LINK_PATTERN
from ingestrag.source.html_board import (
    HtmlBoardListing,
    IssueNumbering,
    date_sequence,
    detail_id_from_url,
    detect_detail_links,
    extract_image_urls,
    parse_issue_details,
)

BULLETIN_LIST = "https://church.example.org/Board/List/65"
NEWS_LIST = "https://church.example.org/Board/List/70"

BULLETIN_PAGE = """
<ul class="board">
  <li><a href="/Board/Detail/65/51234?page=1" title="2024년 6월 2일 주보">2024년 6월 2일 주보</a></li>
  <li><a href="/Board/Detail/65/51200?page=1" title="2024년 5월 26일 주보">2024년 5월 26일 주보</a></li>
  <li><a href="/Board/Detail/65/51200?page=1" title="2024년 5월 26일 주보">다시</a></li>
  <li><a href="/Board/Detail/66/10">공지사항</a></li>
</ul>
"""

NEWS_PAGE = '<a href="/Board/Detail/70/900">소식지</a><a href="/Board/Detail/70/901">소식지</a>'

NEWS_DETAIL_900 = """
<html><head><title>교회 소식</title></head><body>
<div class="document-title">2024년 6월호 교회소식</div>
<img src="https://church.example.org/files/news/900-1.jpg">
<img src="https://church.example.org/files/news/900-2.jpg">
<img src="https://church.example.org/Layouts/logo.png">
</body></html>
"""

NEWS_DETAIL_901 = "<html><body><p>안내문</p></body></html>"


def mock_client(pages: dict[str, str], status: int = 200) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        body = pages.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="not found")
        return httpx.Response(status, text=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestParsingHelpers:
    def test_detect_detail_links_board_pattern(self):
        html = '<a href="/Board/Detail/66/100">a</a><a href="/Board/Detail/66/101">b</a>'

        assert detect_detail_links(html) == ["/Board/Detail/66/100", "/Board/Detail/66/101"]

    def test_detect_detail_links_falls_through_patterns(self):
        html = '<a href="/news/12">x</a><a href="/news/12">dup</a><a href="/about">y</a>'

        assert detect_detail_links(html) == ["/news/12"]

    def test_detect_detail_links_query_id(self):
        assert detect_detail_links('<a href="/bbs/read.php?no=77">x</a>') == ["/bbs/read.php?no=77"]

    def test_detect_detail_links_none(self):
        assert detect_detail_links("<p>empty board</p>") == []

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://x.org/Board/Detail/65/51234?page=1", 51234),
            ("https://x.org/Board/Detail/65/51234/", 51234),
            ("https://x.org/read.php?board=a&no=77", 77),
            ("https://x.org/about", None),
        ],
    )
    def test_detail_id_from_url(self, url: str, expected: int | None):
        assert detail_id_from_url(url) == expected

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("2024년 6월 2일 주보", 20240602),
            ("2024 년 12 월 25 일", 20241225),
            ("posted 2024-06-02", 20240602),
            ("주보", None),
        ],
    )
    def test_date_sequence(self, text: str, expected: int | None):
        assert date_sequence(text) == expected

    def test_extract_image_urls_skips_layout_assets(self):
        html = (
            '<img src="https://x.org/files/a.jpg">'
            '<img src="https://x.org/files/a.jpg">'
            '<img src="https://x.org/Layouts/logo.png">'
            '<img src="https://cdn.x.org/banner.png">'
        )

        assert extract_image_urls(html) == ["https://x.org/files/a.jpg"]

    def test_extract_image_urls_without_hint(self):
        html = '<img src="https://cdn.x.org/page1.PNG">'

        assert extract_image_urls(html, path_hint=None) == ["https://cdn.x.org/page1.PNG"]


class TestIssueNumbering:
    def test_anchor_issue(self):
        numbering = IssueNumbering()

        assert numbering.issue_for(2020, 2) == 433
        assert numbering.month_for(433) == (2020, 2)

    def test_year_rollover(self):
        numbering = IssueNumbering()

        assert numbering.issue_for(2024, 6) == 485
        assert numbering.month_for(485) == (2024, 6)
        assert numbering.month_for(443) == (2020, 12)
        assert numbering.month_for(444) == (2021, 1)

    def test_parse_details_from_document_title(self):
        details = parse_issue_details(NEWS_DETAIL_900, "https://x.org/Board/Detail/70/900")

        assert details is not None
        assert (details.year, details.month, details.issue_number) == (2024, 6, 485)
        assert details.detail_id == 900
        assert details.label == "2024년 6월호"
        assert len(details.image_urls) == 2

    def test_parse_details_from_issue_marker(self):
        details = parse_issue_details("<p>제490호 교회소식</p>", "https://x.org/Board/Detail/70/1")

        assert details is not None
        assert details.issue_number == 490
        assert (details.year, details.month) == (2024, 11)

    def test_parse_details_unrecognised(self):
        assert parse_issue_details(NEWS_DETAIL_901, "https://x.org/d/1") is None


class TestHtmlBoardListing:
    """Listing pages fetched through a mocked transport."""

    @pytest.mark.asyncio
    async def test_bulletin_page_with_link_pattern(self):
        listing = HtmlBoardListing(
            http_client=mock_client({"/Board/List/65": BULLETIN_PAGE}),
            link_pattern=BULLETIN_LINK_PATTERN,
        )

        entries = await listing.fetch_page(BULLETIN_LIST, 1)

        assert [e.key for e in entries] == ["2024-06-02", "2024-05-26"]
        assert entries[0].sequence == 20240602
        assert entries[0].title == "2024년 6월 2일 주보"
        assert entries[0].reference == (
            "https://church.example.org/Board/Detail/65/51234?page=1"
        )
        assert entries[0].metadata == {"detail_id": 51234}

    @pytest.mark.asyncio
    async def test_auto_detected_links_keyed_by_detail_id(self):
        listing = HtmlBoardListing(http_client=mock_client({"/Board/List/70": NEWS_PAGE}))

        entries = await listing.fetch_page(NEWS_LIST, 1)

        assert [(e.key, e.sequence) for e in entries] == [("900", 900), ("901", 901)]

    @pytest.mark.asyncio
    async def test_resolve_details_keys_by_issue(self):
        listing = HtmlBoardListing(
            http_client=mock_client(
                {
                    "/Board/List/70": NEWS_PAGE,
                    "/Board/Detail/70/900": NEWS_DETAIL_900,
                    "/Board/Detail/70/901": NEWS_DETAIL_901,
                }
            ),
            resolve_details=True,
        )

        entries = await listing.fetch_page(NEWS_LIST, 1)

        # The unparseable detail page is skipped
        assert len(entries) == 1
        news = entries[0]
        assert news.key == "485"
        assert news.sequence == 485
        assert news.title == "2024년 6월호"
        assert news.metadata["image_urls"] == [
            "https://church.example.org/files/news/900-1.jpg",
            "https://church.example.org/files/news/900-2.jpg",
        ]

    @pytest.mark.asyncio
    async def test_http_error_raises_scan_error(self):
        listing = HtmlBoardListing(http_client=mock_client({"/Board/List/65": ""}, status=500))

        with pytest.raises(ScanError) as exc_info:
            await listing.fetch_page(BULLETIN_LIST, 1)

        assert "500" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout_raises_scan_error(self):
        client = AsyncMock()
        client.get = AsyncMock(side_effect=httpx.TimeoutException("Timed out"))
        listing = HtmlBoardListing(http_client=client)

        with pytest.raises(ScanError, match="Timeout"):
            await listing.fetch_page(BULLETIN_LIST, 2)

    @pytest.mark.asyncio
    async def test_page_parameter_sent(self):
        client = AsyncMock()
        response = httpx.Response(
            200, text="", request=httpx.Request("GET", BULLETIN_LIST)
        )
        client.get = AsyncMock(return_value=response)
        listing = HtmlBoardListing(http_client=client)

        assert await listing.fetch_page(BULLETIN_LIST, 3) == []

        client.get.assert_awaited_once_with(BULLETIN_LIST, params={"page": 3})

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("493", 493),
            ("2024-06-02", 20240602),
            ("2024년 6월 2일", 20240602),
            ("https://church.example.org/Board/Detail/65/51234", 51234),
            ("latest", None),
            ("  ", None),
        ],
    )
    async def test_resolve_bound(self, value: str, expected: int | None):
        listing = HtmlBoardListing(http_client=AsyncMock())

        assert await listing.resolve_bound(value) == expected

    @pytest.mark.asyncio
    async def test_resolve_bound_url_with_details(self):
        listing = HtmlBoardListing(
            http_client=mock_client({"/Board/Detail/70/900": NEWS_DETAIL_900}),
            resolve_details=True,
        )

        assert await listing.resolve_bound("https://church.example.org/Board/Detail/70/900") == 485

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self):
        client = AsyncMock()
        listing = HtmlBoardListing(http_client=client)

        await listing.close()

        client.aclose.assert_not_awaited()
