"""Paginated HTML board listings (bulletins, newsletters) fetched with httpx."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx

from ingestrag.core.exceptions import ScanError
from ingestrag.core.logging_config import get_logger
from ingestrag.core.models import ListingEntry

logger = get_logger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

# Tried in order; the first pattern that matches anything wins
DETAIL_LINK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r'href="(?P<ref>/Board/Detail/\d+/\d+[^"]*)"'),
    re.compile(r'href="(?P<ref>/(?:view|detail|read|article|post|news)/\d+[^"]*)"', re.I),
    re.compile(r'href="(?P<ref>[^"]*\?(?:id|no|seq|idx|num)=\d+[^"]*)"', re.I),
    re.compile(r'href="(?P<ref>/\d{4,}[^"]*)"'),
)

_DETAIL_ID = (
    re.compile(r"/(\d+)/?(?:[?#].*)?$"),
    re.compile(r"[?&](?:id|no|seq|idx|num)=(\d+)", re.I),
)
_FULL_DATE = re.compile(r"(\d{4})\s*년\s*(\d{1,2})\s*월\s*(\d{1,2})\s*일")
_ISO_DATE = re.compile(r"(\d{4})-(\d{1,2})-(\d{1,2})")
_DOCUMENT_TITLE_MONTH = re.compile(r'class="document-title"[^>]*>[\s\S]*?(\d{4})년\s*(\d{1,2})월')
_HTML_TITLE_MONTH = re.compile(r"<title[^>]*>.*?(\d{4})년\s*(\d{1,2})월", re.S)
_BODY_MONTH_PATTERNS = (
    re.compile(r"(\d{4})년\s*(\d{1,2})월호"),
    re.compile(r">\s*(\d{4})년\s*(\d{1,2})월\s*<"),
)
_ISSUE_NUMBER = re.compile(r"제?(\d{3,4})호")
_IMAGE_PATTERNS = (
    re.compile(r'src="(https://data\.dimode\.co\.kr[^"\s]+\.(?:jpg|jpeg|png|gif))\s*"', re.I),
    re.compile(r'src="(https?://[^"\s]+\.(?:jpg|jpeg|png|gif))\s*"', re.I),
)
_EXCLUDED_IMAGE_PARTS = ("/Layouts/", "/Images/")


@dataclass(frozen=True)
class IssueNumbering:
    """Monthly issue numbering anchored at a known issue."""

    base_issue: int = 433
    base_year: int = 2020
    base_month: int = 2

    def issue_for(self, year: int, month: int) -> int:
        return self.base_issue + (year - self.base_year) * 12 + (month - self.base_month)

    def month_for(self, issue: int) -> tuple[int, int]:
        offset = issue - self.base_issue + (self.base_month - 1)
        return self.base_year + offset // 12, offset % 12 + 1


@dataclass
class IssueDetails:
    """Fields parsed from a detail page."""

    detail_id: int | None
    issue_number: int
    year: int
    month: int
    image_urls: list[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.year}년 {self.month}월호"


def detect_detail_links(html: str) -> list[str]:
    """Return detail-page links using the first pattern that finds any."""
    for pattern in DETAIL_LINK_PATTERNS:
        links: list[str] = []
        for match in pattern.finditer(html):
            link = match.group("ref")
            if link not in links:
                links.append(link)
        if links:
            logger.debug("detail_link_pattern_detected", pattern=pattern.pattern, count=len(links))
            return links
    return []


def detail_id_from_url(url: str) -> int | None:
    for pattern in _DETAIL_ID:
        match = pattern.search(url)
        if match:
            return int(match.group(1))
    return None


def date_sequence(text: str) -> int | None:
    """YYYYMMDD from a Korean or ISO date inside ``text``."""
    match = _FULL_DATE.search(text) or _ISO_DATE.search(text)
    if not match:
        return None
    year, month, day = (int(g) for g in match.groups())
    return year * 10000 + month * 100 + day


def extract_image_urls(html: str, path_hint: str | None = "/files/") -> list[str]:
    """Content image URLs of a detail page, skipping layout assets."""
    for pattern in _IMAGE_PATTERNS:
        urls: list[str] = []
        for match in pattern.finditer(html):
            url = match.group(1).strip()
            if url in urls or any(part in url for part in _EXCLUDED_IMAGE_PARTS):
                continue
            if path_hint and path_hint not in url and "dimode" not in url:
                continue
            urls.append(url)
        if urls:
            return urls
    return []


def parse_issue_details(
    html: str,
    detail_url: str,
    numbering: IssueNumbering | None = None,
) -> IssueDetails | None:
    """Derive the issue number of a monthly publication from its detail page.

    The year and month are read from the document title, then the HTML
    title, then the body. An explicit "제N호" marker is used when no month
    is found.
    """
    numbering = numbering or IssueNumbering()
    year = month = issue = None

    match = _DOCUMENT_TITLE_MONTH.search(html) or _HTML_TITLE_MONTH.search(html)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
    else:
        for pattern in _BODY_MONTH_PATTERNS:
            match = pattern.search(html)
            if match:
                year, month = int(match.group(1)), int(match.group(2))
                break

    if year is None or month is None:
        match = _ISSUE_NUMBER.search(html)
        if not match:
            return None
        issue = int(match.group(1))
        year, month = numbering.month_for(issue)

    if issue is None:
        issue = numbering.issue_for(year, month)

    return IssueDetails(
        detail_id=detail_id_from_url(detail_url),
        issue_number=issue,
        year=year,
        month=month,
        image_urls=extract_image_urls(html),
    )


class HtmlBoardListing:
    """ListingSource over a paginated HTML board.

    Each listing page is fetched with a ``page`` query parameter. Detail links
    are found with ``link_pattern`` (a regex with a ``ref`` group and an
    optional ``title`` group) or, when none is given, auto-detected.

    With ``resolve_details`` every detail page is fetched to derive an issue
    number, which becomes both the entry key and its sequence. Otherwise the
    sequence comes from a date in the link title (YYYYMMDD) and the key is
    the date when present, else the detail id.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        link_pattern: str | None = None,
        resolve_details: bool = False,
        numbering: IssueNumbering | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers=DEFAULT_HEADERS,
            follow_redirects=True,
        )
        self._owns_client = http_client is None
        self._link_pattern = re.compile(link_pattern) if link_pattern else None
        self._resolve_details = resolve_details
        self._numbering = numbering or IssueNumbering()

    async def _get_html(self, url: str, params: dict[str, int] | None = None) -> str:
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise ScanError(f"Timeout fetching {url}: {exc}", url=url) from exc
        except httpx.HTTPStatusError as exc:
            raise ScanError(f"HTTP {exc.response.status_code} for {url}", url=url) from exc
        except httpx.HTTPError as exc:
            raise ScanError(f"HTTP error fetching {url}: {exc}", url=url) from exc
        return response.text

    def _links(self, html: str) -> list[tuple[str, str]]:
        if self._link_pattern is None:
            return [(link, "") for link in detect_detail_links(html)]
        found: list[tuple[str, str]] = []
        seen: set[str] = set()
        for match in self._link_pattern.finditer(html):
            groups = match.groupdict()
            ref = groups.get("ref") or match.group(0)
            if ref in seen:
                continue
            seen.add(ref)
            found.append((ref, (groups.get("title") or "").strip()))
        return found

    async def fetch_page(self, list_url: str, page: int) -> list[ListingEntry]:
        html = await self._get_html(list_url, params={"page": page})
        entries: list[ListingEntry] = []

        for ref, title in self._links(html):
            detail_url = urljoin(list_url, ref)
            detail_id = detail_id_from_url(detail_url)

            if self._resolve_details:
                details = await self.fetch_details(detail_url)
                if details is None:
                    logger.info("detail_page_unparsed", url=detail_url)
                    continue
                entries.append(
                    ListingEntry(
                        key=str(details.issue_number),
                        title=title or details.label,
                        reference=detail_url,
                        sequence=details.issue_number,
                        metadata={
                            "detail_id": details.detail_id,
                            "year": details.year,
                            "month": details.month,
                            "image_urls": details.image_urls,
                        },
                    )
                )
                continue

            sequence = date_sequence(title) if title else None
            if sequence is not None:
                key = f"{sequence // 10000:04d}-{sequence // 100 % 100:02d}-{sequence % 100:02d}"
            elif detail_id is not None:
                key = str(detail_id)
                sequence = detail_id
            else:
                key = detail_url
            entries.append(
                ListingEntry(
                    key=key,
                    title=title or key,
                    reference=detail_url,
                    sequence=sequence,
                    metadata={"detail_id": detail_id} if detail_id is not None else {},
                )
            )

        logger.debug("listing_page_parsed", url=list_url, page=page, entries=len(entries))
        return entries

    async def fetch_details(self, detail_url: str) -> IssueDetails | None:
        html = await self._get_html(detail_url)
        return parse_issue_details(html, detail_url, self._numbering)

    async def resolve_bound(self, value: str) -> int | None:
        """Map a bound to a sequence number.

        Accepts a plain number, a date, or a detail-page URL.
        """
        value = value.strip()
        if not value:
            return None
        if value.isdigit():
            return int(value)
        sequence = date_sequence(value)
        if sequence is not None:
            return sequence
        if value.startswith(("http://", "https://")):
            if self._resolve_details:
                try:
                    details = await self.fetch_details(value)
                except ScanError as exc:
                    logger.warning("bound_resolution_failed", value=value, error=str(exc))
                    return None
                return details.issue_number if details else None
            return detail_id_from_url(value)
        return None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
