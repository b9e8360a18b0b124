"""Incremental and full scans of paginated listings into pending work items."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from ingestrag.core.exceptions import IngestRAGError
from ingestrag.core.logging_config import Timer, get_logger
from ingestrag.core.models import ItemStatus, ListingEntry, ScanConfig, ScanMode, ScanResult
from ingestrag.core.protocols.listing import ListingSource
from ingestrag.core.state import StateManager

logger = get_logger(__name__)


def entry_order(entry: ListingEntry) -> int | None:
    """Comparable position of an entry: its sequence, else a numeric key."""
    if entry.sequence is not None:
        return entry.sequence
    if entry.key.isdigit():
        return int(entry.key)
    return None


class SourceScanner:
    """Walks a listing newest-first and records unseen items as pending.

    Stop conditions, checked per page:

    - the page fetch fails or times out (partial results are kept)
    - the page is empty
    - an entry older than the end bound is seen
    - incremental mode only: the page contained an already-known key
    - ``max_pages`` pages were read

    Args:
        state: Work item store.
        listing: Listing to read.
        pipeline_type: Pipeline the discovered items belong to.
        page_timeout_seconds: Per-page fetch timeout.
        page_delay_seconds: Pause between page fetches.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        state: StateManager,
        listing: ListingSource,
        pipeline_type: str,
        *,
        page_timeout_seconds: float = 30.0,
        page_delay_seconds: float = 0.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.state = state
        self.listing = listing
        self.pipeline_type = pipeline_type
        self.page_timeout_seconds = page_timeout_seconds
        self.page_delay_seconds = page_delay_seconds
        self._sleep = sleep

    async def _resolve_bound(self, bound: str, value: str | None) -> int | None:
        """Resolve one bound; a failed or slow lookup leaves it unresolved."""
        if not value:
            return None
        try:
            async with asyncio.timeout(self.page_timeout_seconds):
                resolved = await self.listing.resolve_bound(value)
        except TimeoutError:
            logger.warning(
                "scan_bound_unresolved",
                bound=bound,
                value=value,
                error=f"timed out after {self.page_timeout_seconds}s",
            )
            return None
        except IngestRAGError as e:
            logger.warning("scan_bound_unresolved", bound=bound, value=value, error=str(e))
            return None
        if resolved is None:
            logger.warning("scan_bound_unresolved", bound=bound, value=value)
        return resolved

    async def _resolve_bounds(self, config: ScanConfig) -> tuple[int | None, int | None]:
        start = await self._resolve_bound("start", config.start_key)
        end = await self._resolve_bound("end", config.end_key)
        # The start bound is the newest item
        if start is not None and end is not None and start < end:
            start, end = end, start
        return start, end

    async def _fetch(self, list_url: str, page: int) -> list[ListingEntry]:
        async with asyncio.timeout(self.page_timeout_seconds):
            return await self.listing.fetch_page(list_url, page)

    async def scan(
        self,
        config: ScanConfig,
        mode: ScanMode = ScanMode.INCREMENTAL,
    ) -> ScanResult:
        """Scan the listing and persist newly discovered items.

        Args:
            config: Listing URL, optional start/end bounds and page limit.
            mode: ``incremental`` stops at known items; ``full`` reads every
                page and first clears pending/failed placeholders.

        Returns:
            Accepted entries, the number actually inserted, pages read and
            the reason the scan stopped.
        """
        scan_logger = logger.bind(
            pipeline_type=self.pipeline_type,
            list_url=config.list_url,
            mode=str(mode),
        )

        with Timer(scan_logger, "scan") as timer:
            if mode == ScanMode.FULL:
                cleared = await self.state.delete_items_by_status(
                    self.pipeline_type, [ItemStatus.PENDING, ItemStatus.FAILED]
                )
                scan_logger.info("placeholders_cleared", items_deleted=cleared.items_deleted)

            start_bound, end_bound = await self._resolve_bounds(config)
            bounded = start_bound is not None or end_bound is not None
            known = await self.state.known_keys(self.pipeline_type)

            seen: set[str] = set()
            accepted: list[ListingEntry] = []
            pages_scanned = 0
            stopped_reason = "max_pages"

            for page in range(1, config.max_pages + 1):
                try:
                    entries = await self._fetch(config.list_url, page)
                except TimeoutError:
                    scan_logger.warning(
                        "scan_page_timeout", page=page, timeout_seconds=self.page_timeout_seconds
                    )
                    stopped_reason = "page_error"
                    break
                except IngestRAGError as e:
                    scan_logger.warning("scan_page_failed", page=page, error=str(e))
                    stopped_reason = "page_error"
                    break

                pages_scanned = page
                if not entries:
                    stopped_reason = "exhausted"
                    break

                saw_known = False
                past_end = False
                for entry in entries:
                    if entry.key in seen:
                        continue
                    seen.add(entry.key)

                    if bounded:
                        order = entry_order(entry)
                        if order is None:
                            scan_logger.debug("scan_entry_unordered", key=entry.key)
                            continue
                        if end_bound is not None and order < end_bound:
                            past_end = True
                            break
                        if start_bound is not None and order > start_bound:
                            continue

                    if entry.key in known:
                        saw_known = True
                        continue
                    accepted.append(entry)

                if past_end:
                    stopped_reason = "end_key"
                    break
                if mode == ScanMode.INCREMENTAL and saw_known:
                    stopped_reason = "known_key"
                    break
                if page < config.max_pages and self.page_delay_seconds > 0:
                    await self._sleep(self.page_delay_seconds)

            new_count = 0
            for entry in accepted:
                if await self.state.insert_item_if_absent(self.pipeline_type, entry):
                    new_count += 1

            timer.complete(
                pages_scanned=pages_scanned,
                discovered=len(accepted),
                new_count=new_count,
                stopped_reason=stopped_reason,
            )

        return ScanResult(
            discovered=accepted,
            new_count=new_count,
            pages_scanned=pages_scanned,
            stopped_reason=stopped_reason,
        )
