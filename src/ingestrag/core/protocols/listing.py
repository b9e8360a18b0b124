from typing import Protocol, runtime_checkable

from ingestrag.core.models import ListingEntry


@runtime_checkable
class ListingSource(Protocol):
    """A paginated external listing of items, newest first."""

    async def fetch_page(self, list_url: str, page: int) -> list[ListingEntry]: ...

    async def resolve_bound(self, value: str) -> int | None:
        """Map a user-supplied bound (key, number or URL) to a sequence number."""
        ...
