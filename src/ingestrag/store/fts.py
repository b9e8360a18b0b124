"""SQLite FTS5 keyword index refreshed per completed item."""

from __future__ import annotations

from ingestrag.core.logging_config import get_logger
from ingestrag.core.models import WorkItem
from ingestrag.core.protocols.index import IndexMaintainer
from ingestrag.core.state import StateManager

logger = get_logger(__name__)


class FtsIndexMaintainer:
    """Rebuilds an item's rows in the ``chunks_fts`` table after it completes."""

    def __init__(self, state: StateManager) -> None:
        self.state = state

    async def refresh(self, item: WorkItem) -> None:
        indexed = await self.state.refresh_keyword_index(item.id)
        logger.debug(
            "keyword_index_refreshed",
            item_key=item.external_key,
            rows=indexed,
            enabled=self.state.keyword_index_enabled,
        )


assert issubclass(FtsIndexMaintainer, IndexMaintainer)
