"""Cooperative stop signal for batch runs."""

from __future__ import annotations

from ingestrag.core.exceptions import LockError
from ingestrag.core.logging_config import get_logger
from ingestrag.core.protocols.lock_store import LockStore

logger = get_logger(__name__)


class StopToken:
    """Checked by the batch loop before each item.

    A stop is requested either locally via ``cancel()`` or remotely by
    flagging the task's lock (``LockStore.request_stop``). The current item
    always finishes; only unstarted items are skipped.
    """

    def __init__(self, lock_store: LockStore | None = None, task_type: str | None = None) -> None:
        self._lock_store = lock_store
        self._task_type = task_type
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    async def stop_requested(self) -> bool:
        if self._cancelled:
            return True
        if self._lock_store is None or self._task_type is None:
            return False
        try:
            lock = await self._lock_store.status(self._task_type)
        except LockError as e:
            logger.warning("stop_check_failed", task_type=self._task_type, error=str(e))
            return False
        if lock is not None and lock.stop_requested:
            self._cancelled = True
        return self._cancelled
