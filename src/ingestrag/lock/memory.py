"""In-process lock store."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

from ingestrag.core.logging_config import get_logger
from ingestrag.core.models import AcquireResult, LockInfo
from ingestrag.core.protocols.lock_store import LockStore
from ingestrag.lock._base import (
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    granted,
    is_expired,
    new_lock_id,
    refused,
    utcnow,
)

logger = get_logger(__name__)


class InMemoryLockStore:
    """Lock store kept in a dict owned by this instance.

    Exclusion holds across coroutines of one process only. All reads and
    writes go through one ``asyncio.Lock`` so check-and-set is atomic.

    Args:
        timeout_seconds: Age after which an active lock is treated as abandoned.
        now: Clock returning timezone-aware UTC datetimes.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        *,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._timeout_seconds = timeout_seconds
        self._now = now
        self._locks: dict[str, LockInfo] = {}
        self._guard = asyncio.Lock()

    def _live(self, task_type: str, now: datetime) -> LockInfo | None:
        lock = self._locks.get(task_type)
        if lock is None:
            return None
        if is_expired(lock, now, self._timeout_seconds):
            logger.warning(
                "lock_expired",
                task_type=task_type,
                lock_id=lock.lock_id,
                elapsed_minutes=lock.elapsed_minutes(now),
            )
            del self._locks[task_type]
            return None
        return lock

    async def acquire(self, task_type: str, description: str) -> AcquireResult:
        async with self._guard:
            now = self._now()
            holder = self._live(task_type, now)
            if holder is not None:
                return refused(holder.model_copy(), now)
            lock = LockInfo(
                task_type=task_type,
                lock_id=new_lock_id(),
                started_at=now,
                description=description,
            )
            self._locks[task_type] = lock
            return granted(lock)

    async def release(self, task_type: str) -> None:
        async with self._guard:
            self._locks.pop(task_type, None)

    async def heartbeat(
        self,
        task_type: str,
        current_item: str | None,
        processed: int,
        total: int,
    ) -> None:
        async with self._guard:
            lock = self._live(task_type, self._now())
            if lock is None:
                return
            lock.current_item = current_item
            lock.processed_count = processed
            lock.total_count = total

    async def status(self, task_type: str) -> LockInfo | None:
        async with self._guard:
            lock = self._live(task_type, self._now())
            return lock.model_copy() if lock else None

    async def request_stop(self, task_type: str) -> bool:
        async with self._guard:
            lock = self._live(task_type, self._now())
            if lock is None:
                return False
            lock.stop_requested = True
            return True


assert issubclass(InMemoryLockStore, LockStore)
