"""LockStore protocol for per-task-type mutual exclusion.

Backends hold at most one active lock per task type. Expiry is evaluated on
read: a lock older than the configured timeout is cleared by whichever call
observes it next, so a crashed run never blocks its task type forever.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ingestrag.core.models import AcquireResult, LockInfo


@runtime_checkable
class LockStore(Protocol):
    """Protocol for task lock backends.

    Example:
        store = InMemoryLockStore(timeout_seconds=7200)
        result = await store.acquire("bulletin", "bulletin process (5)")
        if result.granted:
            try:
                ...
            finally:
                await store.release("bulletin")
    """

    async def acquire(self, task_type: str, description: str) -> AcquireResult:
        """Try to take the lock for a task type.

        Args:
            task_type: Task type to lock (e.g., "sermon", "bulletin").
            description: Human-readable description of the run.

        Returns:
            Granted result with a fresh lock id, or a refused result carrying
            the holder's snapshot and elapsed minutes.
        """
        ...

    async def release(self, task_type: str) -> None:
        """Release the lock for a task type. Idempotent."""
        ...

    async def heartbeat(
        self,
        task_type: str,
        current_item: str | None,
        processed: int,
        total: int,
    ) -> None:
        """Update progress fields of the active lock; never changes liveness."""
        ...

    async def status(self, task_type: str) -> LockInfo | None:
        """Return the active, non-expired lock, or None when unlocked."""
        ...

    async def request_stop(self, task_type: str) -> bool:
        """Flag the active lock so the holder stops before its next item.

        Returns:
            True when an active lock was flagged.
        """
        ...
