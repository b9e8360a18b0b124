"""Lock store that degrades from a durable backend to an in-memory one."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from ingestrag.core.exceptions import LockStoreUnavailableError
from ingestrag.core.logging_config import get_logger
from ingestrag.core.models import AcquireResult, LockInfo
from ingestrag.core.protocols.lock_store import LockStore

logger = get_logger(__name__)

T = TypeVar("T")


class FallbackLockStore:
    """Serve lock calls from ``primary``, or from ``fallback`` when it is down.

    When the primary raises LockStoreUnavailableError the call is repeated on
    the fallback store and a warning is logged. Exclusion then only holds
    within this process. With ``strict=True`` the error propagates instead
    and callers must treat the task as locked.

    Args:
        primary: Durable lock store (normally SqliteLockStore).
        fallback: In-process lock store.
        strict: Refuse to degrade.
    """

    def __init__(self, primary: LockStore, fallback: LockStore, *, strict: bool = False) -> None:
        self.primary = primary
        self.fallback = fallback
        self.strict = strict
        self.degraded = False

    async def _call(
        self,
        operation: str,
        task_type: str,
        call: Callable[[LockStore], Awaitable[T]],
    ) -> T:
        try:
            result = await call(self.primary)
        except LockStoreUnavailableError as exc:
            if self.strict:
                logger.error(
                    "lock_store_unavailable",
                    operation=operation,
                    task_type=task_type,
                    error=str(exc),
                    strict=True,
                )
                raise
            logger.warning(
                "lock_store_unavailable",
                operation=operation,
                task_type=task_type,
                error=str(exc),
                fallback="memory",
            )
            self.degraded = True
            return await call(self.fallback)
        if self.degraded:
            logger.info("lock_store_recovered", operation=operation, task_type=task_type)
            self.degraded = False
        return result

    async def acquire(self, task_type: str, description: str) -> AcquireResult:
        return await self._call(
            "acquire", task_type, lambda store: store.acquire(task_type, description)
        )

    async def release(self, task_type: str) -> None:
        # A run granted by the fallback must be released there too
        await self.fallback.release(task_type)
        await self._call("release", task_type, lambda store: store.release(task_type))

    async def heartbeat(
        self,
        task_type: str,
        current_item: str | None,
        processed: int,
        total: int,
    ) -> None:
        await self._call(
            "heartbeat",
            task_type,
            lambda store: store.heartbeat(task_type, current_item, processed, total),
        )

    async def status(self, task_type: str) -> LockInfo | None:
        return await self._call("status", task_type, lambda store: store.status(task_type))

    async def request_stop(self, task_type: str) -> bool:
        return await self._call(
            "request_stop", task_type, lambda store: store.request_stop(task_type)
        )


assert issubclass(FallbackLockStore, LockStore)
