"""Task lock stores."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ingestrag.lock.fallback import FallbackLockStore
from ingestrag.lock.memory import InMemoryLockStore
from ingestrag.lock.sqlite import SqliteLockStore

if TYPE_CHECKING:
    from ingestrag.core.config import IngestRAGConfig
    from ingestrag.core.protocols.lock_store import LockStore


def create_lock_store(config: IngestRAGConfig) -> LockStore:
    """Build the lock store selected by ``config.lock_backend``."""
    memory = InMemoryLockStore(timeout_seconds=config.lock_timeout_seconds)
    if config.lock_backend == "memory":
        return memory
    durable = SqliteLockStore(config.database_path, timeout_seconds=config.lock_timeout_seconds)
    return FallbackLockStore(durable, memory, strict=config.lock_strict_mode)


__all__ = [
    "FallbackLockStore",
    "InMemoryLockStore",
    "SqliteLockStore",
    "create_lock_store",
]
