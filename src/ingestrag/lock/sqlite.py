"""SQLite implementation of the LockStore protocol."""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TypeVar

from ingestrag.core.exceptions import LockStoreUnavailableError
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

PathLike = str | Path
T = TypeVar("T")

_COLUMNS = (
    "task_type, lock_id, is_active, started_at, description, current_item, "
    "processed_count, total_count, stop_requested"
)


class SqliteLockStore:
    """SQLite-backed task locks shared by every process using the same file.

    One row per task type. Check-and-set runs inside ``BEGIN IMMEDIATE`` so
    two processes racing for the same task type serialise on the database
    write lock. Calls run in a worker thread to keep the event loop free.

    Args:
        db_path: Path to the SQLite database file.
        timeout_seconds: Age after which an active lock is treated as abandoned.
        now: Clock returning timezone-aware UTC datetimes.

    Raises:
        LockStoreUnavailableError: On any database failure.

    Example:
        store = SqliteLockStore("./ingestrag.db")
        result = await store.acquire("sermon", "sermon process (5)")
    """

    def __init__(
        self,
        db_path: PathLike,
        timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        *,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db_path = Path(db_path)
        self._timeout_seconds = timeout_seconds
        self._now = now
        self._initialized = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=10.0, isolation_level=None)
        if not self._initialized:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                "CREATE TABLE IF NOT EXISTS task_locks ("
                "task_type TEXT PRIMARY KEY,"
                "lock_id TEXT NOT NULL,"
                "is_active INTEGER NOT NULL,"
                "started_at TEXT NOT NULL,"
                "description TEXT NOT NULL DEFAULT '',"
                "current_item TEXT,"
                "processed_count INTEGER NOT NULL DEFAULT 0,"
                "total_count INTEGER NOT NULL DEFAULT 0,"
                "stop_requested INTEGER NOT NULL DEFAULT 0"
                ")"
            )
            self._initialized = True
        return conn

    @staticmethod
    def _row_to_lock(row: tuple) -> LockInfo:
        return LockInfo(
            task_type=row[0],
            lock_id=row[1],
            is_active=bool(row[2]),
            started_at=datetime.fromisoformat(row[3]),
            description=row[4],
            current_item=row[5],
            processed_count=row[6],
            total_count=row[7],
            stop_requested=bool(row[8]),
        )

    def _live(self, conn: sqlite3.Connection, task_type: str, now: datetime) -> LockInfo | None:
        """Read the active lock, clearing it when expired. Caller holds a transaction."""
        row = conn.execute(
            f"SELECT {_COLUMNS} FROM task_locks WHERE task_type = ? AND is_active = 1",
            (task_type,),
        ).fetchone()
        if row is None:
            return None
        lock = self._row_to_lock(row)
        if is_expired(lock, now, self._timeout_seconds):
            logger.warning(
                "lock_expired",
                task_type=task_type,
                lock_id=lock.lock_id,
                elapsed_minutes=lock.elapsed_minutes(now),
            )
            conn.execute("DELETE FROM task_locks WHERE task_type = ?", (task_type,))
            return None
        return lock

    def _run(self, task_type: str, operation: Callable[[sqlite3.Connection, datetime], T]) -> T:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self._connect()
        except (sqlite3.Error, OSError) as exc:
            raise LockStoreUnavailableError(f"lock store unavailable: {exc}") from exc
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                result = operation(conn, self._now())
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            return result
        except sqlite3.Error as exc:
            raise LockStoreUnavailableError(
                f"lock store failure for '{task_type}': {exc}"
            ) from exc
        finally:
            conn.close()

    def _acquire_sync(self, task_type: str, description: str) -> AcquireResult:
        def op(conn: sqlite3.Connection, now: datetime) -> AcquireResult:
            holder = self._live(conn, task_type, now)
            if holder is not None:
                return refused(holder, now)
            lock = LockInfo(
                task_type=task_type,
                lock_id=new_lock_id(),
                started_at=now,
                description=description,
            )
            conn.execute(
                "INSERT OR REPLACE INTO task_locks "
                f"({_COLUMNS}) VALUES (?, ?, 1, ?, ?, NULL, 0, 0, 0)",
                (task_type, lock.lock_id, now.isoformat(), description),
            )
            return granted(lock)

        return self._run(task_type, op)

    async def acquire(self, task_type: str, description: str) -> AcquireResult:
        return await asyncio.to_thread(self._acquire_sync, task_type, description)

    async def release(self, task_type: str) -> None:
        def op(conn: sqlite3.Connection, now: datetime) -> None:
            conn.execute("DELETE FROM task_locks WHERE task_type = ?", (task_type,))

        await asyncio.to_thread(self._run, task_type, op)

    async def heartbeat(
        self,
        task_type: str,
        current_item: str | None,
        processed: int,
        total: int,
    ) -> None:
        def op(conn: sqlite3.Connection, now: datetime) -> None:
            if self._live(conn, task_type, now) is None:
                return
            conn.execute(
                "UPDATE task_locks SET current_item = ?, processed_count = ?, total_count = ? "
                "WHERE task_type = ? AND is_active = 1",
                (current_item, processed, total, task_type),
            )

        await asyncio.to_thread(self._run, task_type, op)

    async def status(self, task_type: str) -> LockInfo | None:
        def op(conn: sqlite3.Connection, now: datetime) -> LockInfo | None:
            return self._live(conn, task_type, now)

        return await asyncio.to_thread(self._run, task_type, op)

    async def request_stop(self, task_type: str) -> bool:
        def op(conn: sqlite3.Connection, now: datetime) -> bool:
            if self._live(conn, task_type, now) is None:
                return False
            conn.execute(
                "UPDATE task_locks SET stop_requested = 1 WHERE task_type = ? AND is_active = 1",
                (task_type,),
            )
            return True

        return await asyncio.to_thread(self._run, task_type, op)


# Verify protocol conformance at runtime
assert issubclass(SqliteLockStore, LockStore)
