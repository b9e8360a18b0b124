"""State management for ingestrag using async SQLite."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from array import array
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiosqlite

from ingestrag.core.exceptions import StateError
from ingestrag.core.logging_config import get_logger
from ingestrag.core.models import (
    Chunk,
    ChunkDraft,
    ItemStatus,
    ListingEntry,
    MaintenanceResult,
    PipelineStats,
    WorkItem,
)

logger = get_logger(__name__)

_ITEM_COLUMNS = (
    "id, pipeline_type, external_key, title, reference, sequence, status, "
    "attempt_count, chunk_count, last_error, metadata, discovered_at, updated_at"
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def encode_embedding(vector: Sequence[float] | None) -> bytes | None:
    """Pack an embedding as float32 bytes for the BLOB column."""
    if vector is None:
        return None
    return array("f", vector).tobytes()


def decode_embedding(blob: bytes | None) -> list[float] | None:
    if blob is None:
        return None
    values = array("f")
    values.frombytes(blob)
    return values.tolist()


class StateManager:
    """Persistent store for work items and their chunks using SQLite.

    Status changes are guarded in SQL so an item only moves forward
    (pending -> processing -> completed | failed). A guarded update that
    matches no row raises StateError.

    Pipelines share one connection, so every write transaction holds
    ``_tx_lock`` from its first statement until commit or rollback.
    """

    def __init__(self, db_path: str | Path, *, now: Callable[[], datetime] = _utcnow):
        """Initialize StateManager with database path.

        Args:
            db_path: Path to SQLite database file
            now: Clock returning timezone-aware UTC datetimes
        """
        self.db_path = Path(db_path)
        self._now = now
        self._db: aiosqlite.Connection | None = None
        self._fts_enabled = False
        self._tx_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize database with WAL mode and create schema."""
        async with self._tx_lock:
            if self._db is None:
                await self._create_schema()

    async def _create_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))

        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute("PRAGMA journal_mode=WAL")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS work_items (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pipeline_type TEXT NOT NULL,
                external_key TEXT NOT NULL,
                title TEXT NOT NULL,
                reference TEXT NOT NULL,
                sequence INTEGER,
                status TEXT NOT NULL,
                attempt_count INTEGER NOT NULL DEFAULT 0,
                chunk_count INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                metadata TEXT,
                discovered_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE(pipeline_type, external_key)
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                item_id INTEGER NOT NULL,
                ordinal INTEGER NOT NULL,
                content TEXT NOT NULL,
                anchor_start REAL NOT NULL,
                anchor_end REAL NOT NULL,
                embedding BLOB,
                created_at TEXT NOT NULL,
                PRIMARY KEY (item_id, ordinal),
                FOREIGN KEY (item_id) REFERENCES work_items(id) ON DELETE CASCADE
            )
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_work_items_status
            ON work_items(pipeline_type, status)
        """)

        try:
            await self._db.execute("""
                CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(
                    content,
                    item_id UNINDEXED,
                    ordinal UNINDEXED
                )
            """)
            self._fts_enabled = True
        except sqlite3.OperationalError as e:
            logger.warning("keyword_index_unavailable", error=str(e))
            self._fts_enabled = False

        await self._db.commit()

    @property
    def keyword_index_enabled(self) -> bool:
        return self._fts_enabled

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._db

    def _now_iso8601(self) -> str:
        return self._now().isoformat()

    @staticmethod
    def _row_to_item(row: Sequence[Any]) -> WorkItem:
        return WorkItem(
            id=row[0],
            pipeline_type=row[1],
            external_key=row[2],
            title=row[3],
            reference=row[4],
            sequence=row[5],
            status=ItemStatus(row[6]),
            attempt_count=row[7],
            chunk_count=row[8],
            last_error=row[9],
            metadata=json.loads(row[10]) if row[10] else {},
            discovered_at=datetime.fromisoformat(row[11]),
            updated_at=datetime.fromisoformat(row[12]),
        )

    # -- Discovery --

    async def insert_item_if_absent(self, pipeline_type: str, entry: ListingEntry) -> bool:
        """Insert a pending work item unless the key is already known.

        Args:
            pipeline_type: Pipeline the item belongs to
            entry: Listing entry to persist

        Returns:
            True when a new row was inserted
        """
        db = self._conn()
        now = self._now_iso8601()
        async with self._tx_lock:
            try:
                cursor = await db.execute(
                    "INSERT OR IGNORE INTO work_items (pipeline_type, external_key, title, "
                    "reference, sequence, status, metadata, discovered_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        pipeline_type,
                        entry.key,
                        entry.title,
                        entry.reference,
                        entry.sequence,
                        ItemStatus.PENDING.value,
                        json.dumps(entry.metadata) if entry.metadata else None,
                        now,
                        now,
                    ),
                )
                await db.commit()
            except sqlite3.Error as e:
                await db.rollback()
                raise StateError(f"Failed to insert item '{entry.key}': {e}") from e
        return cursor.rowcount == 1

    async def known_keys(self, pipeline_type: str) -> set[str]:
        db = self._conn()
        async with db.execute(
            "SELECT external_key FROM work_items WHERE pipeline_type = ?",
            (pipeline_type,),
        ) as cursor:
            rows = await cursor.fetchall()
        return {row[0] for row in rows}

    # -- Queries --

    async def get_item(self, item_id: int) -> WorkItem | None:
        db = self._conn()
        async with db.execute(
            f"SELECT {_ITEM_COLUMNS} FROM work_items WHERE id = ?",
            (item_id,),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_item(row) if row else None

    async def get_item_by_key(self, pipeline_type: str, external_key: str) -> WorkItem | None:
        db = self._conn()
        async with db.execute(
            f"SELECT {_ITEM_COLUMNS} FROM work_items WHERE pipeline_type = ? AND external_key = ?",
            (pipeline_type, external_key),
        ) as cursor:
            row = await cursor.fetchone()
        return self._row_to_item(row) if row else None

    async def list_items(
        self,
        pipeline_type: str,
        statuses: Iterable[ItemStatus] | None = None,
        limit: int | None = None,
    ) -> list[WorkItem]:
        """List items of a pipeline, newest sequence first.

        Args:
            pipeline_type: Pipeline to list
            statuses: Optional status filter
            limit: Optional maximum number of rows

        Returns:
            Work items ordered by sequence (descending), then discovery order
        """
        db = self._conn()
        query = f"SELECT {_ITEM_COLUMNS} FROM work_items WHERE pipeline_type = ?"
        params: list[Any] = [pipeline_type]

        status_values = [ItemStatus(s).value for s in statuses] if statuses is not None else None
        if status_values is not None:
            if not status_values:
                return []
            query += f" AND status IN ({', '.join('?' for _ in status_values)})"
            params.extend(status_values)

        query += " ORDER BY sequence IS NULL, sequence DESC, id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        async with db.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_item(row) for row in rows]

    async def get_chunks(self, item_id: int) -> list[Chunk]:
        db = self._conn()
        async with db.execute(
            "SELECT item_id, ordinal, content, anchor_start, anchor_end, embedding "
            "FROM chunks WHERE item_id = ? ORDER BY ordinal",
            (item_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            Chunk(
                item_id=row[0],
                ordinal=row[1],
                content=row[2],
                anchor_start=row[3],
                anchor_end=row[4],
                embedding=decode_embedding(row[5]),
            )
            for row in rows
        ]

    # -- Status transitions --

    async def _transition(
        self,
        item_id: int,
        expected: ItemStatus,
        target: ItemStatus,
        extra_sql: str = "",
        extra_params: Sequence[Any] = (),
    ) -> None:
        db = self._conn()
        async with self._tx_lock:
            try:
                cursor = await db.execute(
                    f"UPDATE work_items SET status = ?, updated_at = ?{extra_sql} "
                    "WHERE id = ? AND status = ?",
                    (target.value, self._now_iso8601(), *extra_params, item_id, expected.value),
                )
                if cursor.rowcount != 1:
                    await db.rollback()
                    raise StateError(
                        f"Illegal transition for item {item_id}: "
                        f"expected '{expected}' -> '{target}'"
                    )
                await db.commit()
            except sqlite3.Error as e:
                await db.rollback()
                raise StateError(f"Failed to update item {item_id}: {e}") from e

    async def mark_processing(self, item_id: int) -> None:
        await self._transition(item_id, ItemStatus.PENDING, ItemStatus.PROCESSING)

    async def mark_failed(self, item_id: int, error: str) -> None:
        await self._transition(
            item_id,
            ItemStatus.PROCESSING,
            ItemStatus.FAILED,
            ", last_error = ?",
            (error,),
        )

    async def record_attempt(self, item_id: int) -> int:
        """Increment the attempt counter of a processing item.

        Returns:
            The new attempt count
        """
        db = self._conn()
        async with self._tx_lock:
            try:
                await db.execute(
                    "UPDATE work_items SET attempt_count = attempt_count + 1, updated_at = ? "
                    "WHERE id = ? AND status = ?",
                    (self._now_iso8601(), item_id, ItemStatus.PROCESSING.value),
                )
                await db.commit()
            except sqlite3.Error as e:
                await db.rollback()
                raise StateError(f"Failed to record attempt for item {item_id}: {e}") from e

            async with db.execute(
                "SELECT attempt_count FROM work_items WHERE id = ?", (item_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            raise StateError(f"Item {item_id} disappeared while processing")
        return int(row[0])

    async def complete_item(
        self,
        item_id: int,
        chunks: Sequence[ChunkDraft],
        embeddings: Sequence[Sequence[float] | None],
    ) -> int:
        """Replace an item's chunks and mark it completed in one transaction.

        Either every chunk plus the status change is committed, or nothing is.

        Args:
            item_id: Item being completed (must be processing)
            chunks: Chunk drafts with contiguous ordinals
            embeddings: One vector per chunk

        Returns:
            Number of chunks stored
        """
        if not chunks:
            raise StateError(f"Refusing to complete item {item_id} without chunks")
        if len(embeddings) != len(chunks):
            raise StateError(
                f"Embedding count {len(embeddings)} does not match chunk count {len(chunks)}"
            )

        db = self._conn()
        now = self._now_iso8601()
        async with self._tx_lock:
            try:
                await db.execute("DELETE FROM chunks WHERE item_id = ?", (item_id,))
                await db.executemany(
                    "INSERT INTO chunks (item_id, ordinal, content, anchor_start, anchor_end, "
                    "embedding, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            item_id,
                            chunk.ordinal,
                            chunk.content,
                            chunk.anchor_start,
                            chunk.anchor_end,
                            encode_embedding(vector),
                            now,
                        )
                        for chunk, vector in zip(chunks, embeddings, strict=True)
                    ],
                )
                cursor = await db.execute(
                    "UPDATE work_items SET status = ?, chunk_count = ?, last_error = NULL, "
                    "updated_at = ? WHERE id = ? AND status = ?",
                    (
                        ItemStatus.COMPLETED.value,
                        len(chunks),
                        now,
                        item_id,
                        ItemStatus.PROCESSING.value,
                    ),
                )
                if cursor.rowcount != 1:
                    raise StateError(f"Item {item_id} is not processing; chunks not stored")
                await db.commit()
            except StateError:
                await db.rollback()
                raise
            except sqlite3.Error as e:
                await db.rollback()
                raise StateError(f"Failed to store chunks for item {item_id}: {e}") from e

        return len(chunks)

    # -- Keyword index --

    async def refresh_keyword_index(self, item_id: int) -> int:
        """Rebuild the FTS rows of one item from its stored chunks.

        Returns:
            Number of rows indexed (0 when FTS5 is unavailable)
        """
        if not self._fts_enabled:
            return 0
        db = self._conn()
        async with self._tx_lock:
            try:
                await db.execute("DELETE FROM chunks_fts WHERE item_id = ?", (item_id,))
                cursor = await db.execute(
                    "INSERT INTO chunks_fts (content, item_id, ordinal) "
                    "SELECT content, item_id, ordinal FROM chunks WHERE item_id = ?",
                    (item_id,),
                )
                await db.commit()
            except sqlite3.Error as e:
                await db.rollback()
                raise StateError(
                    f"Failed to refresh keyword index for item {item_id}: {e}"
                ) from e
        return cursor.rowcount

    # -- Deletion --

    async def delete_item(self, item_id: int) -> tuple[int, int]:
        """Delete an item and its chunks.

        Returns:
            (items_deleted, chunks_deleted); (0, 0) when the item is already gone
        """
        db = self._conn()
        async with self._tx_lock:
            try:
                if self._fts_enabled:
                    await db.execute("DELETE FROM chunks_fts WHERE item_id = ?", (item_id,))
                chunk_cursor = await db.execute(
                    "DELETE FROM chunks WHERE item_id = ?", (item_id,)
                )
                item_cursor = await db.execute("DELETE FROM work_items WHERE id = ?", (item_id,))
                await db.commit()
            except sqlite3.Error as e:
                await db.rollback()
                raise StateError(f"Failed to delete item {item_id}: {e}") from e
        return item_cursor.rowcount, chunk_cursor.rowcount

    async def delete_items_by_status(
        self, pipeline_type: str, statuses: Iterable[ItemStatus]
    ) -> MaintenanceResult:
        """Delete every item of a pipeline in the given statuses, chunks first."""
        result = MaintenanceResult()
        for item in await self.list_items(pipeline_type, statuses=statuses):
            items_deleted, chunks_deleted = await self.delete_item(item.id)
            result.items_deleted += items_deleted
            result.chunks_deleted += chunks_deleted
        return result

    async def reset_pipeline(self, pipeline_type: str) -> MaintenanceResult:
        """Delete all items and chunks of a pipeline."""
        return await self.delete_items_by_status(pipeline_type, list(ItemStatus))

    # -- Stats --

    async def stats(self, pipeline_type: str) -> PipelineStats:
        db = self._conn()
        counts: dict[str, int] = {}
        async with db.execute(
            "SELECT status, COUNT(*) FROM work_items WHERE pipeline_type = ? GROUP BY status",
            (pipeline_type,),
        ) as cursor:
            for status, count in await cursor.fetchall():
                counts[status] = count

        async with db.execute(
            "SELECT COUNT(*), COUNT(c.embedding) FROM chunks c "
            "JOIN work_items w ON w.id = c.item_id WHERE w.pipeline_type = ?",
            (pipeline_type,),
        ) as cursor:
            row = await cursor.fetchone()
        total_chunks, embedded_chunks = (row[0], row[1]) if row else (0, 0)

        return PipelineStats(
            total_items=sum(counts.values()),
            completed_items=counts.get(ItemStatus.COMPLETED.value, 0),
            pending_items=counts.get(ItemStatus.PENDING.value, 0),
            processing_items=counts.get(ItemStatus.PROCESSING.value, 0),
            failed_items=counts.get(ItemStatus.FAILED.value, 0),
            total_chunks=total_chunks,
            embedded_chunks=embedded_chunks,
        )

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> StateManager:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()
