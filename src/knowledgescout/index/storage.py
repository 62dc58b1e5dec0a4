"""SQLite persistence for documents and chunk embeddings."""

from __future__ import annotations

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Protocol

import numpy as np

from knowledgescout.models import (
    ChunkRecord,
    DocumentRecord,
    IndexOverview,
    IndexStatus,
    Visibility,
)


class ChunkStore(Protocol):
    """Persistence port the retrieval core depends on."""

    dimension: int

    def get_document(self, document_id: str) -> DocumentRecord | None: ...

    def list_documents(
        self, statuses: Iterable[IndexStatus] | None = None
    ) -> List[DocumentRecord]: ...

    def update_document_status(
        self, document_id: str, status: IndexStatus, *, chunk_count: int | None = None
    ) -> bool: ...

    def delete_chunks(self, document_id: str) -> int: ...

    def insert_chunk(self, chunk: ChunkRecord) -> None: ...

    def list_chunks(
        self, *, document_id: str | None = None, limit: int | None = None
    ) -> List[ChunkRecord]: ...

    def touch_last_index_update(self) -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteChunkStore:
    """Persistence layer for documents and chunk embeddings.

    One connection is shared between the web workers and the indexing pool,
    so every statement runs under ``_lock``.
    """

    def __init__(self, db_path: Path | str, *, dimension: int) -> None:
        self.db_path = Path(db_path)
        self.dimension = dimension
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._ensure_schema()

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT,
                    title TEXT NOT NULL,
                    filename TEXT,
                    content TEXT NOT NULL,
                    visibility TEXT NOT NULL DEFAULT 'private',
                    status TEXT NOT NULL DEFAULT 'unindexed',
                    chunk_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY,
                    document_id TEXT NOT NULL,
                    position INTEGER NOT NULL CHECK (position >= 1),
                    text TEXT NOT NULL,
                    embedding BLOB,
                    created_at TEXT NOT NULL,
                    UNIQUE(document_id, position),
                    FOREIGN KEY(document_id) REFERENCES documents(id) ON DELETE CASCADE
                )
                """
            )
            conn.execute(
                """CREATE INDEX IF NOT EXISTS idx_chunks_document_id
                    ON chunks(document_id)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS index_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
                """
            )

    # Documents

    def _row_to_document(self, row: sqlite3.Row) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            owner_id=row["owner_id"],
            filename=row["filename"],
            visibility=Visibility(row["visibility"]),
            status=IndexStatus(row["status"]),
            chunk_count=row["chunk_count"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def create_document(
        self,
        title: str,
        content: str,
        *,
        owner_id: str | None = None,
        filename: str | None = None,
        visibility: Visibility = Visibility.PRIVATE,
        document_id: str | None = None,
    ) -> DocumentRecord:
        doc_id = document_id or str(uuid.uuid4())
        stamp = _now().isoformat()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO documents(
                    id, owner_id, title, filename, content, visibility,
                    status, chunk_count, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    doc_id,
                    owner_id,
                    title,
                    filename,
                    content,
                    Visibility(visibility).value,
                    IndexStatus.UNINDEXED.value,
                    stamp,
                    stamp,
                ),
            )
        document = self.get_document(doc_id)
        assert document is not None
        return document

    def get_document(self, document_id: str) -> DocumentRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
        return self._row_to_document(row) if row else None

    def list_documents(
        self, statuses: Iterable[IndexStatus] | None = None
    ) -> List[DocumentRecord]:
        query = "SELECT * FROM documents"
        params: list[str] = []
        if statuses is not None:
            wanted = [IndexStatus(status).value for status in statuses]
            if not wanted:
                return []
            query += f" WHERE status IN ({', '.join('?' for _ in wanted)})"
            params.extend(wanted)
        query += " ORDER BY created_at DESC, id"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_document(row) for row in rows]

    def update_document_status(
        self, document_id: str, status: IndexStatus, *, chunk_count: int | None = None
    ) -> bool:
        """Set status (and optionally chunk count) in a single statement."""
        with self.transaction() as conn:
            if chunk_count is None:
                cursor = conn.execute(
                    "UPDATE documents SET status = ?, updated_at = ? WHERE id = ?",
                    (IndexStatus(status).value, _now().isoformat(), document_id),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE documents SET status = ?, chunk_count = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (IndexStatus(status).value, chunk_count, _now().isoformat(), document_id),
                )
        return cursor.rowcount > 0

    def delete_document(self, document_id: str) -> bool:
        with self.transaction() as conn:
            conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cursor.rowcount > 0

    # Chunks

    def delete_chunks(self, document_id: str) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
        return cursor.rowcount

    def insert_chunk(self, chunk: ChunkRecord) -> None:
        blob = None
        if chunk.embedding is not None:
            vector = np.asarray(chunk.embedding, dtype="float32").reshape(-1)
            if vector.shape[0] != self.dimension:
                raise ValueError(
                    f"Embedding dimension {vector.shape[0]} does not match store dimension "
                    f"{self.dimension}"
                )
            blob = sqlite3.Binary(vector.tobytes())

        created_at = chunk.created_at or _now()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO chunks(document_id, position, text, embedding, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (chunk.document_id, chunk.position, chunk.text, blob, created_at.isoformat()),
            )

    def list_chunks(
        self, *, document_id: str | None = None, limit: int | None = None
    ) -> List[ChunkRecord]:
        """Return chunks ordered by document and position, optionally scoped."""
        query = """
            SELECT
                c.document_id AS document_id,
                c.position AS position,
                c.text AS text,
                c.embedding AS embedding,
                c.created_at AS created_at,
                d.title AS title
            FROM chunks c
            JOIN documents d ON d.id = c.document_id
        """
        params: list[object] = []
        if document_id is not None:
            query += " WHERE c.document_id = ?"
            params.append(document_id)
        query += " ORDER BY c.document_id, c.position"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with self._lock:
            rows = self._conn.execute(query, params).fetchall()

        return [
            ChunkRecord(
                document_id=row["document_id"],
                position=row["position"],
                text=row["text"],
                embedding=(
                    np.frombuffer(row["embedding"], dtype="float32")
                    if row["embedding"] is not None
                    else None
                ),
                document_title=row["title"],
                created_at=_parse_ts(row["created_at"]),
            )
            for row in rows
        ]

    # Index statistics

    def touch_last_index_update(self) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO index_meta(key, value) VALUES ('last_index_update', ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (_now().isoformat(),),
            )

    def get_overview(self) -> IndexOverview:
        with self._lock:
            conn = self._conn
            total_documents = conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]
            indexed = conn.execute(
                "SELECT COUNT(*) FROM documents WHERE status = ?",
                (IndexStatus.INDEXED.value,),
            ).fetchone()[0]
            total_chunks = conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
            total_embeddings = conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE embedding IS NOT NULL"
            ).fetchone()[0]
            with_chunks = conn.execute(
                "SELECT COUNT(DISTINCT document_id) FROM chunks"
            ).fetchone()[0]
            row = conn.execute(
                "SELECT value FROM index_meta WHERE key = 'last_index_update'"
            ).fetchone()

        return IndexOverview(
            total_documents=total_documents,
            total_chunks=total_chunks,
            indexed_documents=indexed,
            unindexed_documents=total_documents - indexed,
            total_embeddings=total_embeddings,
            documents_with_chunks=with_chunks,
            last_index_update=_parse_ts(row["value"]) if row else None,
        )
