"""SQLite-backed relational store for documents, chunks, embeddings and notes.

Persists the knowledge base to a local SQLite database at
``data/knowledge.db`` using ``aiosqlite`` for async I/O.  Raw vectors are
never stored here; the ``embeddings`` table only records which vector (by
id) belongs to which chunk.

Foreign keys cascade ``documents -> chunks -> embeddings``, so deleting a
document row removes everything derived from it.  SQLite only enforces
foreign keys when ``PRAGMA foreign_keys = ON`` is issued on each
connection, which :meth:`SQLiteKnowledgeStore._connect` does.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from knowledge_rag.interfaces.knowledge_store import IKnowledgeStore
from knowledge_rag.models.knowledge import (
    Chunk,
    Document,
    DocumentStatus,
    EmbeddingRecord,
    KnowledgeStats,
    Note,
    SourceKind,
    utc_now,
)
from knowledge_rag.utils.errors import DocumentNotFoundError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

# SQLite's default bound-parameter ceiling is 999 on older builds.
_IN_CLAUSE_BATCH = 500

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    id              TEXT    PRIMARY KEY,
    collection_id   TEXT    NOT NULL,
    title           TEXT    NOT NULL,
    source_kind     TEXT    NOT NULL,
    source_uri      TEXT,
    source_note_id  TEXT,
    content         TEXT    NOT NULL DEFAULT '',
    content_hash    TEXT    NOT NULL DEFAULT '',
    mime_type       TEXT,
    file_size       INTEGER,
    local_path      TEXT,
    metadata        TEXT    NOT NULL DEFAULT '{}',
    status          TEXT    NOT NULL DEFAULT 'pending',
    error_message   TEXT,
    chunk_count     INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    id              TEXT    PRIMARY KEY,
    document_id     TEXT    NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    collection_id   TEXT    NOT NULL,
    content         TEXT    NOT NULL,
    chunk_index     INTEGER NOT NULL,
    start_offset    INTEGER NOT NULL,
    end_offset      INTEGER NOT NULL,
    token_count     INTEGER NOT NULL DEFAULT 0,
    metadata        TEXT    NOT NULL DEFAULT '{}',
    created_at      TEXT    NOT NULL,
    UNIQUE(document_id, chunk_index)
);
""",
    """\
CREATE TABLE IF NOT EXISTS embeddings (
    id              TEXT    PRIMARY KEY,
    chunk_id        TEXT    NOT NULL UNIQUE REFERENCES chunks(id) ON DELETE CASCADE,
    collection_id   TEXT    NOT NULL,
    model           TEXT    NOT NULL,
    dimensions      INTEGER NOT NULL,
    created_at      TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS notes (
    id              TEXT    PRIMARY KEY,
    collection_id   TEXT    NOT NULL,
    title           TEXT    NOT NULL DEFAULT '',
    content         TEXT    NOT NULL DEFAULT '',
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection_id);",
    "CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status);",
    "CREATE INDEX IF NOT EXISTS idx_documents_hash ON documents(collection_id, content_hash);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_collection ON chunks(collection_id);",
    "CREATE INDEX IF NOT EXISTS idx_embeddings_chunk ON embeddings(chunk_id);",
    "CREATE INDEX IF NOT EXISTS idx_embeddings_collection ON embeddings(collection_id);",
    "CREATE INDEX IF NOT EXISTS idx_notes_collection ON notes(collection_id);",
]

_DOCUMENT_COLUMNS = (
    "id, collection_id, title, source_kind, source_uri, source_note_id, content, "
    "content_hash, mime_type, file_size, local_path, metadata, status, error_message, "
    "chunk_count, created_at, updated_at"
)

_INSERT_DOCUMENT_SQL = f"""\
INSERT INTO documents ({_DOCUMENT_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_INSERT_CHUNK_SQL = """\
INSERT INTO chunks (id, document_id, collection_id, content, chunk_index,
                    start_offset, end_offset, token_count, metadata, created_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_INSERT_EMBEDDING_SQL = """\
INSERT INTO embeddings (id, chunk_id, collection_id, model, dimensions, created_at)
VALUES (?, ?, ?, ?, ?, ?);
"""

_CHUNK_COLUMNS = (
    "id, document_id, collection_id, content, chunk_index, start_offset, end_offset, "
    "token_count, metadata, created_at"
)


class SQLiteKnowledgeStore(IKnowledgeStore):
    """SQLite-backed knowledge persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    @property
    def db_path(self) -> Path:
        return self._db_path

    async def initialize(self) -> None:
        """Create tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode = WAL;")
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("knowledge_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create_document(self, document: Document) -> Document:
        async with self._connect() as db:
            await db.execute(_INSERT_DOCUMENT_SQL, _document_params(document))
            await db.commit()
        logger.debug(
            "document_row_created",
            document_id=document.id,
            collection_id=document.collection_id,
            status=document.status.value,
        )
        return document

    async def get_document(self, document_id: str) -> Document | None:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
                (document_id,),
            )
            row = await cursor.fetchone()
        return _row_to_document(row) if row else None

    async def list_documents(
        self,
        collection_id: str,
        status: DocumentStatus | None = None,
    ) -> list[Document]:
        """Return the collection's documents, most recently updated first."""
        sql = f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE collection_id = ?"
        params: list[Any] = [collection_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(status.value)
        sql += " ORDER BY updated_at DESC"

        async with self._connect() as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_row_to_document(r) for r in rows]

    async def get_documents_by_ids(self, document_ids: Iterable[str]) -> dict[str, Document]:
        rows = await self._select_in(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id IN ({{placeholders}})",
            list(dict.fromkeys(document_ids)),
        )
        return {row["id"]: _row_to_document(row) for row in rows}

    async def find_documents_by_hash(self, collection_id: str, content_hash: str) -> list[str]:
        """Return ids of indexed documents in the collection with this content hash."""
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id FROM documents "
                "WHERE collection_id = ? AND content_hash = ? AND status = ?",
                (collection_id, content_hash, DocumentStatus.INDEXED.value),
            )
            rows = await cursor.fetchall()
        return [r["id"] for r in rows]

    async def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: str | None = None,
        chunk_count: int | None = None,
    ) -> bool:
        """Set status (and optionally error/chunk count); False if the row is gone."""
        sets = ["status = ?", "error_message = ?", "updated_at = ?"]
        params: list[Any] = [status.value, error_message, utc_now().isoformat()]
        if chunk_count is not None:
            sets.append("chunk_count = ?")
            params.append(chunk_count)
        params.append(document_id)

        async with self._connect() as db:
            cursor = await db.execute(
                f"UPDATE documents SET {', '.join(sets)} WHERE id = ?",
                params,
            )
            await db.commit()
            updated = cursor.rowcount == 1
        return updated

    async def update_document_fields(self, document_id: str, **fields: Any) -> bool:
        """Update content-related columns (``local_path``, ``metadata`` ...)."""
        allowed = {"title", "local_path", "metadata", "content", "content_hash", "file_size"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update document columns: {sorted(unknown)}")
        if not fields:
            return False

        sets = [f"{name} = ?" for name in fields]
        params = [
            json.dumps(value) if name == "metadata" else value for name, value in fields.items()
        ]
        sets.append("updated_at = ?")
        params.extend([utc_now().isoformat(), document_id])

        async with self._connect() as db:
            cursor = await db.execute(
                f"UPDATE documents SET {', '.join(sets)} WHERE id = ?",
                params,
            )
            await db.commit()
            updated = cursor.rowcount == 1
        return updated

    async def mark_indexed(self, document_id: str, chunk_count: int) -> bool:
        """Flip a ``processing`` document to ``indexed``.

        Returns ``False`` when the row no longer exists (deleted while
        indexing) or was moved out of ``processing`` by someone else.
        """
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE documents SET status = ?, chunk_count = ?, error_message = NULL, "
                "updated_at = ? WHERE id = ? AND status = ?",
                (
                    DocumentStatus.INDEXED.value,
                    chunk_count,
                    utc_now().isoformat(),
                    document_id,
                    DocumentStatus.PROCESSING.value,
                ),
            )
            await db.commit()
            updated = cursor.rowcount == 1
        return updated

    async def delete_document(self, document_id: str) -> list[str]:
        """Delete the document row (cascading); returns the removed chunk ids."""
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "SELECT id FROM chunks WHERE document_id = ?", (document_id,)
            )
            chunk_ids = [r["id"] for r in await cursor.fetchall()]
            cursor = await db.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            deleted = cursor.rowcount
            await db.commit()

        if deleted == 0:
            raise DocumentNotFoundError(document_id, provider_name="sqlite")
        logger.info("document_row_deleted", document_id=document_id, chunks=len(chunk_ids))
        return chunk_ids

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def insert_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Insert all *chunks* in one transaction."""
        if not chunks:
            return 0
        try:
            async with self._connect() as db:
                await db.executemany(_INSERT_CHUNK_SQL, [_chunk_params(c) for c in chunks])
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            # The only foreign key is document_id; a violation means it vanished.
            raise DocumentNotFoundError(chunks[0].document_id, provider_name="sqlite") from exc
        return len(chunks)

    async def get_chunks(self, document_id: str) -> list[Chunk]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            )
            rows = await cursor.fetchall()
        return [_row_to_chunk(r) for r in rows]

    async def get_chunks_by_ids(self, chunk_ids: Iterable[str]) -> dict[str, Chunk]:
        rows = await self._select_in(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE id IN ({{placeholders}})",
            list(dict.fromkeys(chunk_ids)),
        )
        return {row["id"]: _row_to_chunk(row) for row in rows}

    async def get_chunk_ids(self, document_id: str) -> list[str]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id FROM chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            )
            rows = await cursor.fetchall()
        return [r["id"] for r in rows]

    async def delete_chunks(self, document_id: str) -> list[str]:
        """Delete a document's chunks (cascading to embeddings); returns their ids."""
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "SELECT id FROM chunks WHERE document_id = ?", (document_id,)
            )
            chunk_ids = [r["id"] for r in await cursor.fetchall()]
            await db.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
            await db.commit()
        return chunk_ids

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def insert_embeddings(self, document_id: str, records: Sequence[EmbeddingRecord]) -> int:
        """Insert embedding rows if (and only if) the document still exists.

        The existence check and the inserts share one ``IMMEDIATE``
        transaction, so a concurrent delete either happens before (and we
        raise) or after (and cascades over these rows).
        """
        if not records:
            return 0
        try:
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                cursor = await db.execute(
                    "SELECT 1 FROM documents WHERE id = ?", (document_id,)
                )
                if await cursor.fetchone() is None:
                    await db.rollback()
                    raise DocumentNotFoundError(document_id, provider_name="sqlite")
                await db.executemany(
                    _INSERT_EMBEDDING_SQL, [_embedding_params(r) for r in records]
                )
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            raise DocumentNotFoundError(document_id, provider_name="sqlite") from exc
        return len(records)

    async def count_embeddings(self, document_id: str) -> int:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT COUNT(*) AS n FROM embeddings e "
                "JOIN chunks c ON c.id = e.chunk_id WHERE c.document_id = ?",
                (document_id,),
            )
            row = await cursor.fetchone()
        return int(row["n"])

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def get_stats(self, collection_id: str) -> KnowledgeStats:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT status, COUNT(*) AS n FROM documents "
                "WHERE collection_id = ? GROUP BY status",
                (collection_id,),
            )
            by_status = {r["status"]: int(r["n"]) for r in await cursor.fetchall()}
            cursor = await db.execute(
                "SELECT COUNT(*) AS n FROM chunks WHERE collection_id = ?", (collection_id,)
            )
            chunk_count = int((await cursor.fetchone())["n"])
            cursor = await db.execute(
                "SELECT COUNT(*) AS n FROM embeddings WHERE collection_id = ?", (collection_id,)
            )
            embedding_count = int((await cursor.fetchone())["n"])

        return KnowledgeStats(
            collection_id=collection_id,
            document_count=sum(by_status.values()),
            chunk_count=chunk_count,
            embedding_count=embedding_count,
            documents_by_status=by_status,
        )

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def create_note(self, note: Note) -> Note:
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO notes (id, collection_id, title, content, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    note.id,
                    note.collection_id,
                    note.title,
                    note.content,
                    note.created_at.isoformat(),
                    note.updated_at.isoformat(),
                ),
            )
            await db.commit()
        return note

    async def get_note(self, note_id: str) -> Note | None:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id, collection_id, title, content, created_at, updated_at "
                "FROM notes WHERE id = ?",
                (note_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return Note(
            id=row["id"],
            collection_id=row["collection_id"],
            title=row["title"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(str(self._db_path), timeout=30.0) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys = ON;")
            yield db

    async def _select_in(self, sql_template: str, keys: list[str]) -> list[aiosqlite.Row]:
        if not keys:
            return []
        rows: list[aiosqlite.Row] = []
        async with self._connect() as db:
            for start in range(0, len(keys), _IN_CLAUSE_BATCH):
                batch = keys[start : start + _IN_CLAUSE_BATCH]
                sql = sql_template.format(placeholders=", ".join("?" * len(batch)))
                cursor = await db.execute(sql, batch)
                rows.extend(await cursor.fetchall())
        return rows


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _document_params(d: Document) -> tuple[Any, ...]:
    return (
        d.id,
        d.collection_id,
        d.title,
        d.source_kind.value,
        d.source_uri,
        d.source_note_id,
        d.content,
        d.content_hash,
        d.mime_type,
        d.file_size,
        d.local_path,
        json.dumps(d.metadata),
        d.status.value,
        d.error_message,
        d.chunk_count,
        d.created_at.isoformat(),
        d.updated_at.isoformat(),
    )


def _row_to_document(row: aiosqlite.Row) -> Document:
    return Document(
        id=row["id"],
        collection_id=row["collection_id"],
        title=row["title"],
        source_kind=SourceKind(row["source_kind"]),
        source_uri=row["source_uri"],
        source_note_id=row["source_note_id"],
        content=row["content"],
        content_hash=row["content_hash"],
        mime_type=row["mime_type"],
        file_size=row["file_size"],
        local_path=row["local_path"],
        metadata=json.loads(row["metadata"] or "{}"),
        status=DocumentStatus(row["status"]),
        error_message=row["error_message"],
        chunk_count=row["chunk_count"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _chunk_params(c: Chunk) -> tuple[Any, ...]:
    return (
        c.id,
        c.document_id,
        c.collection_id,
        c.content,
        c.chunk_index,
        c.start_offset,
        c.end_offset,
        c.token_count,
        json.dumps(c.metadata),
        c.created_at.isoformat(),
    )


def _row_to_chunk(row: aiosqlite.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        collection_id=row["collection_id"],
        content=row["content"],
        chunk_index=row["chunk_index"],
        start_offset=row["start_offset"],
        end_offset=row["end_offset"],
        token_count=row["token_count"],
        metadata=json.loads(row["metadata"] or "{}"),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _embedding_params(r: EmbeddingRecord) -> tuple[Any, ...]:
    return (r.id, r.chunk_id, r.collection_id, r.model, r.dimensions, r.created_at.isoformat())
