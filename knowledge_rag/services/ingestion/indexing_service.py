"""Indexing orchestrator: document row -> chunks -> embeddings -> vectors.

The :class:`IndexingService` coordinates the chunker, the embedding
client, the relational store and the vector store without any of them
knowing about each other.  Each document goes through one explicit state
machine::

    created -> chunked -> chunks_saved -> embedded -> upserted -> indexed
        \\__________\\____________\\___________\\___________\\--> failed / canceled

The service remembers the last step that completed (the rollback ledger)
and undoes exactly what that step left behind when a later one fails:
chunk rows (embedding rows cascade with them) and, once the vector write
has started, the attempt's vectors.  The document row itself is kept and
flipped to ``failed`` (``canceled`` for asyncio cancellation) with the
error message, then the original exception is re-raised.

Progress is reported as ``(stage, percent)`` pairs that never decrease
and reach 100 only on success.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog

from knowledge_rag.interfaces.knowledge_store import IKnowledgeStore
from knowledge_rag.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge_rag.models.knowledge import (
    Chunk,
    ChunkingOptions,
    Document,
    DocumentStatus,
    EmbeddingRecord,
    IndexingResult,
    SourceKind,
    VectorRecord,
    new_id,
)
from knowledge_rag.services.ingestion.chunker import TextChunker, normalize_text
from knowledge_rag.services.ingestion.embedding_client import EmbeddingClient
from knowledge_rag.utils.errors import (
    DocumentNotFoundError,
    IndexingError,
    UnsupportedInputError,
)

logger = structlog.get_logger(logger_name=__name__)

ProgressCallback = Callable[[str, float], Awaitable[None] | None]

# Stage checkpoints (percent).
_CREATING = ("creating_document", 0.0)
_CHUNKING = ("chunking", 10.0)
_SAVING_CHUNKS = ("saving_chunks", 20.0)
_EMBEDDING_START = 30.0
_EMBEDDING_SPAN = 50.0
_SAVING_EMBEDDINGS = ("saving_embeddings", 85.0)
_FINALIZING = ("finalizing", 95.0)
_COMPLETED = ("completed", 100.0)


class IndexingStep(str, Enum):
    """Last completed step of one indexing attempt."""

    CREATED = "created"
    CHUNKED = "chunked"
    CHUNKS_SAVED = "chunks_saved"
    EMBEDDED = "embedded"
    UPSERTED = "upserted"
    INDEXED = "indexed"


def content_hash(text: str) -> str:
    """MD5 hex digest used for duplicate and change detection."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def chunk_position(document_metadata: dict[str, Any], offset: int) -> dict[str, Any]:
    """Return ``page_number`` / ``section`` for a chunk starting at *offset*.

    Reads the ``pages`` (``[number, start, end]``) and ``sections``
    (``[level, title, start, end]``) rows stored on file and URL documents.
    An offset between two pages maps to the following page; the deepest
    enclosing section wins.
    """
    position: dict[str, Any] = {}
    for page_number, _start, end in document_metadata.get("pages") or ():
        if offset < end:
            position["page_number"] = page_number
            break

    deepest: tuple[int, str] | None = None
    for level, title, start, end in document_metadata.get("sections") or ():
        if start <= offset < end and (deepest is None or level >= deepest[0]):
            deepest = (level, title)
    if deepest is not None:
        position["section"] = deepest[1]
    return position


class ProgressEmitter:
    """Forwards ``(stage, percent)`` to a callback, never letting percent decrease.

    A callback that raises is logged and ignored so observers cannot break
    an indexing run.
    """

    def __init__(self, callback: ProgressCallback | None, document_id: str | None = None) -> None:
        self._callback = callback
        self._document_id = document_id
        self._percent = 0.0
        self._stage = ""

    @property
    def percent(self) -> float:
        return self._percent

    @property
    def stage(self) -> str:
        return self._stage

    def bind(self, document_id: str) -> None:
        self._document_id = document_id

    async def emit(self, stage: str, percent: float) -> None:
        self._percent = max(self._percent, min(100.0, percent))
        self._stage = stage
        if self._callback is None:
            return
        try:
            outcome = self._callback(stage, self._percent)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.warning(
                "progress_callback_error",
                document_id=self._document_id,
                stage=stage,
                error=str(exc),
            )


class _Attempt:
    """Rollback ledger for one pass through the state machine."""

    def __init__(self) -> None:
        self.step = IndexingStep.CREATED
        self.chunk_ids: list[str] = []
        self.vector_write_started = False


class IndexingService:
    """Runs the per-document indexing state machine.

    Parameters
    ----------
    store:
        Relational store for documents, chunks and embedding rows.
    vector_store:
        Per-collection vector index.
    embedding_client:
        Batched/retried embedding generation.
    chunker:
        Text chunking engine.
    chunking_options:
        Options passed to every :meth:`TextChunker.chunk` call; defaults
        to the chunker's own.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        vector_store: IVectorStoreProvider,
        embedding_client: EmbeddingClient,
        chunker: TextChunker | None = None,
        chunking_options: ChunkingOptions | None = None,
    ) -> None:
        self._store = store
        self._vector_store = vector_store
        self._embedding_client = embedding_client
        self._chunker = chunker or TextChunker()
        self._chunking_options = chunking_options or self._chunker.options

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create_document(
        self,
        *,
        collection_id: str,
        title: str,
        text: str,
        source_kind: SourceKind,
        emitter: ProgressEmitter | None = None,
        document_id: str | None = None,
        source_uri: str | None = None,
        source_note_id: str | None = None,
        mime_type: str | None = None,
        file_size: int | None = None,
        local_path: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Document:
        """Persist a new document row in ``processing`` state (step 1).

        The text is normalised first so stored content and chunk offsets
        agree.

        Raises
        ------
        UnsupportedInputError
            If the text is empty or whitespace-only; no row is created.
        """
        content = normalize_text(text)
        if not content:
            raise UnsupportedInputError(message="No content to index")

        emitter = emitter or ProgressEmitter(None)
        await emitter.emit(*_CREATING)

        digest = content_hash(content)
        duplicates = await self._store.find_documents_by_hash(collection_id, digest)
        if duplicates:
            logger.info(
                "duplicate_content_detected",
                collection_id=collection_id,
                content_hash=digest,
                existing_document_ids=duplicates,
            )

        document = Document(
            id=document_id or new_id(),
            collection_id=collection_id,
            title=title.strip() or "Untitled",
            source_kind=source_kind,
            source_uri=source_uri,
            source_note_id=source_note_id,
            content=content,
            content_hash=digest,
            mime_type=mime_type,
            file_size=file_size,
            local_path=local_path,
            metadata=metadata or {},
            status=DocumentStatus.PROCESSING,
        )
        await self._store.create_document(document)
        emitter.bind(document.id)
        logger.info(
            "document_created",
            document_id=document.id,
            collection_id=collection_id,
            source_kind=source_kind.value,
            chars=len(content),
        )
        return document

    async def index_document(
        self,
        document: Document,
        emitter: ProgressEmitter | None = None,
    ) -> IndexingResult:
        """Run steps 2-6 for a document row already in ``processing`` state.

        Raises
        ------
        Exception
            Whatever failed, after the attempt has been rolled back and the
            row marked ``failed``; ``asyncio.CancelledError`` after marking
            it ``canceled``.
        """
        emitter = emitter or ProgressEmitter(None, document.id)
        emitter.bind(document.id)
        start = time.monotonic()
        attempt = _Attempt()
        log = logger.bind(document_id=document.id, collection_id=document.collection_id)

        try:
            chunk_count = await self._run_steps(document, attempt, emitter)
        except asyncio.CancelledError:
            log.warning("indexing_canceled", last_step=attempt.step.value)
            await self._rollback(document, attempt)
            await self._mark_terminal(
                document, DocumentStatus.CANCELED, "Indexing canceled", emitter
            )
            raise
        except Exception as exc:
            log.error(
                "indexing_failed",
                last_step=attempt.step.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            await self._rollback(document, attempt)
            await self._mark_terminal(document, DocumentStatus.FAILED, str(exc), emitter)
            raise

        elapsed = time.monotonic() - start
        log.info("document_indexed", chunks=chunk_count, elapsed_s=round(elapsed, 3))
        return IndexingResult(
            document_id=document.id,
            status=DocumentStatus.INDEXED,
            chunk_count=chunk_count,
            processing_time=elapsed,
        )

    async def reindex_document(
        self,
        document_id: str,
        emitter: ProgressEmitter | None = None,
    ) -> IndexingResult:
        """Discard a document's chunks, embedding rows and vectors, then rebuild them.

        Uses the document's stored text; nothing is re-parsed or re-fetched.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist.
        """
        document = await self._store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if not document.content.strip():
            raise UnsupportedInputError(message="No content to index")

        emitter = emitter or ProgressEmitter(None, document_id)
        emitter.bind(document_id)
        await emitter.emit("clearing", 0.0)

        try:
            old_chunk_ids = await self._store.delete_chunks(document_id)
            await self._vector_store.delete_by_chunk_ids(document.collection_id, old_chunk_ids)
            await self._vector_store.delete_by_document(document.collection_id, document_id)
            if not await self._store.update_document_status(
                document_id, DocumentStatus.PROCESSING, chunk_count=0
            ):
                raise DocumentNotFoundError(document_id)
        except Exception as exc:
            await self._mark_terminal(document, DocumentStatus.FAILED, str(exc), emitter)
            raise

        logger.info(
            "document_cleared_for_reindex",
            document_id=document_id,
            removed_chunks=len(old_chunk_ids),
        )
        refreshed = await self._store.get_document(document_id)
        if refreshed is None:
            raise DocumentNotFoundError(document_id)
        return await self.index_document(refreshed, emitter)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _run_steps(
        self,
        document: Document,
        attempt: _Attempt,
        emitter: ProgressEmitter,
    ) -> int:
        cid = document.collection_id

        # Step 2: chunk.
        await emitter.emit(*_CHUNKING)
        text_chunks = self._chunker.chunk(document.content, self._chunking_options)
        if not text_chunks:
            raise UnsupportedInputError(message="No content to index")
        chunks = [
            Chunk(
                document_id=document.id,
                collection_id=cid,
                content=tc.text,
                chunk_index=tc.index,
                start_offset=tc.start_offset,
                end_offset=tc.end_offset,
                token_count=tc.token_estimate,
                metadata=chunk_position(document.metadata, tc.start_offset),
            )
            for tc in text_chunks
        ]
        attempt.step = IndexingStep.CHUNKED

        # Step 3: persist chunk rows.
        await emitter.emit(*_SAVING_CHUNKS)
        await self._store.insert_chunks(chunks)
        attempt.chunk_ids = [c.id for c in chunks]
        attempt.step = IndexingStep.CHUNKS_SAVED

        # Step 4: embed, then fix/validate the collection's dimensionality.
        await emitter.emit("generating_embeddings", _EMBEDDING_START)

        async def on_embedded(done: int, total: int) -> None:
            await emitter.emit(
                "generating_embeddings",
                _EMBEDDING_START + _EMBEDDING_SPAN * done / max(total, 1),
            )

        embeddings = await self._embedding_client.embed_batch(
            [c.content for c in chunks], on_progress=on_embedded
        )
        if len(embeddings) != len(chunks):
            raise IndexingError(
                message=f"Expected {len(chunks)} embeddings, got {len(embeddings)}"
            )
        dimensions = embeddings[0].dimensions
        await self._vector_store.ensure_dimensions(cid, dimensions)
        attempt.step = IndexingStep.EMBEDDED

        # Step 5: embedding rows, then one batched vector upsert.
        await emitter.emit(*_SAVING_EMBEDDINGS)
        records = [
            EmbeddingRecord(
                chunk_id=chunk.id,
                collection_id=cid,
                model=emb.model,
                dimensions=emb.dimensions,
            )
            for chunk, emb in zip(chunks, embeddings)
        ]
        await self._store.insert_embeddings(document.id, records)

        attempt.vector_write_started = True
        await self._vector_store.upsert(
            cid,
            [
                VectorRecord(
                    id=record.id,
                    chunk_id=chunk.id,
                    document_id=document.id,
                    vector=emb.vector,
                    metadata={"chunk_index": chunk.chunk_index},
                )
                for record, chunk, emb in zip(records, chunks, embeddings)
            ],
        )
        attempt.step = IndexingStep.UPSERTED

        # Step 6: flip to indexed.
        await emitter.emit(*_FINALIZING)
        if not await self._store.mark_indexed(document.id, len(chunks)):
            if await self._store.get_document(document.id) is None:
                raise DocumentNotFoundError(document.id)
            raise IndexingError(message="Document left the processing state during indexing")
        attempt.step = IndexingStep.INDEXED

        await emitter.emit(*_COMPLETED)
        return len(chunks)

    async def _rollback(self, document: Document, attempt: _Attempt) -> None:
        """Undo what the attempt wrote; failures here are logged, not raised."""
        if attempt.vector_write_started and attempt.chunk_ids:
            try:
                await self._vector_store.delete_by_chunk_ids(
                    document.collection_id, attempt.chunk_ids
                )
            except Exception as exc:
                logger.error(
                    "rollback_vector_delete_failed",
                    document_id=document.id,
                    error=str(exc),
                )
        if attempt.chunk_ids:
            try:
                await self._store.delete_chunks(document.id)
            except Exception as exc:
                logger.error(
                    "rollback_chunk_delete_failed",
                    document_id=document.id,
                    error=str(exc),
                )
        logger.debug(
            "indexing_rolled_back",
            document_id=document.id,
            last_step=attempt.step.value,
            chunks=len(attempt.chunk_ids),
            vectors_removed=attempt.vector_write_started,
        )

    async def _mark_terminal(
        self,
        document: Document,
        status: DocumentStatus,
        message: str,
        emitter: ProgressEmitter,
    ) -> None:
        try:
            updated = await self._store.update_document_status(
                document.id, status, error_message=message, chunk_count=0
            )
        except Exception as exc:
            logger.error(
                "terminal_status_update_failed",
                document_id=document.id,
                status=status.value,
                error=str(exc),
            )
            updated = False
        if not updated:
            logger.info("document_absent_after_failure", document_id=document.id)
        await emitter.emit(status.value, emitter.percent)
