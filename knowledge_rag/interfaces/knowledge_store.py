"""Abstract base class for the relational knowledge store.

Defines the contract for persisting documents, chunks, embedding records
and notes.  Vectors themselves live in an :class:`IVectorStoreProvider`;
this store only records which chunk each vector belongs to.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any

from knowledge_rag.models.knowledge import (
    Chunk,
    Document,
    DocumentStatus,
    EmbeddingRecord,
    KnowledgeStats,
    Note,
)


# Concrete implementation: SQLiteKnowledgeStore (knowledge_rag/providers/knowledge/)
class IKnowledgeStore(ABC):
    """Contract for document/chunk/embedding bookkeeping.

    Deleting a document must remove its chunks and embedding records in
    the same operation.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables/indices if they don't exist.  Called at startup."""

    # -- documents -------------------------------------------------------

    @abstractmethod
    async def create_document(self, document: Document) -> Document:
        """Insert a new document row."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Return the document, or ``None`` if it does not exist."""

    @abstractmethod
    async def list_documents(
        self,
        collection_id: str,
        status: DocumentStatus | None = None,
    ) -> list[Document]:
        """Return the collection's documents ordered by ``updated_at`` descending."""

    @abstractmethod
    async def get_documents_by_ids(self, document_ids: Iterable[str]) -> dict[str, Document]:
        """Bulk lookup keyed by id; missing ids are simply absent."""

    @abstractmethod
    async def find_documents_by_hash(self, collection_id: str, content_hash: str) -> list[str]:
        """Return ids of indexed documents sharing *content_hash*."""

    @abstractmethod
    async def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        error_message: str | None = None,
        chunk_count: int | None = None,
    ) -> bool:
        """Set a document's status.

        Returns
        -------
        bool
            ``False`` when the document no longer exists.
        """

    @abstractmethod
    async def update_document_fields(self, document_id: str, **fields: Any) -> bool:
        """Update content-related columns such as ``local_path`` or ``metadata``."""

    @abstractmethod
    async def mark_indexed(self, document_id: str, chunk_count: int) -> bool:
        """Move a ``processing`` document to ``indexed``; ``False`` if that is impossible."""

    @abstractmethod
    async def delete_document(self, document_id: str) -> list[str]:
        """Delete the document with its chunks and embedding rows.

        Returns
        -------
        list[str]
            Ids of the chunks that were removed, for vector cleanup.

        Raises
        ------
        knowledge_rag.utils.errors.DocumentNotFoundError
            If no such document exists.
        """

    # -- chunks ----------------------------------------------------------

    @abstractmethod
    async def insert_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Insert chunk rows atomically."""

    @abstractmethod
    async def get_chunks(self, document_id: str) -> list[Chunk]:
        """Return a document's chunks ordered by ``chunk_index``."""

    @abstractmethod
    async def get_chunks_by_ids(self, chunk_ids: Iterable[str]) -> dict[str, Chunk]:
        """Bulk lookup keyed by id; missing ids are simply absent."""

    @abstractmethod
    async def get_chunk_ids(self, document_id: str) -> list[str]:
        """Return a document's chunk ids in index order."""

    @abstractmethod
    async def delete_chunks(self, document_id: str) -> list[str]:
        """Delete a document's chunks (and their embedding rows); return their ids."""

    # -- embeddings ------------------------------------------------------

    @abstractmethod
    async def insert_embeddings(self, document_id: str, records: Sequence[EmbeddingRecord]) -> int:
        """Insert embedding rows, guarded by the document still existing.

        Raises
        ------
        knowledge_rag.utils.errors.DocumentNotFoundError
            If the document was deleted before the rows could be written.
        """

    @abstractmethod
    async def count_embeddings(self, document_id: str) -> int:
        """Return how many embedding rows belong to the document's chunks."""

    # -- stats / notes ---------------------------------------------------

    @abstractmethod
    async def get_stats(self, collection_id: str) -> KnowledgeStats:
        """Return row counts for the collection (``vector_count`` left at 0)."""

    @abstractmethod
    async def create_note(self, note: Note) -> Note:
        """Insert a note row."""

    @abstractmethod
    async def get_note(self, note_id: str) -> Note | None:
        """Return the note, or ``None`` if it does not exist."""
