"""Abstract base class for vector-store service providers.

Defines the contract for storing, querying, and deleting vectors for a
knowledge collection.  Each collection owns one logical index whose
dimensionality is fixed by the first vectors written to it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from knowledge_rag.models.knowledge import VectorMatch, VectorRecord


# Concrete implementation: ChromaDBProvider (knowledge_rag/providers/vector_store/)
class IVectorStoreProvider(ABC):
    """Contract for per-collection vector indexes.

    Collections are isolated: no method ever reads or writes across two
    collection ids.  Scores are similarities in ``[0, 1]``, higher is more
    similar.
    """

    @abstractmethod
    async def ensure_dimensions(self, collection_id: str, dimensions: int) -> int:
        """Fix the collection's dimensionality, or verify it if already fixed.

        The first successful call for a collection creates its index with
        *dimensions*; concurrent first calls are serialised so exactly one
        value wins.

        Returns
        -------
        int
            The collection's (now fixed) dimensionality.

        Raises
        ------
        knowledge_rag.utils.errors.DimensionMismatchError
            If the index already exists with a different dimensionality.
        """

    @abstractmethod
    async def get_dimensions(self, collection_id: str) -> int | None:
        """Return the collection's dimensionality, or ``None`` if no index exists."""

    @abstractmethod
    async def upsert(self, collection_id: str, records: list[VectorRecord]) -> int:
        """Insert or replace *records* in one batched write.

        Returns
        -------
        int
            Number of vectors written.

        Raises
        ------
        knowledge_rag.utils.errors.DimensionMismatchError
            If any vector's length differs from the collection's index.
        knowledge_rag.utils.errors.VectorStoreError
            If the backend write fails.
        """

    @abstractmethod
    async def query(
        self,
        collection_id: str,
        vector: list[float],
        top_k: int = 5,
        min_score: float = 0.0,
        document_ids: list[str] | None = None,
    ) -> list[VectorMatch]:
        """Return up to *top_k* matches ranked by similarity.

        *min_score* is a hard cutoff applied after ranking.  An absent or
        empty collection yields ``[]``.
        """

    @abstractmethod
    async def delete_by_chunk_ids(self, collection_id: str, chunk_ids: list[str]) -> int:
        """Delete every vector belonging to *chunk_ids*; returns the count removed."""

    @abstractmethod
    async def delete_by_document(self, collection_id: str, document_id: str) -> int:
        """Delete every vector of one document; returns the count removed."""

    @abstractmethod
    async def delete_collection(self, collection_id: str) -> None:
        """Drop the collection's index and forget its dimensionality."""

    @abstractmethod
    async def count(self, collection_id: str) -> int:
        """Return the number of vectors stored for the collection."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this vector store."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the vector store backend is reachable."""
