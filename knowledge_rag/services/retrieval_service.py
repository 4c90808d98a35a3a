"""Semantic search over one collection.

Embeds the query, asks the collection's vector index for the best
matches, then hydrates chunk and document rows from the relational store.
Results keep the vector index's rank order.  Vector hits whose chunk row
no longer exists (a delete raced the search) are dropped.
"""

from __future__ import annotations

import aiosqlite
import structlog

from knowledge_rag.interfaces.knowledge_store import IKnowledgeStore
from knowledge_rag.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge_rag.models.knowledge import SearchOptions, SearchResult
from knowledge_rag.services.ingestion.embedding_client import EmbeddingClient
from knowledge_rag.utils.errors import KnowledgeBaseError, RetrievalError

logger = structlog.get_logger(logger_name=__name__)


class RetrievalService:
    """Query embedding, vector lookup and result assembly.

    Parameters
    ----------
    store:
        Relational store used to hydrate chunk and document rows.
    vector_store:
        The per-collection vector index.
    embedding_client:
        Used to embed the query text.
    default_options:
        Options used when :meth:`search` is called without any.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        vector_store: IVectorStoreProvider,
        embedding_client: EmbeddingClient,
        default_options: SearchOptions | None = None,
    ) -> None:
        self._store = store
        self._vector_store = vector_store
        self._embedding_client = embedding_client
        self._default_options = default_options or SearchOptions()

    @property
    def default_options(self) -> SearchOptions:
        return self._default_options

    async def search(
        self,
        collection_id: str,
        query: str,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        """Return ranked, source-attributed passages for *query*.

        Returns an empty list for a blank query or when nothing scores at
        or above ``min_score``.

        Raises
        ------
        RetrievalError
            If embedding the query, querying the index or reading chunk and
            document rows fails.  The error's ``results`` attribute is an
            empty list.
        """
        opts = options or self._default_options
        if not query or not query.strip():
            return []

        try:
            # Nothing indexed yet: skip the embedding call entirely.
            if await self._vector_store.get_dimensions(collection_id) is None:
                logger.debug("search_empty_collection", collection_id=collection_id)
                return []

            embedded = await self._embedding_client.embed(query.strip())
            matches = await self._vector_store.query(
                collection_id,
                embedded.vector,
                top_k=opts.top_k,
                min_score=opts.min_score,
                document_ids=opts.document_ids,
            )
            if not matches:
                return []

            chunks = await self._store.get_chunks_by_ids(m.chunk_id for m in matches)
            documents = await self._store.get_documents_by_ids(
                c.document_id for c in chunks.values()
            )
        except (KnowledgeBaseError, aiosqlite.Error) as exc:
            logger.error(
                "search_failed",
                collection_id=collection_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            provider = exc.provider_name if isinstance(exc, KnowledgeBaseError) else "sqlite"
            raise RetrievalError(
                message=f"Search failed: {exc}",
                provider_name=provider,
            ) from exc

        results: list[SearchResult] = []
        stale = 0
        for match in matches:
            chunk = chunks.get(match.chunk_id)
            document = documents.get(chunk.document_id) if chunk is not None else None
            if chunk is None or document is None or chunk.collection_id != collection_id:
                stale += 1
                continue
            results.append(
                SearchResult(
                    chunk_id=chunk.id,
                    document_id=document.id,
                    document_title=document.title,
                    document_type=document.source_kind,
                    text=chunk.content if opts.include_text else None,
                    score=match.score,
                    chunk_index=chunk.chunk_index,
                    metadata={
                        **chunk.metadata,
                        "start_offset": chunk.start_offset,
                        "end_offset": chunk.end_offset,
                        "source_uri": document.source_uri,
                    },
                )
            )

        logger.info(
            "search_completed",
            collection_id=collection_id,
            results=len(results),
            stale_hits_dropped=stale,
            top_score=results[0].score if results else 0.0,
        )
        return results
