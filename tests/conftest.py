"""Shared pytest fixtures for the knowledge_rag test suite."""

from __future__ import annotations

import asyncio
import hashlib
import re
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from knowledge_rag.config.settings import Settings
from knowledge_rag.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_rag.interfaces.knowledge_store import IKnowledgeStore
from knowledge_rag.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge_rag.models.knowledge import ChunkingOptions, SearchOptions
from knowledge_rag.pipeline.progress_tracker import ProgressTracker
from knowledge_rag.providers.knowledge.sqlite_knowledge_store import SQLiteKnowledgeStore
from knowledge_rag.providers.vector_store.chromadb_provider import ChromaDBProvider
from knowledge_rag.services.ingestion.chunker import TextChunker
from knowledge_rag.services.ingestion.embedding_client import EmbeddingClient
from knowledge_rag.services.ingestion.indexing_service import IndexingService
from knowledge_rag.services.knowledge_service import KnowledgeService
from knowledge_rag.services.retrieval_service import RetrievalService

_WORD_RE = re.compile(r"\w+")


def hash_vector(text: str, dimensions: int) -> list[float]:
    """Deterministic bag-of-words vector.

    Slot 0 is a constant bias so no vector is ever all zeros; every other
    slot counts the words hashing to it.  All components are non-negative,
    so any two vectors score at least 0.5 against each other.
    """
    vector = [0.0] * dimensions
    vector[0] = 1.0
    for word in _WORD_RE.findall(text.lower()):
        digest = hashlib.md5(word.encode("utf-8")).digest()
        vector[1 + int.from_bytes(digest[:4], "big") % (dimensions - 1)] += 1.0
    return vector


class FakeEmbeddingProvider(IEmbeddingProvider):
    """In-process embedding provider producing :func:`hash_vector` output.

    ``calls`` records every batch passed to :meth:`embed`.  Set ``gate`` to
    an unset :class:`asyncio.Event` to hold embed calls until it is set;
    ``entered`` is set as soon as a call is waiting on the gate.
    """

    def __init__(
        self,
        dimensions: int = 32,
        model: str = "fake-embedding",
        available: bool = True,
    ) -> None:
        self.dimensions = dimensions
        self.model = model
        self.available = available
        self.calls: list[list[str]] = []
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.gate is not None:
            self.entered.set()
            await self.gate.wait()
        return [hash_vector(text, self.dimensions) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int | None:
        return self.dimensions

    def get_model_name(self) -> str:
        return self.model

    def get_provider_name(self) -> str:
        return "fake_embedding"

    def is_available(self) -> bool:
        return self.available


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def app_settings(tmp_path: Path) -> Settings:
    """Settings pointing every storage path into ``tmp_path``."""
    return Settings(
        openai_api_key="",
        ollama_base_url="",
        knowledge_db_path=str(tmp_path / "knowledge.db"),
        chromadb_persist_dir=str(tmp_path / "chroma"),
        knowledge_files_dir=str(tmp_path / "files"),
        embedding_retry_delay=0.0,
        embedding_rate_limit_delay=0.0,
    )


# ---------------------------------------------------------------------------
# Mocks
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_knowledge_store() -> MagicMock:
    store = MagicMock(spec=IKnowledgeStore)
    for name in (
        "initialize",
        "create_document",
        "get_document",
        "list_documents",
        "get_documents_by_ids",
        "find_documents_by_hash",
        "update_document_status",
        "update_document_fields",
        "mark_indexed",
        "delete_document",
        "insert_chunks",
        "get_chunks",
        "get_chunks_by_ids",
        "get_chunk_ids",
        "delete_chunks",
        "insert_embeddings",
        "count_embeddings",
        "get_stats",
        "create_note",
        "get_note",
    ):
        setattr(store, name, AsyncMock())
    store.find_documents_by_hash.return_value = []
    store.update_document_status.return_value = True
    store.mark_indexed.return_value = True
    store.delete_chunks.return_value = []
    return store


@pytest.fixture
def mock_vector_store() -> MagicMock:
    vector_store = MagicMock(spec=IVectorStoreProvider)
    for name in (
        "ensure_dimensions",
        "get_dimensions",
        "upsert",
        "query",
        "delete_by_chunk_ids",
        "delete_by_document",
        "delete_collection",
        "count",
    ):
        setattr(vector_store, name, AsyncMock())
    vector_store.get_provider_name.return_value = "mock_vector_store"
    vector_store.is_available.return_value = True
    vector_store.query.return_value = []
    vector_store.count.return_value = 0
    return vector_store


# ---------------------------------------------------------------------------
# Real components on tmp_path
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
async def knowledge_store(tmp_path: Path) -> SQLiteKnowledgeStore:
    store = SQLiteKnowledgeStore(db_path=tmp_path / "knowledge.db")
    await store.initialize()
    return store


@pytest.fixture
def vector_store(tmp_path: Path) -> ChromaDBProvider:
    return ChromaDBProvider(persist_directory=str(tmp_path / "chroma"))


@pytest.fixture
def embedding_client(fake_provider: FakeEmbeddingProvider) -> EmbeddingClient:
    return EmbeddingClient(fake_provider, batch_size=4, retry_delay=0.0, rate_limit_delay=0.0)


@pytest.fixture
def chunking_options() -> ChunkingOptions:
    return ChunkingOptions(chunk_size=150, chunk_overlap=20, min_chunk_size=20)


@pytest.fixture
def indexing_service(
    knowledge_store: SQLiteKnowledgeStore,
    vector_store: ChromaDBProvider,
    embedding_client: EmbeddingClient,
    chunking_options: ChunkingOptions,
) -> IndexingService:
    return IndexingService(
        store=knowledge_store,
        vector_store=vector_store,
        embedding_client=embedding_client,
        chunker=TextChunker(chunking_options),
    )


@pytest.fixture
def retrieval_service(
    knowledge_store: SQLiteKnowledgeStore,
    vector_store: ChromaDBProvider,
    embedding_client: EmbeddingClient,
) -> RetrievalService:
    return RetrievalService(
        store=knowledge_store,
        vector_store=vector_store,
        embedding_client=embedding_client,
        default_options=SearchOptions(top_k=5, min_score=0.5),
    )


@pytest.fixture
def progress_tracker() -> ProgressTracker:
    return ProgressTracker()


@pytest.fixture
async def knowledge_service(
    tmp_path: Path,
    knowledge_store: SQLiteKnowledgeStore,
    vector_store: ChromaDBProvider,
    indexing_service: IndexingService,
    retrieval_service: RetrievalService,
    progress_tracker: ProgressTracker,
) -> AsyncIterator[KnowledgeService]:
    service = KnowledgeService(
        store=knowledge_store,
        vector_store=vector_store,
        indexing_service=indexing_service,
        retrieval_service=retrieval_service,
        files_dir=tmp_path / "files",
        progress_tracker=progress_tracker,
    )
    await service.initialize()
    yield service
    await service.close()


# ---------------------------------------------------------------------------
# Sample text
# ---------------------------------------------------------------------------

NOTES_PARAGRAPHS = (
    "Notes from the planning meeting about the spring release of the app.",
    "The team agreed to ship search first and to postpone the export tools.",
    "Follow up with design about onboarding screens before the next review.",
)


@pytest.fixture
def notes_text() -> str:
    """Three short paragraphs that split into exactly two 150-char chunks."""
    return "\n\n".join(NOTES_PARAGRAPHS)
