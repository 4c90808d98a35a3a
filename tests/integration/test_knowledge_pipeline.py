"""End-to-end indexing and retrieval over real SQLite and ChromaDB storage.

Every component is real except the embedding provider, which is the
deterministic hashing provider from ``tests.conftest``.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from docx import Document as new_docx

from knowledge_rag.models.knowledge import DocumentStatus, SearchOptions, SourceKind
from knowledge_rag.pipeline.progress_tracker import ProgressTracker
from knowledge_rag.providers.knowledge.sqlite_knowledge_store import SQLiteKnowledgeStore
from knowledge_rag.providers.vector_store.chromadb_provider import ChromaDBProvider
from knowledge_rag.services.ingestion.chunker import TextChunker
from knowledge_rag.services.ingestion.embedding_client import EmbeddingClient
from knowledge_rag.services.ingestion.indexing_service import IndexingService
from knowledge_rag.services.knowledge_service import KnowledgeService
from knowledge_rag.services.retrieval_service import RetrievalService
from knowledge_rag.utils.errors import DimensionMismatchError, EmbeddingError
from tests.conftest import FakeEmbeddingProvider


def _write_docx(path: Path) -> Path:
    document = new_docx()
    document.core_properties.title = "Ops Runbook"
    document.add_heading("Deployment", level=1)
    document.add_paragraph("Containers are rebuilt nightly and rolled out in the morning.")
    document.add_heading("Databases", level=1)
    document.add_paragraph("Postgres backups run hourly and are kept for thirty days.")
    document.save(path)
    return path


# ======================================================================
# Pasted text
# ======================================================================


class TestNotesScenario:
    @pytest.mark.asyncio
    async def test_index_then_search(
        self,
        knowledge_service: KnowledgeService,
        knowledge_store: SQLiteKnowledgeStore,
        notes_text: str,
    ) -> None:
        result = await knowledge_service.add_text("nb", "Notes", notes_text)

        document = await knowledge_service.get_document(result.document_id)
        assert document.status is DocumentStatus.INDEXED
        assert document.chunk_count == 2
        assert await knowledge_store.count_embeddings(result.document_id) == 2

        hits = await knowledge_service.search(
            "nb", "notes", SearchOptions(top_k=1, min_score=0.5)
        )
        assert len(hits) == 1
        assert hits[0].document_title == "Notes"
        assert hits[0].document_type is SourceKind.TEXT

    @pytest.mark.asyncio
    async def test_progress_reaches_completed(
        self,
        knowledge_service: KnowledgeService,
        progress_tracker: ProgressTracker,
        notes_text: str,
    ) -> None:
        stages: list[str] = []

        result = await knowledge_service.add_text(
            "nb", "Notes", notes_text, on_progress=lambda stage, _: stages.append(stage)
        )

        assert stages[0] == "creating_document"
        assert stages[-1] == "completed"
        assert progress_tracker.get_status(result.document_id)["percent"] == 100.0


# ======================================================================
# Mixed sources in one collection
# ======================================================================


class TestMixedSources:
    @pytest.mark.asyncio
    async def test_file_and_text_are_searchable_together(
        self, knowledge_service: KnowledgeService, tmp_path: Path
    ) -> None:
        docx_path = _write_docx(tmp_path / "runbook.docx")
        file_result = await knowledge_service.add_file("ops", docx_path)
        await knowledge_service.add_text(
            "ops", "Lunch", "The cafeteria serves soup on Mondays and pasta on Fridays."
        )

        hits = await knowledge_service.search(
            "ops", "postgres backups hourly", SearchOptions(top_k=3, min_score=0.0)
        )

        assert hits[0].document_id == file_result.document_id
        assert hits[0].document_title == "Ops Runbook"
        assert hits[0].document_type is SourceKind.FILE
        assert "Postgres" in hits[0].text

    @pytest.mark.asyncio
    async def test_collections_do_not_leak(self, knowledge_service: KnowledgeService) -> None:
        await knowledge_service.add_text("a", "Alpha", "Alpha collection text about rivers.")
        await knowledge_service.add_text("b", "Beta", "Beta collection text about rivers.")

        hits = await knowledge_service.search("a", "rivers", SearchOptions(min_score=0.0))

        assert {hit.document_title for hit in hits} == {"Alpha"}
        assert (await knowledge_service.get_stats("b")).document_count == 1


# ======================================================================
# Dimension lock
# ======================================================================


class TestDimensionLock:
    @pytest.mark.asyncio
    async def test_second_model_with_other_dimensions_is_rejected(
        self,
        knowledge_service: KnowledgeService,
        knowledge_store: SQLiteKnowledgeStore,
        vector_store: ChromaDBProvider,
        chunking_options,
        notes_text: str,
    ) -> None:
        await knowledge_service.add_text("nb", "First", notes_text)

        wide = IndexingService(
            store=knowledge_store,
            vector_store=vector_store,
            embedding_client=EmbeddingClient(
                FakeEmbeddingProvider(dimensions=64, model="wide"),
                retry_delay=0.0,
                rate_limit_delay=0.0,
            ),
            chunker=TextChunker(chunking_options),
        )
        document = await wide.create_document(
            collection_id="nb", title="Second", text=notes_text, source_kind=SourceKind.TEXT
        )

        with pytest.raises(DimensionMismatchError) as exc_info:
            await wide.index_document(document)

        assert exc_info.value.expected == 32
        assert exc_info.value.actual == 64
        failed = await knowledge_store.get_document(document.id)
        assert failed.status is DocumentStatus.FAILED
        assert failed.chunk_count == 0
        assert await vector_store.count("nb") == 2

    @pytest.mark.asyncio
    async def test_other_collections_pick_their_own_size(
        self,
        knowledge_service: KnowledgeService,
        knowledge_store: SQLiteKnowledgeStore,
        vector_store: ChromaDBProvider,
        chunking_options,
        notes_text: str,
    ) -> None:
        await knowledge_service.add_text("nb", "First", notes_text)
        client = EmbeddingClient(
            FakeEmbeddingProvider(dimensions=64), retry_delay=0.0, rate_limit_delay=0.0
        )
        wide = IndexingService(
            store=knowledge_store,
            vector_store=vector_store,
            embedding_client=client,
            chunker=TextChunker(chunking_options),
        )

        document = await wide.create_document(
            collection_id="other", title="Wide", text=notes_text, source_kind=SourceKind.TEXT
        )
        result = await wide.index_document(document)

        assert result.status is DocumentStatus.INDEXED
        assert await vector_store.get_dimensions("other") == 64
        retrieval = RetrievalService(
            store=knowledge_store, vector_store=vector_store, embedding_client=client
        )
        assert await retrieval.search("other", "notes")


# ======================================================================
# Lifecycle
# ======================================================================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_failed_document_leaves_search_untouched(
        self,
        knowledge_service: KnowledgeService,
        fake_provider: FakeEmbeddingProvider,
        notes_text: str,
    ) -> None:
        await knowledge_service.add_text("nb", "Good", notes_text)
        fake_provider.available = False

        with pytest.raises(EmbeddingError):
            await knowledge_service.add_text("nb", "Bad", "Another body of text.")
        fake_provider.available = True

        stats = await knowledge_service.get_stats("nb")
        assert stats.documents_by_status == {"indexed": 1, "failed": 1}
        assert stats.vector_count == 2
        hits = await knowledge_service.search("nb", "notes", SearchOptions(min_score=0.0))
        assert {hit.document_title for hit in hits} == {"Good"}

    @pytest.mark.asyncio
    async def test_reindex_then_delete(
        self, knowledge_service: KnowledgeService, notes_text: str
    ) -> None:
        result = await knowledge_service.add_text("nb", "Notes", notes_text)

        again = await knowledge_service.reindex_document(result.document_id)
        stats_after_reindex = await knowledge_service.get_stats("nb")
        await knowledge_service.delete_document(result.document_id)
        stats_after_delete = await knowledge_service.get_stats("nb")

        assert again.chunk_count == 2
        assert stats_after_reindex.vector_count == 2
        assert stats_after_reindex.embedding_count == 2
        assert stats_after_delete.document_count == 0
        assert stats_after_delete.vector_count == 0
        assert await knowledge_service.search("nb", "notes") == []
