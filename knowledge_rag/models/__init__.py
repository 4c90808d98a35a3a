"""Knowledge-base domain models, re-exported for ``from knowledge_rag.models import X``.

- knowledge.py -- persisted entities (Document, Chunk, EmbeddingRecord, Note),
  chunking/embedding/search value objects, and reporting models
- loading.py   -- loader output (LoadResult and its page/section structure)
"""

from __future__ import annotations

from knowledge_rag.models.knowledge import (
    Chunk,
    ChunkingOptions,
    Document,
    DocumentStatus,
    EmbeddingRecord,
    EmbeddingResult,
    IndexingResult,
    KnowledgeStats,
    Note,
    SearchOptions,
    SearchResult,
    SourceKind,
    TextChunk,
    VectorMatch,
    VectorRecord,
)
from knowledge_rag.models.loading import (
    DocumentStructure,
    LoadResult,
    PageInfo,
    SectionInfo,
    StructureKind,
)

__all__ = [
    # knowledge
    "Chunk",
    "ChunkingOptions",
    "Document",
    "DocumentStatus",
    "EmbeddingRecord",
    "EmbeddingResult",
    "IndexingResult",
    "KnowledgeStats",
    "Note",
    "SearchOptions",
    "SearchResult",
    "SourceKind",
    "TextChunk",
    "VectorMatch",
    "VectorRecord",
    # loading
    "DocumentStructure",
    "LoadResult",
    "PageInfo",
    "SectionInfo",
    "StructureKind",
]
