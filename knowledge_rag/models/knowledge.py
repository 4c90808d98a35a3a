"""Knowledge-base data models: documents, chunks, embeddings, search results.

All persisted entities are frozen Pydantic v2 models.  Status transitions
produce new instances (``model_copy(update=...)``) rather than mutating.

Ownership chain, every level scoped to exactly one collection:

    collection (notebook)
      +-- Document            (status: pending -> processing -> indexed | failed | canceled)
            +-- Chunk         (ordered slice of Document.content)
                  +-- EmbeddingRecord   (metadata only; the vector lives in the index)
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def new_id() -> str:
    """Return a fresh identifier (uuid4 hex)."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DocumentStatus(str, Enum):
    """Lifecycle status of a document row."""

    PENDING = "pending"
    PROCESSING = "processing"
    INDEXED = "indexed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.INDEXED, DocumentStatus.FAILED, DocumentStatus.CANCELED)


class SourceKind(str, Enum):
    """How a document's text was obtained."""

    FILE = "file"
    URL = "url"
    NOTE = "note"
    TEXT = "text"


# ---------------------------------------------------------------------------
# Persisted entities
# ---------------------------------------------------------------------------


class Document(BaseModel):
    """A source unit owned by one collection.

    ``content`` is the normalised extracted text; chunk offsets index into it.
    ``chunk_count`` equals the number of chunk rows once ``status`` is
    ``indexed``.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    collection_id: str = Field(min_length=1)
    title: str
    source_kind: SourceKind
    source_uri: str | None = Field(default=None, description="File path, URL, or note id.")
    source_note_id: str | None = None
    content: str = ""
    content_hash: str = ""
    mime_type: str | None = None
    file_size: int | None = Field(default=None, ge=0)
    local_path: str | None = Field(default=None, description="Managed copy of an uploaded file.")
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: str | None = None
    chunk_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Chunk(BaseModel):
    """An ordered slice of a document's text."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    document_id: str
    collection_id: str
    content: str = Field(min_length=1)
    chunk_index: int = Field(ge=0)
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)
    token_count: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _check_offsets(self) -> Chunk:
        if self.end_offset < self.start_offset:
            raise ValueError("end_offset must not precede start_offset")
        return self


class EmbeddingRecord(BaseModel):
    """Metadata for one vector; ``id`` is the vector's key in the index."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    chunk_id: str
    collection_id: str
    model: str
    dimensions: int = Field(gt=0)
    created_at: datetime = Field(default_factory=utc_now)


class Note(BaseModel):
    """A user note that can be indexed as a document."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    collection_id: str
    title: str = ""
    content: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


class ChunkingOptions(BaseModel):
    """Size bounds for the chunking engine, in characters."""

    model_config = ConfigDict(frozen=True)

    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap: int = Field(default=50, ge=0)
    min_chunk_size: int = Field(default=100, ge=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> ChunkingOptions:
        if self.chunk_overlap >= max(1, self.chunk_size // 2):
            raise ValueError("chunk_overlap must be smaller than half of chunk_size")
        return self


class TextChunk(BaseModel):
    """One chunker output segment; ``text`` is ``source[start_offset:end_offset]``."""

    model_config = ConfigDict(frozen=True)

    text: str
    index: int = Field(ge=0)
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)
    token_estimate: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Embeddings and vectors
# ---------------------------------------------------------------------------


class EmbeddingResult(BaseModel):
    """A vector together with the model that produced it."""

    model_config = ConfigDict(frozen=True)

    vector: list[float]
    model: str
    dimensions: int = Field(gt=0)


class VectorRecord(BaseModel):
    """An upsert unit for the vector index, keyed by the embedding record id."""

    model_config = ConfigDict(frozen=True)

    id: str
    chunk_id: str
    document_id: str
    vector: list[float]
    metadata: dict[str, str | int | float | bool] = Field(default_factory=dict)


class VectorMatch(BaseModel):
    """A ranked vector-index hit."""

    model_config = ConfigDict(frozen=True)

    id: str
    chunk_id: str
    document_id: str | None = None
    score: float


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class SearchOptions(BaseModel):
    """Search parameters; ``min_score`` is applied after ranking."""

    model_config = ConfigDict(frozen=True)

    top_k: int = Field(default=5, ge=1, le=100)
    min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    include_text: bool = True
    document_ids: list[str] | None = Field(
        default=None, description="Restrict hits to these documents."
    )


class SearchResult(BaseModel):
    """A ranked, source-attributed passage."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    document_title: str
    document_type: SourceKind
    text: str | None
    score: float
    chunk_index: int
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


class KnowledgeStats(BaseModel):
    """Aggregate counts for one collection."""

    model_config = ConfigDict(frozen=True)

    collection_id: str
    document_count: int = 0
    chunk_count: int = 0
    embedding_count: int = 0
    vector_count: int = 0
    documents_by_status: dict[str, int] = Field(default_factory=dict)


class IndexingResult(BaseModel):
    """Outcome of an add or reindex operation."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    status: DocumentStatus
    chunk_count: int = 0
    processing_time: float = Field(default=0.0, ge=0.0, description="Seconds.")
