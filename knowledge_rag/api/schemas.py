"""Pydantic request/response schemas for the knowledge base API.

Request schemas end with ``Request`` and response schemas with
``Response``.  Documents, chunks, notes and search results are returned as
the domain models from :mod:`knowledge_rag.models.knowledge`, except that
document responses leave out the full extracted text.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from knowledge_rag.models.knowledge import Document, DocumentStatus, SearchResult, SourceKind


class AddTextRequest(BaseModel):
    """Pasted text to index as a new document."""

    title: str = Field(default="Untitled", max_length=500)
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class AddUrlRequest(BaseModel):
    """A web page to fetch and index."""

    url: str = Field(min_length=1, max_length=2048)
    title: str | None = Field(default=None, max_length=500)


class AddNoteRequest(BaseModel):
    """An existing note to index as a document."""

    note_id: str = Field(min_length=1)


class CreateNoteRequest(BaseModel):
    title: str = Field(default="", max_length=500)
    content: str = ""


class SearchRequest(BaseModel):
    """Semantic search parameters; unset fields use the server defaults."""

    query: str
    top_k: int | None = Field(default=None, ge=1, le=100)
    min_score: float | None = Field(default=None, ge=0.0, le=1.0)
    include_text: bool = True
    document_ids: list[str] | None = None


class IndexingAcceptedResponse(BaseModel):
    """Returned when an add or reindex request has been queued.

    Progress is available over ``WS /ws/progress/{document_id}`` and the
    final state through ``GET /api/v1/documents/{document_id}``.
    """

    document_id: str
    status: str = "accepted"
    progress_url: str


class DocumentResponse(BaseModel):
    """A document without its extracted text."""

    id: str
    collection_id: str
    title: str
    source_kind: SourceKind
    source_uri: str | None = None
    source_note_id: str | None = None
    mime_type: str | None = None
    file_size: int | None = None
    content_hash: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: DocumentStatus
    error_message: str | None = None
    chunk_count: int
    created_at: datetime
    updated_at: datetime
    progress: dict[str, Any] | None = Field(
        default=None, description="Latest progress snapshot while indexing."
    )

    @classmethod
    def from_document(
        cls,
        document: Document,
        progress: dict[str, Any] | None = None,
    ) -> DocumentResponse:
        return cls(
            **document.model_dump(exclude={"content", "local_path"}),
            progress=progress,
        )


class DocumentListResponse(BaseModel):
    collection_id: str
    documents: list[DocumentResponse]
    total: int


class SearchResponse(BaseModel):
    collection_id: str
    query: str
    results: list[SearchResult]
    total: int


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str
    provider: str | None = None
