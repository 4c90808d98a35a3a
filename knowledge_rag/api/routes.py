"""FastAPI routes for the knowledge base.

Service dependencies are resolved from ``app.state`` (populated by the
lifespan in ``main.py``) via ``Depends`` and ``Annotated`` aliases.

Endpoint                                         Method  Description
-----------------------------------------------  ------  ---------------------------------
/api/v1/collections/{cid}/documents/text         POST    Index pasted text (202)
/api/v1/collections/{cid}/documents/file         POST    Upload and index a file (202)
/api/v1/collections/{cid}/documents/url          POST    Fetch and index a web page (202)
/api/v1/collections/{cid}/documents/note         POST    Index an existing note (202)
/api/v1/collections/{cid}/documents              GET     List documents
/api/v1/collections/{cid}/notes                  POST    Create a note
/api/v1/collections/{cid}/search                 POST    Semantic search
/api/v1/collections/{cid}/stats                  GET     Collection statistics
/api/v1/documents/{id}                           GET     Document status and metadata
/api/v1/documents/{id}/chunks                    GET     Ordered chunks
/api/v1/documents/{id}                           DELETE  Delete document (cancels indexing)
/api/v1/documents/{id}/reindex                   POST    Rebuild chunks and vectors (202)
/api/v1/health                                   GET     Health check

Add and reindex requests are validated synchronously, then indexed in a
``BackgroundTask`` under a pre-allocated document id.  Clients follow
progress on ``WS /ws/progress/{document_id}`` or by polling the document.
"""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any
from urllib.parse import urlparse

import structlog
from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
    status,
)

import knowledge_rag
from knowledge_rag.api.schemas import (
    AddNoteRequest,
    AddTextRequest,
    AddUrlRequest,
    CreateNoteRequest,
    DocumentListResponse,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
    IndexingAcceptedResponse,
    SearchRequest,
    SearchResponse,
)
from knowledge_rag.models.knowledge import (
    Chunk,
    DocumentStatus,
    IndexingResult,
    KnowledgeStats,
    Note,
    new_id,
)
from knowledge_rag.pipeline.progress_tracker import ProgressTracker
from knowledge_rag.services.knowledge_service import KnowledgeService
from knowledge_rag.utils.errors import (
    DocumentNotFoundError,
    NoteNotFoundError,
    UnsupportedInputError,
)
from knowledge_rag.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB
_UPLOAD_CHUNK_SIZE = 64 * 1024

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _get_knowledge_service(request: Request) -> KnowledgeService:
    return request.app.state.knowledge_service


def _get_progress_tracker(request: Request) -> ProgressTracker:
    return request.app.state.progress_tracker


KnowledgeDep = Annotated[KnowledgeService, Depends(_get_knowledge_service)]
TrackerDep = Annotated[ProgressTracker, Depends(_get_progress_tracker)]


# ---------------------------------------------------------------------------
# Background indexing
# ---------------------------------------------------------------------------


async def _index_in_background(
    operation: str,
    document_id: str,
    job: Callable[..., Awaitable[IndexingResult]],
    cleanup_dir: Path | None = None,
    **kwargs: Any,
) -> None:
    """Run one add/reindex call after the response has been sent.

    Failures are already recorded on the document row and in the progress
    tracker, so they are only logged here.
    """
    try:
        result = await job(document_id=document_id, **kwargs)
        _logger.info(
            "background_indexing_completed",
            operation=operation,
            document_id=document_id,
            chunks=result.chunk_count,
        )
    except DocumentNotFoundError:
        _logger.info("background_indexing_aborted", operation=operation, document_id=document_id)
    except Exception as exc:
        _logger.error(
            "background_indexing_failed",
            operation=operation,
            document_id=document_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )
    finally:
        if cleanup_dir is not None:
            shutil.rmtree(cleanup_dir, ignore_errors=True)


def _accepted(document_id: str) -> IndexingAcceptedResponse:
    return IndexingAcceptedResponse(
        document_id=document_id,
        progress_url=f"/ws/progress/{document_id}",
    )


async def _save_upload(file: UploadFile, directory: Path) -> Path:
    """Stream an upload to *directory*, rejecting oversized files early."""
    target = directory / Path(file.filename or "upload").name
    total_size = 0
    with open(target, "wb") as out:
        while True:
            chunk = await file.read(_UPLOAD_CHUNK_SIZE)
            if not chunk:
                break
            total_size += len(chunk)
            if total_size > _MAX_FILE_SIZE:
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=f"File too large. Maximum: {_MAX_FILE_SIZE} bytes.",
                )
            out.write(chunk)
    return target


# ---------------------------------------------------------------------------
# Adding documents
# ---------------------------------------------------------------------------


@router.post(
    "/collections/{collection_id}/documents/text",
    response_model=IndexingAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_ERROR_RESPONSES,
    summary="Index pasted text",
)
async def add_text(
    collection_id: str,
    body: AddTextRequest,
    background_tasks: BackgroundTasks,
    service: KnowledgeDep,
) -> IndexingAcceptedResponse:
    if not body.text.strip():
        raise UnsupportedInputError(message="No content to index")
    document_id = new_id()
    background_tasks.add_task(
        _index_in_background,
        "add_text",
        document_id,
        service.add_text,
        collection_id=collection_id,
        title=body.title,
        text=body.text,
        metadata=body.metadata,
    )
    return _accepted(document_id)


@router.post(
    "/collections/{collection_id}/documents/file",
    response_model=IndexingAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={**_ERROR_RESPONSES, 413: {"model": ErrorResponse}},
    summary="Upload a PDF, Word, PowerPoint, Markdown, text or HTML file",
)
async def add_file(
    collection_id: str,
    file: UploadFile,
    background_tasks: BackgroundTasks,
    service: KnowledgeDep,
    title: Annotated[str | None, Form()] = None,
) -> IndexingAcceptedResponse:
    filename = Path(file.filename or "").name
    if not filename:
        raise UnsupportedInputError(message="Uploaded file has no name")
    service.loader_registry.resolve(filename)

    upload_dir = Path(tempfile.mkdtemp(prefix="knowledge-upload-"))
    try:
        saved = await _save_upload(file, upload_dir)
    except BaseException:
        shutil.rmtree(upload_dir, ignore_errors=True)
        raise

    document_id = new_id()
    background_tasks.add_task(
        _index_in_background,
        "add_file",
        document_id,
        service.add_file,
        cleanup_dir=upload_dir,
        collection_id=collection_id,
        path=saved,
        title=title,
        source_uri=filename,
    )
    return _accepted(document_id)


@router.post(
    "/collections/{collection_id}/documents/url",
    response_model=IndexingAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_ERROR_RESPONSES,
    summary="Fetch a web page and index its main content",
)
async def add_url(
    collection_id: str,
    body: AddUrlRequest,
    background_tasks: BackgroundTasks,
    service: KnowledgeDep,
) -> IndexingAcceptedResponse:
    parsed = urlparse(body.url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise UnsupportedInputError(message=f"Only http(s) URLs can be fetched: {body.url}")
    if not service.url_ingestion_enabled:
        raise UnsupportedInputError(message="URL ingestion is not configured")

    document_id = new_id()
    background_tasks.add_task(
        _index_in_background,
        "add_url",
        document_id,
        service.add_url,
        collection_id=collection_id,
        url=body.url.strip(),
        title=body.title,
    )
    return _accepted(document_id)


@router.post(
    "/collections/{collection_id}/documents/note",
    response_model=IndexingAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_ERROR_RESPONSES,
    summary="Index an existing note",
)
async def add_note(
    collection_id: str,
    body: AddNoteRequest,
    background_tasks: BackgroundTasks,
    service: KnowledgeDep,
) -> IndexingAcceptedResponse:
    note = await service.get_note(body.note_id)
    if note.collection_id != collection_id:
        raise NoteNotFoundError(body.note_id)
    if not note.content.strip():
        raise UnsupportedInputError(message="Note is empty")

    document_id = new_id()
    background_tasks.add_task(
        _index_in_background,
        "add_note",
        document_id,
        service.add_note,
        collection_id=collection_id,
        note_id=note.id,
    )
    return _accepted(document_id)


@router.post(
    "/collections/{collection_id}/notes",
    response_model=Note,
    status_code=status.HTTP_201_CREATED,
    summary="Create a note",
)
async def create_note(
    collection_id: str,
    body: CreateNoteRequest,
    service: KnowledgeDep,
) -> Note:
    return await service.create_note(collection_id, body.title, body.content)


# ---------------------------------------------------------------------------
# Inspecting documents
# ---------------------------------------------------------------------------


@router.get(
    "/collections/{collection_id}/documents",
    response_model=DocumentListResponse,
    summary="List documents in a collection",
)
async def list_documents(
    collection_id: str,
    service: KnowledgeDep,
    tracker: TrackerDep,
    status_filter: Annotated[DocumentStatus | None, Query(alias="status")] = None,
) -> DocumentListResponse:
    documents = await service.list_documents(collection_id, status=status_filter)
    return DocumentListResponse(
        collection_id=collection_id,
        documents=[
            DocumentResponse.from_document(doc, tracker.get_status(doc.id)) for doc in documents
        ],
        total=len(documents),
    )


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a document's status and metadata",
)
async def get_document(
    document_id: str,
    service: KnowledgeDep,
    tracker: TrackerDep,
) -> DocumentResponse:
    document = await service.get_document(document_id)
    return DocumentResponse.from_document(document, tracker.get_status(document_id))


@router.get(
    "/documents/{document_id}/chunks",
    response_model=list[Chunk],
    responses={404: {"model": ErrorResponse}},
    summary="List a document's chunks in order",
)
async def get_document_chunks(document_id: str, service: KnowledgeDep) -> list[Chunk]:
    return await service.get_document_chunks(document_id)


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
    summary="Delete a document, cancelling any indexing in progress",
)
async def delete_document(document_id: str, service: KnowledgeDep) -> None:
    await service.delete_document(document_id)


@router.post(
    "/documents/{document_id}/reindex",
    response_model=IndexingAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Rebuild a document's chunks and vectors",
)
async def reindex_document(
    document_id: str,
    background_tasks: BackgroundTasks,
    service: KnowledgeDep,
) -> IndexingAcceptedResponse:
    await service.get_document(document_id)
    if service.is_indexing(document_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Document {document_id} is already being indexed",
        )

    async def reindex(document_id: str) -> IndexingResult:
        return await service.reindex_document(document_id)

    background_tasks.add_task(_index_in_background, "reindex", document_id, reindex)
    return _accepted(document_id)


# ---------------------------------------------------------------------------
# Search / stats
# ---------------------------------------------------------------------------


@router.post(
    "/collections/{collection_id}/search",
    response_model=SearchResponse,
    responses={502: {"model": ErrorResponse}},
    summary="Semantic search over a collection",
)
async def search(
    collection_id: str,
    body: SearchRequest,
    service: KnowledgeDep,
) -> SearchResponse:
    overrides: dict[str, Any] = {
        "include_text": body.include_text,
        "document_ids": body.document_ids,
    }
    if body.top_k is not None:
        overrides["top_k"] = body.top_k
    if body.min_score is not None:
        overrides["min_score"] = body.min_score
    options = service.search_defaults.model_copy(update=overrides)

    results = await service.search(collection_id, body.query, options)
    return SearchResponse(
        collection_id=collection_id,
        query=body.query,
        results=results,
        total=len(results),
    )


@router.get(
    "/collections/{collection_id}/stats",
    response_model=KnowledgeStats,
    summary="Document, chunk and vector counts for a collection",
)
async def get_stats(collection_id: str, service: KnowledgeDep) -> KnowledgeStats:
    return await service.get_stats(collection_id)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Application health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Report embedding provider and vector store availability."""
    providers: dict[str, Any] = {"embedding": None, "vector_store": False}

    embedding_client = getattr(request.app.state, "embedding_client", None)
    provider = embedding_client.provider if embedding_client is not None else None
    if provider is not None:
        providers["embedding"] = provider.get_provider_name()
        providers["embedding_model"] = provider.get_model_name()

    vector_store = getattr(request.app.state, "vector_store", None)
    if vector_store is not None:
        providers["vector_store"] = vector_store.is_available()

    if providers["vector_store"] and providers["embedding"]:
        health = "healthy"
    elif providers["vector_store"]:
        health = "degraded"
    else:
        health = "unhealthy"

    return HealthResponse(
        status=health,
        version=knowledge_rag.__version__,
        providers=providers,
    )
