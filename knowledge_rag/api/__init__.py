"""Knowledge base API layer: routes, schemas, WebSocket, and middleware."""

from knowledge_rag.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
    status_code_for,
)
from knowledge_rag.api.routes import router
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
from knowledge_rag.api.websocket import websocket_progress

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "status_code_for",
    "router",
    "websocket_progress",
    "AddNoteRequest",
    "AddTextRequest",
    "AddUrlRequest",
    "CreateNoteRequest",
    "DocumentListResponse",
    "DocumentResponse",
    "ErrorResponse",
    "HealthResponse",
    "IndexingAcceptedResponse",
    "SearchRequest",
    "SearchResponse",
]
