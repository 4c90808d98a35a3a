"""API middleware: CORS, request logging, and error handling.

Starlette runs middleware LIFO (last added, first executed).  ``create_app``
adds ``ErrorHandlingMiddleware`` before ``RequestLoggingMiddleware``, so a
request flows::

    client -> RequestLogging -> ErrorHandling -> route handler

and the request log records the status code chosen by the error handler.
"""

from __future__ import annotations

import time

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from knowledge_rag.api.schemas import ErrorResponse
from knowledge_rag.utils.errors import (
    DimensionMismatchError,
    DocumentNotFoundError,
    EmbeddingError,
    KnowledgeBaseError,
    LoaderError,
    NoteNotFoundError,
    RetrievalError,
    UnsupportedInputError,
    VectorStoreError,
)
from knowledge_rag.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# First match wins; subclasses must precede their bases.
_STATUS_BY_ERROR: tuple[tuple[type[KnowledgeBaseError], int], ...] = (
    (DocumentNotFoundError, 404),
    (NoteNotFoundError, 404),
    (UnsupportedInputError, 400),
    (LoaderError, 422),
    (DimensionMismatchError, 409),
    (EmbeddingError, 502),
    (VectorStoreError, 502),
    (RetrievalError, 502),
)


def status_code_for(exc: KnowledgeBaseError) -> int:
    """Map a knowledge-base error to its HTTP status code (500 if unmapped)."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------


def configure_cors(app: FastAPI, *, allowed_origins: list[str] | None = None) -> None:
    """Add CORS middleware to the FastAPI application.

    Parameters
    ----------
    app:
        The FastAPI application instance.
    allowed_origins:
        Explicit list of allowed origins.  Defaults to ``["*"]`` for
        development; override with specific origins in production.
    """
    origins = allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Convert ``KnowledgeBaseError`` subclasses into JSON error responses.

    The client receives an :class:`ErrorResponse` with the exception class
    name, its message and the failing provider.  Stack traces stay in the
    server log.  Exceptions outside the hierarchy fall through to
    FastAPI's default 500 handler.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except KnowledgeBaseError as exc:
            status_code = status_code_for(exc)
            log = _logger.warning if status_code < 500 else _logger.error
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                path=str(request.url.path),
                status=status_code,
            )
            body = ErrorResponse(
                error=type(exc).__name__,
                detail=exc.message,
                provider=exc.provider_name,
            )
            return JSONResponse(
                status_code=status_code,
                content=body.model_dump(),
            )
