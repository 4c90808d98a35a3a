"""Unit tests for the error hierarchy and the API error-handling middleware."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from knowledge_rag.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    status_code_for,
)
from knowledge_rag.utils.errors import (
    ConfigurationError,
    DimensionMismatchError,
    DocumentNotFoundError,
    EmbeddingError,
    IndexingError,
    KnowledgeBaseError,
    LoaderError,
    NoteNotFoundError,
    RateLimitError,
    RetrievalError,
    UnsupportedInputError,
    VectorStoreError,
)


def _make_app(exc: Exception) -> FastAPI:
    app = FastAPI()
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/boom")
    async def boom() -> None:
        raise exc

    @app.get("/ok")
    async def ok() -> dict[str, str]:
        return {"status": "ok"}

    return app


# ======================================================================
# Error hierarchy
# ======================================================================


class TestErrors:
    def test_str_includes_provider(self) -> None:
        error = LoaderError(message="File is encrypted", provider_name="pdf_loader")
        assert str(error) == "[pdf_loader] File is encrypted"
        assert error.message == "File is encrypted"

    def test_str_without_provider(self) -> None:
        assert str(DocumentNotFoundError("abc")) == "Document not found: abc"

    def test_dimension_mismatch_message(self) -> None:
        error = DimensionMismatchError(expected=1536, actual=768, collection_id="nb")
        assert error.expected == 1536
        assert error.actual == 768
        assert error.message == (
            "Embedding dimension mismatch for collection 'nb': "
            "index expects 1536, provider returned 768"
        )

    def test_retrieval_error_carries_empty_results(self) -> None:
        assert RetrievalError().results == []

    def test_rate_limit_is_an_embedding_error(self) -> None:
        assert isinstance(RateLimitError(provider_name="openai"), EmbeddingError)

    def test_everything_shares_a_base(self) -> None:
        for error in (
            UnsupportedInputError(),
            NoteNotFoundError("n"),
            IndexingError(),
            ConfigurationError(),
            VectorStoreError(),
        ):
            assert isinstance(error, KnowledgeBaseError)


# ======================================================================
# Status mapping
# ======================================================================


class TestStatusCodeFor:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (DocumentNotFoundError("d"), 404),
            (NoteNotFoundError("n"), 404),
            (UnsupportedInputError(), 400),
            (LoaderError(), 422),
            (DimensionMismatchError(expected=3, actual=4), 409),
            (EmbeddingError(), 502),
            (RateLimitError(), 502),
            (VectorStoreError(), 502),
            (RetrievalError(), 502),
            (IndexingError(), 500),
            (ConfigurationError(), 500),
        ],
    )
    def test_mapping(self, error: KnowledgeBaseError, expected: int) -> None:
        assert status_code_for(error) == expected


# ======================================================================
# Middleware
# ======================================================================


class TestErrorHandlingMiddleware:
    def test_knowledge_error_becomes_json(self) -> None:
        app = _make_app(VectorStoreError(message="disk full", provider_name="chromadb"))
        with TestClient(app) as client:
            response = client.get("/boom")

        assert response.status_code == 502
        assert response.json() == {
            "error": "VectorStoreError",
            "detail": "disk full",
            "provider": "chromadb",
        }

    def test_successful_requests_pass_through(self) -> None:
        with TestClient(_make_app(IndexingError())) as client:
            response = client.get("/ok")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_other_exceptions_are_not_converted(self) -> None:
        app = _make_app(RuntimeError("bug"))
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/boom")
        assert response.status_code == 500
