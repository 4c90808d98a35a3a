"""Custom exception hierarchy for the knowledge base.

All application exceptions inherit from :class:`KnowledgeBaseError`, which
carries an optional ``provider_name`` so error handlers can identify which
component or external service (e.g. "openai", "chromadb", "pdf_loader")
caused the failure.

The hierarchy is organized by pipeline stage:

    KnowledgeBaseError  (base -- catch-all for any knowledge-base error)
    +-- UnsupportedInputError    (unknown file type, empty content, bad URL)
    +-- LoaderError              (a format adapter could not parse the input)
    +-- EmbeddingError           (provider missing, failing, or out of retries)
    |   +-- RateLimitError       (provider rate-limit exceeded, retryable)
    +-- DimensionMismatchError   (vector size differs from the collection index)
    +-- VectorStoreError         (vector index read/write failure)
    +-- RetrievalError           (search failed; carries an empty result list)
    +-- DocumentNotFoundError    (document row absent or deleted mid-flight)
    +-- NoteNotFoundError        (note row absent)
    +-- IndexingError            (orchestration failure not covered above)
    +-- ConfigurationError       (startup / missing config)

Callers can retry on RateLimitError, surface UnsupportedInputError as a
client error, and treat DimensionMismatchError as a consistency conflict.
"""

from __future__ import annotations

from typing import Any


class KnowledgeBaseError(Exception):
    """Base exception for all knowledge-base errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which component triggered the error.
    ``__str__`` prefixes the provider name in brackets for structured log
    output, e.g. ``[openai_embedding] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Input / loading errors
# ---------------------------------------------------------------------------

class UnsupportedInputError(KnowledgeBaseError):
    """Raised for unrecognized file types, non-HTTP URLs, or empty content.

    Raised before any document row is created, so no partial state exists.
    """

    def __init__(
        self,
        message: str = "Unsupported input",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LoaderError(KnowledgeBaseError):
    """Raised when a format adapter cannot parse its input.

    Covers corrupt or password-protected files and failed web fetches.
    ``provider_name`` names the adapter (``pdf_loader``, ``web_fetch`` ...).
    """

    def __init__(
        self,
        message: str = "Document could not be loaded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Embedding / vector errors
# ---------------------------------------------------------------------------

class EmbeddingError(KnowledgeBaseError):
    """Raised when embedding generation fails or no provider is usable."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(EmbeddingError):
    """Raised when an embedding provider rejects a call for rate limiting.

    The embedding client retries these with exponential backoff.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class DimensionMismatchError(KnowledgeBaseError):
    """Raised when a vector's size differs from its collection's index.

    The collection index dimensionality is fixed by the first embedding
    written to it; vectors are never truncated or padded to fit.
    """

    def __init__(
        self,
        expected: int,
        actual: int,
        collection_id: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        self.collection_id = collection_id
        where = f" for collection '{collection_id}'" if collection_id else ""
        super().__init__(
            message=(
                f"Embedding dimension mismatch{where}: index expects {expected}, "
                f"provider returned {actual}"
            ),
            provider_name=provider_name,
        )


class VectorStoreError(KnowledgeBaseError):
    """Raised when the vector index cannot be read or written."""

    def __init__(
        self,
        message: str = "Vector store operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RetrievalError(KnowledgeBaseError):
    """Raised when a semantic search fails.

    ``results`` is always an empty list so callers that prefer graceful
    degradation can fall back to it instead of failing hard.
    """

    def __init__(
        self,
        message: str = "Search failed",
        provider_name: str | None = None,
    ) -> None:
        self.results: list[Any] = []
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Persistence / orchestration errors
# ---------------------------------------------------------------------------

class DocumentNotFoundError(KnowledgeBaseError):
    """Raised when a document does not exist (or was deleted mid-indexing)."""

    def __init__(
        self,
        document_id: str,
        provider_name: str | None = None,
    ) -> None:
        self.document_id = document_id
        super().__init__(
            message=f"Document not found: {document_id}",
            provider_name=provider_name,
        )


class NoteNotFoundError(KnowledgeBaseError):
    """Raised when a note does not exist."""

    def __init__(
        self,
        note_id: str,
        provider_name: str | None = None,
    ) -> None:
        self.note_id = note_id
        super().__init__(message=f"Note not found: {note_id}", provider_name=provider_name)


class IndexingError(KnowledgeBaseError):
    """Raised when the indexing state machine fails for another reason."""

    def __init__(
        self,
        message: str = "Indexing failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(KnowledgeBaseError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
