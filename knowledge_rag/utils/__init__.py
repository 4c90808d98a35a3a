"""Utility modules for the knowledge base.

- **errors** -- exception hierarchy rooted at KnowledgeBaseError; each
  pipeline stage raises its own subclass so callers can react precisely.
- **logging** -- structlog setup with console output in development and
  JSON in production.
"""

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
from knowledge_rag.utils.logging import configure_logging, get_logger

__all__ = [
    "ConfigurationError",
    "DimensionMismatchError",
    "DocumentNotFoundError",
    "EmbeddingError",
    "IndexingError",
    "KnowledgeBaseError",
    "LoaderError",
    "NoteNotFoundError",
    "RateLimitError",
    "RetrievalError",
    "UnsupportedInputError",
    "VectorStoreError",
    "configure_logging",
    "get_logger",
]
