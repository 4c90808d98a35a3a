"""Document indexing pipeline for the knowledge base.

Pipeline stages for one document:

1. **Load** (loaders/) -- format adapters turn bytes into text plus a
   flat, paged or sectioned structure.
2. **Chunk** (chunker.py / TextChunker) -- overlapping, boundary-aligned
   windows with exact character offsets.
3. **Embed** (embedding_client.py / EmbeddingClient) -- batched provider
   calls with retry, backoff and rate limiting.
4. **Store** (indexing_service.py / IndexingService) -- chunk and
   embedding rows in SQLite, vectors in the collection's ChromaDB index,
   with rollback when any step fails.
"""

from knowledge_rag.services.ingestion.chunker import TextChunker, estimate_tokens, normalize_text
from knowledge_rag.services.ingestion.embedding_client import EmbeddingClient
from knowledge_rag.services.ingestion.indexing_service import (
    IndexingService,
    IndexingStep,
    ProgressEmitter,
)

__all__ = [
    "EmbeddingClient",
    "IndexingService",
    "IndexingStep",
    "ProgressEmitter",
    "TextChunker",
    "estimate_tokens",
    "normalize_text",
]
