"""Embedding provider implementations.

Embeddings turn text into vectors; the vector store indexes them per
collection and the retrieval service compares query vectors against them.

Two implementations of IEmbeddingProvider, in selection order:
    1. OpenAIEmbeddingProvider -- text-embedding-3-small (1536 dims) or any
       OpenAI-compatible endpoint.  Requires OPENAI_API_KEY.
    2. NomicEmbeddingProvider  -- nomic-embed-text via Ollama (768 dims).
       Free and local, requires a running Ollama server.
"""

from knowledge_rag.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from knowledge_rag.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["NomicEmbeddingProvider", "OpenAIEmbeddingProvider"]
