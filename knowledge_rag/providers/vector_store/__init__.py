"""Vector store provider implementations.

ChromaDB is the sole vector store implementation.  Each knowledge
collection gets its own persistent Chroma collection with cosine distance.
Data persists at CHROMADB_PERSIST_DIR (default: ./data/chromadb).

To swap ChromaDB for another vector database, implement
IVectorStoreProvider and wire it in main.py.
"""

from knowledge_rag.providers.vector_store.chromadb_provider import ChromaDBProvider

__all__ = ["ChromaDBProvider"]
