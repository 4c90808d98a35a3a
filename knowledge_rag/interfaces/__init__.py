"""Public interface definitions for every external collaborator.

Business logic talks to storage, embedding backends and file formats only
through the abstract base classes in this package.  Concrete adapters are
constructed in ``knowledge_rag/main.py`` and injected, so tests can pass
fakes and a backend can be swapped by changing one constructor call.

    Interface              ->  Concrete implementations
    ---------------------------------------------------------------
    IEmbeddingProvider     ->  OpenAIEmbeddingProvider, NomicEmbeddingProvider
    IVectorStoreProvider   ->  ChromaDBProvider
    IKnowledgeStore        ->  SQLiteKnowledgeStore
    IDocumentLoader        ->  PDFLoader, DocxLoader, PptxLoader,
                               MarkdownLoader, TextLoader, WebPageLoader
"""

from knowledge_rag.interfaces.document_loader import IDocumentLoader
from knowledge_rag.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_rag.interfaces.knowledge_store import IKnowledgeStore
from knowledge_rag.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "IDocumentLoader",
    "IEmbeddingProvider",
    "IKnowledgeStore",
    "IVectorStoreProvider",
]
