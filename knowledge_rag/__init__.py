"""knowledge_rag -- document indexing and semantic retrieval for RAG.

Documents (files, web pages, pasted text, notes) are loaded, chunked,
embedded and stored per collection; :class:`~knowledge_rag.services.knowledge_service.KnowledgeService`
answers natural-language queries with ranked, source-attributed passages.
"""

__version__ = "0.1.0"
