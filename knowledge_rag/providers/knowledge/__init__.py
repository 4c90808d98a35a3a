"""Relational knowledge store implementations.

SQLite (via aiosqlite) holds documents, chunks, embedding bookkeeping and
notes at KNOWLEDGE_DB_PATH (default: data/knowledge.db).
"""

from knowledge_rag.providers.knowledge.sqlite_knowledge_store import SQLiteKnowledgeStore

__all__ = ["SQLiteKnowledgeStore"]
