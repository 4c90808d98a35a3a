"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`
with one ChromaDB collection per knowledge collection.  Fully local, no
external service required.

Dimensionality is recorded in each ChromaDB collection's metadata when the
collection is created, which happens on the first write for that knowledge
collection.  Creation is serialised per collection by an ``asyncio.Lock``
so two documents racing to write the first vectors cannot fix two
different sizes; the loser gets a :class:`DimensionMismatchError`.

Scores are ``1 - cosine_distance / 2``: 1.0 for identical direction, 0.5 for
orthogonal vectors, 0.0 for opposite ones.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import re
from typing import Any

# Must be set before chromadb is imported for some chromadb versions.
os.environ.setdefault("ANONYMIZED_TELEMETRY", "False")

import chromadb
import structlog

from knowledge_rag.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge_rag.models.knowledge import VectorMatch, VectorRecord
from knowledge_rag.utils.errors import DimensionMismatchError, VectorStoreError

logger = structlog.get_logger(logger_name=__name__)

_UPSERT_BATCH_SIZE = 500
_DELETE_BATCH_SIZE = 500
_COLLECTION_PREFIX = "kb"
_SLUG_RE = re.compile(r"[^a-zA-Z0-9_-]+")


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Embedding function that is never called.

    Every vector is computed by an :class:`IEmbeddingProvider` and passed
    explicitly; this stops ChromaDB from loading its default ONNX model.
    """

    def __init__(self) -> None:
        pass

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError("Vectors are pre-computed; ChromaDB must not embed text.")

    @staticmethod
    def name() -> str:
        return "noop_precomputed"

    def get_config(self) -> dict[str, Any]:
        return {}

    @staticmethod
    def build_from_config(config: dict[str, Any]) -> _NoopEmbeddingFunction:
        return _NoopEmbeddingFunction()


class ChromaDBProvider(IVectorStoreProvider):
    """Per-collection vector indexes backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        Directory for ChromaDB's on-disk data.
    client:
        Pre-built ChromaDB client (tests may pass an ephemeral one).
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collections: dict[str, Any] = {}
        self._dimensions: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Dimensionality
    # ------------------------------------------------------------------

    async def ensure_dimensions(self, collection_id: str, dimensions: int) -> int:
        if dimensions <= 0:
            raise VectorStoreError(
                message=f"Invalid vector dimensionality: {dimensions}",
                provider_name=self.get_provider_name(),
            )

        async with self._lock_for(collection_id):
            current = self._load_dimensions(collection_id)
            if current is None:
                self._create_collection(collection_id, dimensions)
                logger.info(
                    "vector_index_created",
                    collection_id=collection_id,
                    dimensions=dimensions,
                )
                return dimensions

        if current != dimensions:
            logger.error(
                "embedding_dimension_mismatch",
                collection_id=collection_id,
                stored_dim=current,
                actual_dim=dimensions,
            )
            raise DimensionMismatchError(
                expected=current,
                actual=dimensions,
                collection_id=collection_id,
                provider_name=self.get_provider_name(),
            )
        return current

    async def get_dimensions(self, collection_id: str) -> int | None:
        try:
            return self._load_dimensions(collection_id)
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB dimension lookup failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert(self, collection_id: str, records: list[VectorRecord]) -> int:
        """Write *records* to the collection's index in bounded batches."""
        if not records:
            return 0

        dimensions = len(records[0].vector)
        for record in records:
            if len(record.vector) != dimensions:
                raise DimensionMismatchError(
                    expected=dimensions,
                    actual=len(record.vector),
                    collection_id=collection_id,
                    provider_name=self.get_provider_name(),
                )
        await self.ensure_dimensions(collection_id, dimensions)

        try:
            collection = self._collections[collection_id]
            for start in range(0, len(records), _UPSERT_BATCH_SIZE):
                batch = records[start : start + _UPSERT_BATCH_SIZE]
                collection.upsert(
                    ids=[r.id for r in batch],
                    embeddings=[r.vector for r in batch],
                    metadatas=[self._record_metadata(r) for r in batch],
                )
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "chromadb_upsert",
            collection_id=collection_id,
            count=len(records),
            batches=(len(records) + _UPSERT_BATCH_SIZE - 1) // _UPSERT_BATCH_SIZE,
        )
        return len(records)

    async def query(
        self,
        collection_id: str,
        vector: list[float],
        top_k: int = 5,
        min_score: float = 0.0,
        document_ids: list[str] | None = None,
    ) -> list[VectorMatch]:
        """Rank the collection's vectors against *vector*.

        ChromaDB is asked for at most ``top_k`` neighbours (capped by the
        collection size); ``min_score`` is applied to the ranked list.
        """
        dimensions = await self.get_dimensions(collection_id)
        if dimensions is None:
            return []
        if len(vector) != dimensions:
            raise DimensionMismatchError(
                expected=dimensions,
                actual=len(vector),
                collection_id=collection_id,
                provider_name=self.get_provider_name(),
            )

        try:
            collection = self._collections[collection_id]
            total = collection.count()
            if total == 0:
                return []

            kwargs: dict[str, Any] = {
                "query_embeddings": [vector],
                "n_results": min(top_k, total),
                "include": ["metadatas", "distances"],
            }
            if document_ids:
                kwargs["where"] = {"document_id": {"$in": list(document_ids)}}

            results = collection.query(**kwargs)
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        ids = results["ids"][0] if results.get("ids") else []
        metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [2.0] * len(ids)

        matches: list[VectorMatch] = []
        for vector_id, meta, distance in zip(ids, metadatas, distances, strict=True):
            meta = meta or {}
            score = max(0.0, min(1.0, 1.0 - float(distance) / 2.0))
            matches.append(
                VectorMatch(
                    id=vector_id,
                    chunk_id=str(meta.get("chunk_id", "")),
                    document_id=meta.get("document_id"),
                    score=score,
                )
            )

        matches.sort(key=lambda m: m.score, reverse=True)
        ranked = [m for m in matches if m.score >= min_score][:top_k]

        logger.debug(
            "chromadb_query",
            collection_id=collection_id,
            raw_results=len(matches),
            results_count=len(ranked),
            top_score=ranked[0].score if ranked else 0.0,
        )
        return ranked

    async def delete_by_chunk_ids(self, collection_id: str, chunk_ids: list[str]) -> int:
        if not chunk_ids:
            return 0
        deleted = 0
        for start in range(0, len(chunk_ids), _DELETE_BATCH_SIZE):
            batch = chunk_ids[start : start + _DELETE_BATCH_SIZE]
            deleted += self._delete_where(collection_id, {"chunk_id": {"$in": batch}})
        logger.info("chromadb_delete_by_chunk_ids", collection_id=collection_id, deleted=deleted)
        return deleted

    async def delete_by_document(self, collection_id: str, document_id: str) -> int:
        deleted = self._delete_where(collection_id, {"document_id": document_id})
        logger.info(
            "chromadb_delete_by_document",
            collection_id=collection_id,
            document_id=document_id,
            deleted=deleted,
        )
        return deleted

    async def delete_collection(self, collection_id: str) -> None:
        name = self.collection_name(collection_id)
        async with self._lock_for(collection_id):
            try:
                if name in self._existing_names():
                    self._client.delete_collection(name=name)
            except Exception as exc:
                raise VectorStoreError(
                    message=f"ChromaDB delete_collection failed: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            self._collections.pop(collection_id, None)
            self._dimensions.pop(collection_id, None)
        logger.info("chromadb_collection_deleted", collection_id=collection_id)

    async def count(self, collection_id: str) -> int:
        try:
            collection = self._get_collection(collection_id)
            return collection.count() if collection is not None else 0
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB count failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True`` if the ChromaDB client answers a heartbeat."""
        try:
            self._client.heartbeat()
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def collection_name(collection_id: str) -> str:
        """Map a knowledge collection id to a valid, collision-free ChromaDB name."""
        slug = _SLUG_RE.sub("_", collection_id).strip("_-")[:40]
        digest = hashlib.md5(collection_id.encode("utf-8")).hexdigest()[:10]
        return f"{_COLLECTION_PREFIX}_{slug}_{digest}" if slug else f"{_COLLECTION_PREFIX}_{digest}"

    def _lock_for(self, collection_id: str) -> asyncio.Lock:
        lock = self._locks.get(collection_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[collection_id] = lock
        return lock

    def _existing_names(self) -> set[str]:
        # list_collections() returns names in newer chromadb, objects in older.
        return {
            c if isinstance(c, str) else c.name for c in self._client.list_collections()
        }

    def _get_collection(self, collection_id: str) -> Any | None:
        cached = self._collections.get(collection_id)
        if cached is not None:
            return cached

        name = self.collection_name(collection_id)
        if name not in self._existing_names():
            return None
        try:
            collection = self._client.get_collection(
                name=name, embedding_function=_NoopEmbeddingFunction()
            )
        except ValueError:
            # Collection persisted with a different embedding function config.
            collection = self._client.get_collection(name=name)
        self._collections[collection_id] = collection
        return collection

    def _load_dimensions(self, collection_id: str) -> int | None:
        if collection_id in self._dimensions:
            return self._dimensions[collection_id]

        collection = self._get_collection(collection_id)
        if collection is None:
            return None

        stored = (collection.metadata or {}).get("dimensions")
        if stored is None and collection.count() > 0:
            sample = collection.peek(limit=1)
            embeddings = sample.get("embeddings") if sample else None
            if embeddings is not None and len(embeddings) > 0:
                stored = len(embeddings[0])
        if stored is None:
            return None

        self._dimensions[collection_id] = int(stored)
        return int(stored)

    def _create_collection(self, collection_id: str, dimensions: int) -> None:
        metadata = {
            "hnsw:space": "cosine",
            "dimensions": dimensions,
            "collection_id": collection_id,
        }
        name = self.collection_name(collection_id)
        try:
            collection = self._client.get_or_create_collection(
                name=name,
                metadata=metadata,
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            collection = self._client.get_or_create_collection(name=name, metadata=metadata)
        self._collections[collection_id] = collection
        self._dimensions[collection_id] = dimensions

    def _delete_where(self, collection_id: str, where: dict[str, Any]) -> int:
        try:
            collection = self._get_collection(collection_id)
            if collection is None:
                return 0
            existing = collection.get(where=where, include=[])
            count = len(existing["ids"]) if existing["ids"] else 0
            if count:
                collection.delete(ids=existing["ids"])
            return count
        except Exception as exc:
            raise VectorStoreError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    @staticmethod
    def _record_metadata(record: VectorRecord) -> dict[str, str | int | float | bool]:
        """ChromaDB metadata values must be str, int, float, or bool."""
        meta: dict[str, str | int | float | bool] = {
            k: v for k, v in record.metadata.items() if isinstance(v, (str, int, float, bool))
        }
        meta["chunk_id"] = record.chunk_id
        meta["document_id"] = record.document_id
        return meta
