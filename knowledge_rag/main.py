"""Knowledge base FastAPI application entry point.

Wires providers and services together by constructor injection.  Settings
come from ``config/config.yaml`` overlaid by ``.env`` and environment
variables.  ``build_knowledge_service`` is also used by the CLI, so the
web server and the command line share exactly the same wiring.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI, WebSocket

import knowledge_rag
from knowledge_rag.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from knowledge_rag.api.routes import router as api_router
from knowledge_rag.api.websocket import websocket_progress
from knowledge_rag.config.loader import settings_from_config
from knowledge_rag.config.settings import Settings
from knowledge_rag.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_rag.models.knowledge import ChunkingOptions, SearchOptions
from knowledge_rag.pipeline.progress_tracker import ProgressTracker
from knowledge_rag.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from knowledge_rag.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from knowledge_rag.providers.knowledge.sqlite_knowledge_store import SQLiteKnowledgeStore
from knowledge_rag.providers.vector_store.chromadb_provider import ChromaDBProvider
from knowledge_rag.providers.web.web_fetch_provider import WebFetchProvider
from knowledge_rag.services.ingestion.chunker import TextChunker
from knowledge_rag.services.ingestion.embedding_client import EmbeddingClient
from knowledge_rag.services.ingestion.indexing_service import IndexingService
from knowledge_rag.services.knowledge_service import KnowledgeService
from knowledge_rag.services.retrieval_service import RetrievalService
from knowledge_rag.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Embedding provider selection
# ---------------------------------------------------------------------------


def build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider | None:
    """Select the first available embedding provider.

    Priority: OpenAI / OpenAI-compatible (if an API key is set), then
    Nomic via Ollama (if the server is reachable).  Returns ``None`` when
    neither is usable; indexing then fails with ``EmbeddingError``.
    """
    if app_settings.openai_api_key:
        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider

    provider = NomicEmbeddingProvider(settings=app_settings)
    if provider.is_available():
        return provider

    _logger.warning("no_embedding_provider_available")
    return None


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_components(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance.

    Returns a flat dict of named components; the API stores them on
    ``app.state``.  Pass *embedding_provider* to skip provider selection.
    """
    provider = embedding_provider or build_embedding_provider(app_settings)

    store = SQLiteKnowledgeStore(db_path=app_settings.knowledge_db_path)
    vector_store = ChromaDBProvider(persist_directory=app_settings.chromadb_persist_dir)

    embedding_client = EmbeddingClient(
        provider,
        batch_size=app_settings.embedding_batch_size,
        max_retries=app_settings.embedding_max_retries,
        retry_delay=app_settings.embedding_retry_delay,
        rate_limit_delay=app_settings.embedding_rate_limit_delay,
    )

    chunking_options = ChunkingOptions(
        chunk_size=app_settings.chunk_size,
        chunk_overlap=app_settings.chunk_overlap,
        min_chunk_size=app_settings.min_chunk_size,
    )
    indexing_service = IndexingService(
        store=store,
        vector_store=vector_store,
        embedding_client=embedding_client,
        chunker=TextChunker(chunking_options),
        chunking_options=chunking_options,
    )
    retrieval_service = RetrievalService(
        store=store,
        vector_store=vector_store,
        embedding_client=embedding_client,
        default_options=SearchOptions(
            top_k=app_settings.search_top_k,
            min_score=app_settings.search_min_score,
        ),
    )

    progress_tracker = ProgressTracker()
    knowledge_service = KnowledgeService(
        store=store,
        vector_store=vector_store,
        indexing_service=indexing_service,
        retrieval_service=retrieval_service,
        files_dir=Path(app_settings.knowledge_files_dir),
        web_fetcher=WebFetchProvider(timeout=app_settings.web_fetch_timeout),
        progress_tracker=progress_tracker,
    )

    return {
        "store": store,
        "vector_store": vector_store,
        "embedding_client": embedding_client,
        "indexing_service": indexing_service,
        "retrieval_service": retrieval_service,
        "progress_tracker": progress_tracker,
        "knowledge_service": knowledge_service,
    }


def build_knowledge_service(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
) -> KnowledgeService:
    """Return a fully wired (not yet initialised) :class:`KnowledgeService`."""
    return build_components(app_settings, embedding_provider)["knowledge_service"]


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    components: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Parameters
    ----------
    app_settings:
        Settings to wire from; loaded from config and environment if omitted.
    components:
        Pre-built components (as returned by :func:`build_components`);
        built during startup if omitted.
    """

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        """Initialise providers and services on startup, clean up on shutdown."""
        resolved_settings = app_settings or settings_from_config()
        configure_logging(
            log_level=resolved_settings.log_level,
            json_output=(resolved_settings.app_env == "production"),
        )
        built = components or build_components(resolved_settings)
        for key, value in built.items():
            setattr(application.state, key, value)

        service: KnowledgeService = built["knowledge_service"]
        await service.initialize()

        provider = built["embedding_client"].provider
        _logger.info(
            "app_startup",
            version=knowledge_rag.__version__,
            environment=resolved_settings.app_env,
            embedding_provider=provider.get_provider_name() if provider else None,
        )

        yield

        await service.close()
        _logger.info("app_shutdown")

    application = FastAPI(
        title="Knowledge Base API",
        version=knowledge_rag.__version__,
        description=(
            "Index files, web pages, notes and pasted text into per-collection "
            "vector indexes and run semantic search with source attribution."
        ),
        lifespan=_lifespan,
    )

    # Last added runs first.
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)

    @application.websocket("/ws/progress/{document_id}")
    async def ws_progress(websocket: WebSocket, document_id: str) -> None:
        await websocket_progress(websocket, document_id)

    return application


app = create_app()


def main() -> None:
    """Run the API server with uvicorn."""
    app_settings = settings_from_config()
    uvicorn.run(
        "knowledge_rag.main:app",
        host=app_settings.app_host,
        port=app_settings.app_port,
        reload=(app_settings.app_env == "development"),
    )


if __name__ == "__main__":
    main()
