"""Knowledge base facade: the operations the API and CLI call.

:class:`KnowledgeService` turns each add/reindex request into one tracked
``asyncio.Task`` per document and delegates the heavy lifting:

- loading          -> LoaderRegistry / WebPageLoader
- fetching         -> WebFetchProvider
- indexing         -> IndexingService (state machine + rollback)
- search           -> RetrievalService
- persistence      -> IKnowledgeStore / IVectorStoreProvider

Deleting a document cancels and awaits its active indexing task first, so
no in-flight embedding call can write rows after the delete.  Uploaded
files are copied to ``<files_dir>/<document_id><ext>``; the copy is removed
when indexing fails and when the document is deleted.
"""

from __future__ import annotations

import asyncio
import inspect
import shutil
from collections.abc import Awaitable, Callable, Coroutine
from pathlib import Path
from typing import Any, TypeVar

import structlog

from knowledge_rag.interfaces.knowledge_store import IKnowledgeStore
from knowledge_rag.interfaces.vector_store_provider import IVectorStoreProvider
from knowledge_rag.models.knowledge import (
    Chunk,
    Document,
    DocumentStatus,
    IndexingResult,
    KnowledgeStats,
    Note,
    SearchOptions,
    SearchResult,
    SourceKind,
    new_id,
    utc_now,
)
from knowledge_rag.models.loading import LoadResult, StructureKind
from knowledge_rag.pipeline.progress_tracker import TERMINAL_STAGES, ProgressTracker
from knowledge_rag.providers.web.web_fetch_provider import WebFetchProvider
from knowledge_rag.services.ingestion.indexing_service import IndexingService, ProgressEmitter
from knowledge_rag.services.ingestion.loaders.registry import LoaderRegistry, default_registry
from knowledge_rag.services.ingestion.loaders.web_loader import WebPageLoader
from knowledge_rag.services.retrieval_service import RetrievalService
from knowledge_rag.utils.errors import (
    DocumentNotFoundError,
    IndexingError,
    NoteNotFoundError,
    UnsupportedInputError,
)

logger = structlog.get_logger(logger_name=__name__)

ProgressCallback = Callable[[str, float], Awaitable[None] | None]

_T = TypeVar("_T")


class KnowledgeService:
    """Entry point for adding, inspecting, searching and deleting knowledge.

    Parameters
    ----------
    store:
        Relational store (documents, chunks, embedding rows, notes).
    vector_store:
        Per-collection vector index.
    indexing_service:
        Runs the indexing state machine.
    retrieval_service:
        Runs semantic search.
    files_dir:
        Directory that receives managed copies of uploaded files.
    loader_registry:
        Format adapters for files; defaults to every built-in loader.
    web_fetcher:
        HTTP fetcher for :meth:`add_url`.
    web_loader:
        HTML extractor for fetched pages.
    progress_tracker:
        Optional tracker that receives every progress event, keyed by
        document id (the WebSocket endpoint listens to it).
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        vector_store: IVectorStoreProvider,
        indexing_service: IndexingService,
        retrieval_service: RetrievalService,
        files_dir: str | Path,
        loader_registry: LoaderRegistry | None = None,
        web_fetcher: WebFetchProvider | None = None,
        web_loader: WebPageLoader | None = None,
        progress_tracker: ProgressTracker | None = None,
    ) -> None:
        self._store = store
        self._vector_store = vector_store
        self._indexing = indexing_service
        self._retrieval = retrieval_service
        self._files_dir = Path(files_dir)
        self._loaders = loader_registry or default_registry()
        self._web_fetcher = web_fetcher
        self._web_loader = web_loader or WebPageLoader()
        self._tracker = progress_tracker
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    @property
    def progress_tracker(self) -> ProgressTracker | None:
        return self._tracker

    @property
    def loader_registry(self) -> LoaderRegistry:
        return self._loaders

    @property
    def search_defaults(self) -> SearchOptions:
        return self._retrieval.default_options

    @property
    def url_ingestion_enabled(self) -> bool:
        return self._web_fetcher is not None

    async def initialize(self) -> None:
        """Create the database schema and the managed files directory."""
        await self._store.initialize()
        self._files_dir.mkdir(parents=True, exist_ok=True)

    async def close(self) -> None:
        """Cancel in-flight indexing tasks and release HTTP resources."""
        pending = [t for t in self._tasks.values() if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        if self._web_fetcher is not None:
            await self._web_fetcher.close()

    def is_indexing(self, document_id: str) -> bool:
        task = self._tasks.get(document_id)
        return task is not None and not task.done()

    # ------------------------------------------------------------------
    # Adding documents
    # ------------------------------------------------------------------

    async def add_text(
        self,
        collection_id: str,
        title: str,
        text: str,
        metadata: dict[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
        document_id: str | None = None,
    ) -> IndexingResult:
        """Index pasted text as a new document.

        Raises
        ------
        UnsupportedInputError
            If *text* is empty or whitespace-only (no row is created).
        """
        if not text or not text.strip():
            raise UnsupportedInputError(message="No content to index")
        document_id = document_id or new_id()
        emitter = self._emitter(document_id, on_progress)

        async def run() -> IndexingResult:
            document = await self._indexing.create_document(
                document_id=document_id,
                collection_id=collection_id,
                title=title,
                text=text,
                source_kind=SourceKind.TEXT,
                mime_type="text/plain",
                file_size=len(text.encode("utf-8")),
                metadata=metadata,
                emitter=emitter,
            )
            return await self._indexing.index_document(document, emitter)

        return await self._run_tracked(document_id, run(), emitter)

    async def add_file(
        self,
        collection_id: str,
        path: str | Path,
        title: str | None = None,
        on_progress: ProgressCallback | None = None,
        document_id: str | None = None,
        source_uri: str | None = None,
    ) -> IndexingResult:
        """Copy a file into managed storage, parse it, and index it.

        Raises
        ------
        UnsupportedInputError
            If the file does not exist or no loader handles its type.
        LoaderError
            If the matching loader cannot parse the file.
        """
        source = Path(path).expanduser()
        if not source.is_file():
            raise UnsupportedInputError(message=f"File not found: {source}")
        # Resolve up front so unsupported types fail before anything is copied.
        self._loaders.resolve(source.name)

        document_id = document_id or new_id()
        emitter = self._emitter(document_id, on_progress)

        async def run() -> IndexingResult:
            await emitter.emit("parsing_file", 0.0)
            self._files_dir.mkdir(parents=True, exist_ok=True)
            local_copy = self._files_dir / f"{document_id}{source.suffix.lower()}"
            await asyncio.to_thread(shutil.copy2, source, local_copy)

            document: Document | None = None
            try:
                # Parse the managed copy under the original name so filename titles survive.
                data = await asyncio.to_thread(local_copy.read_bytes)
                loaded = self._loaders.load_bytes(data, filename=source.name)
                document = await self._indexing.create_document(
                    document_id=document_id,
                    collection_id=collection_id,
                    title=title or loaded.title or source.stem,
                    text=loaded.text,
                    source_kind=SourceKind.FILE,
                    source_uri=source_uri or str(source),
                    mime_type=loaded.mime_type,
                    file_size=source.stat().st_size,
                    local_path=str(local_copy),
                    metadata={
                        **_structure_metadata(loaded),
                        "original_filename": source.name,
                    },
                    emitter=emitter,
                )
                return await self._indexing.index_document(document, emitter)
            except (Exception, asyncio.CancelledError):
                self._remove_local_copy(local_copy)
                if document is not None:
                    await self._forget_local_path(document.id)
                raise

        return await self._run_tracked(document_id, run(), emitter)

    async def add_url(
        self,
        collection_id: str,
        url: str,
        title: str | None = None,
        on_progress: ProgressCallback | None = None,
        document_id: str | None = None,
    ) -> IndexingResult:
        """Fetch a web page, extract its main content, and index it.

        Raises
        ------
        UnsupportedInputError
            For non-http(s) URLs.
        LoaderError
            When fetching fails or the page has no readable content.
        """
        if self._web_fetcher is None:
            raise UnsupportedInputError(message="URL ingestion is not configured")
        document_id = document_id or new_id()
        emitter = self._emitter(document_id, on_progress)
        fetcher = self._web_fetcher

        async def run() -> IndexingResult:
            await emitter.emit("fetching_url", 0.0)
            page = await fetcher.fetch(url)
            loaded = self._web_loader.load_html(page.html, url=page.final_url)
            document = await self._indexing.create_document(
                document_id=document_id,
                collection_id=collection_id,
                title=title or loaded.title or page.final_url,
                text=loaded.text,
                source_kind=SourceKind.URL,
                source_uri=url,
                mime_type=page.content_type,
                file_size=len(page.html.encode("utf-8")),
                metadata=_structure_metadata(loaded),
                emitter=emitter,
            )
            return await self._indexing.index_document(document, emitter)

        return await self._run_tracked(document_id, run(), emitter)

    async def add_note(
        self,
        collection_id: str,
        note_id: str,
        on_progress: ProgressCallback | None = None,
        document_id: str | None = None,
    ) -> IndexingResult:
        """Index an existing note's content as a document.

        Raises
        ------
        NoteNotFoundError
            If the note does not exist in *collection_id*.
        UnsupportedInputError
            If the note is empty or whitespace-only.
        """
        note = await self._store.get_note(note_id)
        if note is None or note.collection_id != collection_id:
            raise NoteNotFoundError(note_id)
        if not note.content.strip():
            raise UnsupportedInputError(message="Note is empty")

        document_id = document_id or new_id()
        emitter = self._emitter(document_id, on_progress)

        async def run() -> IndexingResult:
            document = await self._indexing.create_document(
                document_id=document_id,
                collection_id=collection_id,
                title=note.title or "Untitled note",
                text=note.content,
                source_kind=SourceKind.NOTE,
                source_note_id=note.id,
                mime_type="text/markdown",
                file_size=len(note.content.encode("utf-8")),
                emitter=emitter,
            )
            return await self._indexing.index_document(document, emitter)

        return await self._run_tracked(document_id, run(), emitter)

    async def create_note(self, collection_id: str, title: str, content: str) -> Note:
        now = utc_now()
        note = Note(
            collection_id=collection_id,
            title=title,
            content=content,
            created_at=now,
            updated_at=now,
        )
        await self._store.create_note(note)
        logger.info("note_created", note_id=note.id, collection_id=collection_id)
        return note

    async def get_note(self, note_id: str) -> Note:
        note = await self._store.get_note(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    # ------------------------------------------------------------------
    # Inspecting / maintaining documents
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str) -> Document:
        document = await self._store.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    async def list_documents(
        self,
        collection_id: str,
        status: DocumentStatus | None = None,
    ) -> list[Document]:
        return await self._store.list_documents(collection_id, status=status)

    async def get_document_chunks(self, document_id: str) -> list[Chunk]:
        await self.get_document(document_id)
        return await self._store.get_chunks(document_id)

    async def delete_document(self, document_id: str) -> None:
        """Delete a document with its chunks, embedding rows, vectors and file copy.

        An active indexing task for the document is cancelled and awaited
        first.  Deleting a document whose indexing was cancelled before its
        row was written is not an error.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist and was not being indexed.
        """
        task = self._tasks.get(document_id)
        was_indexing = task is not None and not task.done()
        if task is not None and was_indexing:
            logger.info("canceling_active_indexing", document_id=document_id)
            task.cancel()
            await asyncio.wait({task})

        document = await self._store.get_document(document_id)
        if document is None:
            if was_indexing:
                self._clear_progress(document_id)
                return
            raise DocumentNotFoundError(document_id)

        chunk_ids = await self._store.delete_document(document_id)
        await self._vector_store.delete_by_chunk_ids(document.collection_id, chunk_ids)
        await self._vector_store.delete_by_document(document.collection_id, document_id)
        if document.local_path:
            self._remove_local_copy(Path(document.local_path))
        self._clear_progress(document_id)
        logger.info(
            "document_deleted",
            document_id=document_id,
            collection_id=document.collection_id,
            chunks=len(chunk_ids),
        )

    async def reindex_document(
        self,
        document_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> IndexingResult:
        """Rebuild a document's chunks and vectors from its stored text."""
        if self.is_indexing(document_id):
            raise IndexingError(message=f"Document {document_id} is already being indexed")
        await self.get_document(document_id)
        emitter = self._emitter(document_id, on_progress)
        return await self._run_tracked(
            document_id, self._indexing.reindex_document(document_id, emitter), emitter
        )

    # ------------------------------------------------------------------
    # Search / stats
    # ------------------------------------------------------------------

    async def search(
        self,
        collection_id: str,
        query: str,
        options: SearchOptions | None = None,
    ) -> list[SearchResult]:
        return await self._retrieval.search(collection_id, query, options)

    async def get_stats(self, collection_id: str) -> KnowledgeStats:
        stats = await self._store.get_stats(collection_id)
        vector_count = await self._vector_store.count(collection_id)
        return stats.model_copy(update={"vector_count": vector_count})

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_tracked(
        self,
        document_id: str,
        coro: Coroutine[Any, Any, _T],
        emitter: ProgressEmitter,
    ) -> _T:
        """Run *coro* as the document's active task and wait for it.

        A task cancelled by :meth:`delete_document` surfaces to the caller
        as :class:`DocumentNotFoundError`; cancelling the caller itself
        still propagates as ``CancelledError``.  Failures that happen before
        a document row exists (fetching, parsing) still end the progress
        stream with a ``failed`` stage.
        """
        task = asyncio.create_task(coro, name=f"index-{document_id}")
        self._tasks[document_id] = task
        try:
            return await task
        except Exception:
            if emitter.stage not in TERMINAL_STAGES:
                await emitter.emit("failed", emitter.percent)
            raise
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and not (current is not None and current.cancelling()):
                raise DocumentNotFoundError(document_id) from None
            raise
        finally:
            if self._tasks.get(document_id) is task:
                del self._tasks[document_id]

    def _emitter(self, document_id: str, on_progress: ProgressCallback | None) -> ProgressEmitter:
        tracker = self._tracker

        async def forward(stage: str, percent: float) -> None:
            if tracker is not None:
                await tracker.update(document_id, stage, percent)
            if on_progress is not None:
                outcome = on_progress(stage, percent)
                if inspect.isawaitable(outcome):
                    await outcome

        return ProgressEmitter(forward, document_id)

    def _clear_progress(self, document_id: str) -> None:
        if self._tracker is not None:
            self._tracker.clear(document_id)

    @staticmethod
    def _remove_local_copy(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
            logger.debug("local_copy_removed", path=str(path))
        except OSError as exc:
            logger.warning("local_copy_remove_failed", path=str(path), error=str(exc))

    async def _forget_local_path(self, document_id: str) -> None:
        try:
            await self._store.update_document_fields(document_id, local_path=None)
        except Exception as exc:
            logger.warning("local_path_reset_failed", document_id=document_id, error=str(exc))


def _structure_metadata(loaded: LoadResult) -> dict[str, Any]:
    """Flatten a load result's structure into document metadata.

    Pages become ``[page_number, start, end]`` triples and sections become
    ``[level, title, start, end]`` rows, which the indexing service uses to
    tag chunks with their page or section.
    """
    metadata: dict[str, Any] = dict(loaded.metadata)
    structure = loaded.structure
    metadata["structure"] = structure.kind.value
    if structure.kind is StructureKind.PAGED:
        metadata["pages"] = [[p.page_number, p.start_offset, p.end_offset] for p in structure.pages]
    elif structure.kind is StructureKind.SECTIONED:
        rows: list[list[Any]] = []
        stack = list(reversed(structure.sections))
        while stack:
            section = stack.pop()
            rows.append([section.level, section.title, section.start_offset, section.end_offset])
            stack.extend(reversed(section.children))
        metadata["sections"] = rows
    return metadata
