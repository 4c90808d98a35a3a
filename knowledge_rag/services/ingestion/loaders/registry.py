"""Loader registry: picks a format adapter by file extension or media type.

Adding a format means registering another :class:`IDocumentLoader`; the
indexing code never branches on file types itself.
"""

from __future__ import annotations

import mimetypes
from collections.abc import Iterable
from pathlib import Path

import structlog

from knowledge_rag.interfaces.document_loader import IDocumentLoader
from knowledge_rag.models.loading import LoadResult
from knowledge_rag.services.ingestion.loaders.docx_loader import DocxLoader
from knowledge_rag.services.ingestion.loaders.markdown_loader import MarkdownLoader
from knowledge_rag.services.ingestion.loaders.pdf_loader import PDFLoader
from knowledge_rag.services.ingestion.loaders.pptx_loader import PptxLoader
from knowledge_rag.services.ingestion.loaders.text_loader import TextLoader
from knowledge_rag.services.ingestion.loaders.web_loader import WebPageLoader
from knowledge_rag.utils.errors import LoaderError, UnsupportedInputError

logger = structlog.get_logger(logger_name=__name__)


def _extension_key(value: str) -> str:
    return value.strip().lower().lstrip(".")


def _mime_key(value: str) -> str:
    return value.split(";", 1)[0].strip().lower()


class LoaderRegistry:
    """Maps extensions and media types to loaders.

    Later registrations win for keys claimed by more than one loader.
    """

    def __init__(self, loaders: Iterable[IDocumentLoader] | None = None) -> None:
        self._by_extension: dict[str, IDocumentLoader] = {}
        self._by_mime: dict[str, IDocumentLoader] = {}
        for loader in loaders or ():
            self.register(loader)

    def register(self, loader: IDocumentLoader) -> None:
        for ext in loader.supported_extensions():
            self._by_extension[_extension_key(ext)] = loader
        for mime in loader.supported_mime_types():
            self._by_mime[_mime_key(mime)] = loader
        logger.debug("loader_registered", loader=loader.get_loader_name())

    def supported_extensions(self) -> list[str]:
        return sorted(self._by_extension)

    def supported_mime_types(self) -> list[str]:
        return sorted(self._by_mime)

    def find_loader(self, extension_or_mime: str) -> IDocumentLoader | None:
        """Return the loader for an extension (``".pdf"``/``"pdf"``) or media type."""
        if not extension_or_mime:
            return None
        if "/" in extension_or_mime:
            return self._by_mime.get(_mime_key(extension_or_mime))
        return self._by_extension.get(_extension_key(extension_or_mime))

    def get_loader(self, extension_or_mime: str) -> IDocumentLoader:
        """Like :meth:`find_loader` but raises for unknown types.

        Raises
        ------
        UnsupportedInputError
            If no loader handles *extension_or_mime*.
        """
        loader = self.find_loader(extension_or_mime)
        if loader is None:
            raise UnsupportedInputError(
                message=f"Unsupported file type: {extension_or_mime or '(none)'}",
                provider_name="loader_registry",
            )
        return loader

    def resolve(self, filename: str | None = None, mime_type: str | None = None) -> IDocumentLoader:
        """Pick a loader by extension, then explicit media type, then a guessed one."""
        candidates: list[str] = []
        if filename:
            suffix = Path(filename).suffix
            if suffix:
                candidates.append(suffix)
        if mime_type:
            candidates.append(mime_type)
        if filename:
            guessed, _ = mimetypes.guess_type(filename)
            if guessed:
                candidates.append(guessed)

        for candidate in candidates:
            loader = self.find_loader(candidate)
            if loader is not None:
                return loader

        described = Path(filename).suffix if filename else None
        raise UnsupportedInputError(
            message=f"Unsupported file type: {described or mime_type or filename or '(unknown)'}",
            provider_name="loader_registry",
        )

    def load_bytes(
        self,
        data: bytes,
        filename: str | None = None,
        mime_type: str | None = None,
    ) -> LoadResult:
        loader = self.resolve(filename, mime_type)
        return self._run(loader, lambda: loader.load_from_bytes(data, filename=filename))

    def load_file(self, path: str | Path, mime_type: str | None = None) -> LoadResult:
        """Load *path* with the matching adapter.

        Raises
        ------
        UnsupportedInputError
            For file types no loader handles.
        LoaderError
            For anything that goes wrong inside the adapter.
        """
        file_path = Path(path)
        loader = self.resolve(file_path.name, mime_type)
        return self._run(loader, lambda: loader.load_from_path(file_path))

    @staticmethod
    def _run(loader: IDocumentLoader, call) -> LoadResult:
        try:
            return call()
        except (LoaderError, UnsupportedInputError):
            raise
        except Exception as exc:
            logger.warning(
                "loader_failed",
                loader=loader.get_loader_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise LoaderError(
                message=f"Failed to parse document: {exc}",
                provider_name=loader.get_loader_name(),
            ) from exc


def default_registry() -> LoaderRegistry:
    """Return a registry with every built-in loader."""
    return LoaderRegistry(
        [
            PDFLoader(),
            DocxLoader(),
            PptxLoader(),
            MarkdownLoader(),
            TextLoader(),
            WebPageLoader(),
        ]
    )
