"""Abstract base class for format-specific document loaders.

Each loader turns the raw bytes of one family of formats (PDF, Word,
presentation, Markdown, plain text, HTML) into a
:class:`~knowledge_rag.models.loading.LoadResult`.  Loaders are pure: they
read their input and nothing else.  The
:class:`~knowledge_rag.services.ingestion.loaders.registry.LoaderRegistry`
picks one by file extension or media type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from knowledge_rag.models.loading import LoadResult
from knowledge_rag.utils.errors import LoaderError


# Concrete implementations (knowledge_rag/services/ingestion/loaders/):
#   PDFLoader, DocxLoader, PptxLoader, MarkdownLoader, TextLoader, WebPageLoader
class IDocumentLoader(ABC):
    """Contract for document loaders."""

    @abstractmethod
    def get_loader_name(self) -> str:
        """Return the loader identifier used in error messages (``"pdf_loader"``)."""

    @abstractmethod
    def supported_extensions(self) -> frozenset[str]:
        """Return lower-case file extensions handled, without the dot."""

    @abstractmethod
    def supported_mime_types(self) -> frozenset[str]:
        """Return media types handled, without parameters."""

    @abstractmethod
    def load_from_bytes(self, data: bytes, filename: str | None = None) -> LoadResult:
        """Extract text and structure from *data*.

        Parameters
        ----------
        data:
            Raw file content.
        filename:
            Original file name, used for the fallback title.

        Raises
        ------
        knowledge_rag.utils.errors.LoaderError
            If the bytes cannot be parsed (corrupt, encrypted, empty).
        """

    def can_load(self, extension_or_mime: str) -> bool:
        """Return ``True`` if this loader handles the extension or media type."""
        key = extension_or_mime.strip().lower()
        if "/" in key:
            return key.split(";", 1)[0].strip() in self.supported_mime_types()
        return key.lstrip(".") in self.supported_extensions()

    def load_from_path(self, path: str | Path) -> LoadResult:
        """Read *path* and delegate to :meth:`load_from_bytes`."""
        file_path = Path(path)
        try:
            data = file_path.read_bytes()
        except OSError as exc:
            raise LoaderError(
                message=f"Cannot read {file_path}: {exc}",
                provider_name=self.get_loader_name(),
            ) from exc
        return self.load_from_bytes(data, filename=file_path.name)
