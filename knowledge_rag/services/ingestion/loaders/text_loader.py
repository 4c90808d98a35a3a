"""Plain-text loader (flat structure)."""

from __future__ import annotations

import structlog

from knowledge_rag.interfaces.document_loader import IDocumentLoader
from knowledge_rag.models.loading import LoadResult
from knowledge_rag.services.ingestion.chunker import normalize_text
from knowledge_rag.services.ingestion.loaders.base import decode_text, title_from_filename
from knowledge_rag.utils.errors import LoaderError

logger = structlog.get_logger(logger_name=__name__)

_MIME_TYPE = "text/plain"


class TextLoader(IDocumentLoader):
    """Loads ``.txt`` files."""

    def get_loader_name(self) -> str:
        return "text_loader"

    def supported_extensions(self) -> frozenset[str]:
        return frozenset({"txt", "text"})

    def supported_mime_types(self) -> frozenset[str]:
        return frozenset({_MIME_TYPE})

    def load_from_bytes(self, data: bytes, filename: str | None = None) -> LoadResult:
        text = normalize_text(decode_text(data, self.get_loader_name()))
        if not text:
            raise LoaderError(message="Text file is empty", provider_name=self.get_loader_name())

        logger.debug("text_loaded", filename=filename, chars=len(text))
        return LoadResult(
            text=text,
            title=title_from_filename(filename),
            mime_type=_MIME_TYPE,
            metadata={"line_count": text.count("\n") + 1},
        )
