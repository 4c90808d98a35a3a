"""PDF loader backed by PyMuPDF (fitz).

Extracts text page by page and returns a ``paged`` structure.  Pages are
joined with a blank line; pages without a text layer are skipped but keep
their page numbers.  Encrypted PDFs are rejected rather than attempted.
"""

from __future__ import annotations

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from knowledge_rag.interfaces.document_loader import IDocumentLoader
from knowledge_rag.models.loading import DocumentStructure, LoadResult, StructureKind
from knowledge_rag.services.ingestion.loaders.base import join_pages, title_from_filename
from knowledge_rag.utils.errors import LoaderError

logger = structlog.get_logger(logger_name=__name__)

_MIME_TYPE = "application/pdf"


class PDFLoader(IDocumentLoader):
    """Loads ``.pdf`` files into paged text."""

    def get_loader_name(self) -> str:
        return "pdf_loader"

    def supported_extensions(self) -> frozenset[str]:
        return frozenset({"pdf"})

    def supported_mime_types(self) -> frozenset[str]:
        return frozenset({_MIME_TYPE})

    def load_from_bytes(self, data: bytes, filename: str | None = None) -> LoadResult:
        if not data:
            raise LoaderError(message="PDF is empty", provider_name=self.get_loader_name())

        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as exc:
            # FileDataError / EmptyFileError both derive from RuntimeError.
            raise LoaderError(
                message=f"Cannot open PDF: {exc}",
                provider_name=self.get_loader_name(),
            ) from exc

        try:
            if doc.needs_pass or doc.is_encrypted:
                raise LoaderError(
                    message="PDF is password-protected",
                    provider_name=self.get_loader_name(),
                )
            page_count = doc.page_count
            pdf_meta = doc.metadata or {}
            blocks = [
                (index + 1, doc[index].get_text("text")) for index in range(page_count)
            ]
        finally:
            doc.close()

        text, pages = join_pages(blocks)
        if not text:
            raise LoaderError(
                message="PDF contains no extractable text (scanned without OCR layer?)",
                provider_name=self.get_loader_name(),
            )

        title = (pdf_meta.get("title") or "").strip() or title_from_filename(filename)
        metadata: dict[str, object] = {"page_count": page_count}
        author = (pdf_meta.get("author") or "").strip()
        if author:
            metadata["author"] = author

        logger.debug(
            "pdf_loaded",
            filename=filename,
            pages=page_count,
            pages_with_text=len(pages),
            chars=len(text),
        )
        return LoadResult(
            text=text,
            title=title,
            mime_type=_MIME_TYPE,
            structure=DocumentStructure(kind=StructureKind.PAGED, pages=pages),
            metadata=metadata,
        )
