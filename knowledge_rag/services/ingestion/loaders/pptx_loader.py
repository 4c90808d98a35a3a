"""PowerPoint (.pptx) loader backed by python-pptx.

Each slide becomes one page: the slide title, the text of every other
shape (tables flattened to tab-separated rows), then speaker notes.
"""

from __future__ import annotations

import io
import zipfile

import structlog
from pptx import Presentation
from pptx.exc import PackageNotFoundError

from knowledge_rag.interfaces.document_loader import IDocumentLoader
from knowledge_rag.models.loading import DocumentStructure, LoadResult, StructureKind
from knowledge_rag.services.ingestion.loaders.base import join_pages, title_from_filename
from knowledge_rag.utils.errors import LoaderError

logger = structlog.get_logger(logger_name=__name__)

_MIME_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
_MAX_TITLE_LENGTH = 100


class PptxLoader(IDocumentLoader):
    """Loads ``.pptx`` presentations into one page per slide."""

    def get_loader_name(self) -> str:
        return "pptx_loader"

    def supported_extensions(self) -> frozenset[str]:
        return frozenset({"pptx"})

    def supported_mime_types(self) -> frozenset[str]:
        return frozenset({_MIME_TYPE})

    def load_from_bytes(self, data: bytes, filename: str | None = None) -> LoadResult:
        try:
            presentation = Presentation(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise LoaderError(
                message=f"Cannot open presentation: {exc}",
                provider_name=self.get_loader_name(),
            ) from exc

        blocks: list[tuple[int, str]] = []
        first_title: str | None = None
        notes_count = 0

        for number, slide in enumerate(presentation.slides, start=1):
            lines: list[str] = []
            title_shape = slide.shapes.title
            if title_shape is not None and title_shape.text_frame.text.strip():
                slide_title = title_shape.text_frame.text.strip()
                lines.append(slide_title)
                first_title = first_title or slide_title

            for shape in slide.shapes:
                if title_shape is not None and shape.shape_id == title_shape.shape_id:
                    continue
                if shape.has_text_frame:
                    body = shape.text_frame.text.strip()
                    if body:
                        lines.append(body)
                elif shape.has_table:
                    for row in shape.table.rows:
                        cells = [cell.text.strip() for cell in row.cells]
                        if any(cells):
                            lines.append("\t".join(cells))

            if slide.has_notes_slide:
                notes = slide.notes_slide.notes_text_frame
                notes_text = notes.text.strip() if notes is not None else ""
                if notes_text:
                    notes_count += 1
                    lines.append(f"Notes: {notes_text}")

            blocks.append((number, "\n".join(lines)))

        text, pages = join_pages(blocks)
        if not text:
            raise LoaderError(
                message="Presentation contains no text",
                provider_name=self.get_loader_name(),
            )

        core_title = (presentation.core_properties.title or "").strip()
        if core_title:
            title = core_title
        elif first_title and len(first_title) <= _MAX_TITLE_LENGTH:
            title = first_title
        else:
            title = title_from_filename(filename)

        logger.debug("pptx_loaded", filename=filename, slides=len(blocks), notes=notes_count)
        return LoadResult(
            text=text,
            title=title,
            mime_type=_MIME_TYPE,
            structure=DocumentStructure(kind=StructureKind.PAGED, pages=pages),
            metadata={"slide_count": len(blocks), "slides_with_notes": notes_count},
        )
