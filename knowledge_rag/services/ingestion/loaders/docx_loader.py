"""Word (.docx) loader backed by python-docx.

Walks the document body in order.  Paragraphs styled ``Title`` or
``Heading N`` open sections; tables are flattened into tab-separated
rows so their content is still searchable.
"""

from __future__ import annotations

import io
import re
import zipfile

import structlog
from docx import Document as open_docx
from docx.opc.exceptions import PackageNotFoundError
from docx.table import Table
from docx.text.paragraph import Paragraph

from knowledge_rag.interfaces.document_loader import IDocumentLoader
from knowledge_rag.models.loading import DocumentStructure, LoadResult, StructureKind
from knowledge_rag.services.ingestion.chunker import normalize_text
from knowledge_rag.services.ingestion.loaders.base import (
    BLOCK_SEPARATOR,
    build_section_tree,
    title_from_filename,
)
from knowledge_rag.utils.errors import LoaderError

logger = structlog.get_logger(logger_name=__name__)

_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
_HEADING_STYLE_RE = re.compile(r"^Heading\s+(\d)$", re.IGNORECASE)


class DocxLoader(IDocumentLoader):
    """Loads ``.docx`` files into sectioned text."""

    def get_loader_name(self) -> str:
        return "docx_loader"

    def supported_extensions(self) -> frozenset[str]:
        return frozenset({"docx"})

    def supported_mime_types(self) -> frozenset[str]:
        return frozenset({_MIME_TYPE})

    def load_from_bytes(self, data: bytes, filename: str | None = None) -> LoadResult:
        try:
            document = open_docx(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise LoaderError(
                message=f"Cannot open Word document: {exc}",
                provider_name=self.get_loader_name(),
            ) from exc

        parts: list[str] = []
        headings: list[tuple[int, str, int]] = []
        offset = 0
        table_count = 0

        for block in document.iter_inner_content():
            if isinstance(block, Paragraph):
                text = normalize_text(block.text)
                level = _heading_level(block)
            elif isinstance(block, Table):
                table_count += 1
                text = normalize_text(_flatten_table(block))
                level = None
            else:
                continue
            if not text:
                continue

            if parts:
                offset += len(BLOCK_SEPARATOR)
            if level is not None:
                headings.append((level, text, offset))
            parts.append(text)
            offset += len(text)

        full_text = BLOCK_SEPARATOR.join(parts)
        if not full_text:
            raise LoaderError(
                message="Word document contains no text",
                provider_name=self.get_loader_name(),
            )

        core = document.core_properties
        title = (core.title or "").strip() or None
        if title is None:
            title = next((t for lvl, t, _ in headings if lvl == 1), None)
        title = title or title_from_filename(filename)

        metadata: dict[str, object] = {
            "paragraph_count": len(parts) - table_count,
            "table_count": table_count,
        }
        if core.author:
            metadata["author"] = core.author

        if headings:
            structure = DocumentStructure(
                kind=StructureKind.SECTIONED,
                sections=build_section_tree(headings, full_text),
            )
        else:
            structure = DocumentStructure()

        logger.debug(
            "docx_loaded",
            filename=filename,
            blocks=len(parts),
            headings=len(headings),
            tables=table_count,
        )
        return LoadResult(
            text=full_text,
            title=title,
            mime_type=_MIME_TYPE,
            structure=structure,
            metadata=metadata,
        )


def _heading_level(paragraph: Paragraph) -> int | None:
    style = paragraph.style
    name = (style.name if style is not None else "") or ""
    if name.lower() == "title":
        return 1
    match = _HEADING_STYLE_RE.match(name)
    if match:
        return int(match.group(1))
    return None


def _flatten_table(table: Table) -> str:
    rows = []
    for row in table.rows:
        cells = [cell.text.strip() for cell in row.cells]
        if any(cells):
            rows.append("\t".join(cells))
    return "\n".join(rows)
