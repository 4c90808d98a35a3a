"""Helpers shared by the format adapters.

Adapters assemble their output from ordered text blocks (pages, slides,
paragraphs).  The helpers here join those blocks into normalised text and
compute the structural offsets against the joined string, so every
``PageInfo``/``SectionInfo`` offset indexes into ``LoadResult.text``.
"""

from __future__ import annotations

import codecs
from pathlib import Path

import structlog

from knowledge_rag.models.loading import PageInfo, SectionInfo
from knowledge_rag.services.ingestion.chunker import normalize_text
from knowledge_rag.utils.errors import LoaderError

logger = structlog.get_logger(logger_name=__name__)

BLOCK_SEPARATOR = "\n\n"


def title_from_filename(filename: str | None) -> str | None:
    """Return the file stem (``"report"`` for ``"report.pdf"``), or ``None``."""
    if not filename:
        return None
    stem = Path(filename).stem.strip()
    return stem or None


def decode_text(data: bytes, loader_name: str) -> str:
    """Decode text bytes: UTF-16 by BOM, else UTF-8 (BOM stripped), else latin-1.

    Raises
    ------
    LoaderError
        If the bytes look binary (NUL bytes without a UTF-16 BOM).
    """
    if data.startswith((codecs.BOM_UTF16_LE, codecs.BOM_UTF16_BE)):
        return data.decode("utf-16")
    if b"\x00" in data:
        raise LoaderError(
            message="Input looks like binary data, not text",
            provider_name=loader_name,
        )
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("utf8_decode_failed_using_latin1", loader=loader_name)
        return data.decode("latin-1")


def join_pages(blocks: list[tuple[int, str]]) -> tuple[str, list[PageInfo]]:
    """Join ``(page_number, text)`` blocks and record each page's offsets.

    Blocks whose normalised text is empty are dropped; numbering is kept.
    """
    parts: list[str] = []
    pages: list[PageInfo] = []
    offset = 0
    for page_number, raw in blocks:
        text = normalize_text(raw)
        if not text:
            continue
        if parts:
            offset += len(BLOCK_SEPARATOR)
        pages.append(
            PageInfo(
                page_number=page_number,
                text=text,
                start_offset=offset,
                end_offset=offset + len(text),
            )
        )
        parts.append(text)
        offset += len(text)
    return BLOCK_SEPARATOR.join(parts), pages


def build_section_tree(
    headings: list[tuple[int, str, int]],
    text: str,
) -> list[SectionInfo]:
    """Nest ``(level, title, start_offset)`` headings into a section tree.

    A section runs from its heading to the next heading of the same or a
    higher rank (smaller level number), or to the end of *text*.  Headings
    must be given in document order.
    """

    def build(lo: int, hi: int, parent_end: int) -> list[SectionInfo]:
        sections: list[SectionInfo] = []
        i = lo
        while i < hi:
            level, title, start = headings[i]
            j = i + 1
            while j < hi and headings[j][0] > level:
                j += 1
            end = headings[j][2] if j < hi else parent_end
            sections.append(
                SectionInfo(
                    level=min(max(level, 1), 6),
                    title=title,
                    text=text[start:end].strip(),
                    start_offset=start,
                    end_offset=end,
                    children=build(i + 1, j, end),
                )
            )
            i = j
        return sections

    return build(0, len(headings), len(text))
