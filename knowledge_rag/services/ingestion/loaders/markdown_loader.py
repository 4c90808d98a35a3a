"""Markdown loader.

Parses optional YAML front matter, then builds a section tree from ATX
headings (``#`` .. ``######``).  Headings inside fenced code blocks are
ignored.  The stored text is the Markdown body without front matter.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

import structlog
import yaml

from knowledge_rag.interfaces.document_loader import IDocumentLoader
from knowledge_rag.models.loading import DocumentStructure, LoadResult, StructureKind
from knowledge_rag.services.ingestion.chunker import normalize_text
from knowledge_rag.services.ingestion.loaders.base import (
    build_section_tree,
    decode_text,
    title_from_filename,
)
from knowledge_rag.utils.errors import LoaderError

logger = structlog.get_logger(logger_name=__name__)

_MIME_TYPE = "text/markdown"

_FRONT_MATTER_RE = re.compile(r"\A---[ \t]*\n(.*?)\n---[ \t]*(?:\n|\Z)", re.DOTALL)
_ATX_HEADING_RE = re.compile(r"^(#{1,6})[ \t]+(.+?)(?:[ \t]+#+)?[ \t]*$")
_FENCE_RE = re.compile(r"^[ \t]{0,3}(```|~~~)")
_TABLE_SEPARATOR_RE = re.compile(r"^\s*\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?\s*$")


class MarkdownLoader(IDocumentLoader):
    """Loads ``.md`` / ``.markdown`` files into sectioned text."""

    def get_loader_name(self) -> str:
        return "markdown_loader"

    def supported_extensions(self) -> frozenset[str]:
        return frozenset({"md", "markdown"})

    def supported_mime_types(self) -> frozenset[str]:
        return frozenset({_MIME_TYPE, "text/x-markdown"})

    def load_from_bytes(self, data: bytes, filename: str | None = None) -> LoadResult:
        raw = decode_text(data, self.get_loader_name())
        raw = raw.replace("\r\n", "\n").replace("\r", "\n")

        front_matter, body = self._split_front_matter(raw)
        text = normalize_text(body)
        if not text:
            raise LoaderError(
                message="Markdown document is empty",
                provider_name=self.get_loader_name(),
            )

        headings, has_code = scan_headings(text)
        metadata: dict[str, Any] = {
            "line_count": text.count("\n") + 1,
            "has_code_blocks": has_code,
            "has_tables": any(_TABLE_SEPARATOR_RE.match(line) for line in text.split("\n")),
        }
        title: str | None = None
        for key, value in front_matter.items():
            if key == "title" and value:
                title = str(value).strip()
            else:
                metadata[key] = _json_safe(value)

        if not title:
            title = next((t for level, t, _ in headings if level == 1), None)
        title = title or title_from_filename(filename)

        structure = (
            DocumentStructure(
                kind=StructureKind.SECTIONED,
                sections=build_section_tree(headings, text),
            )
            if headings
            else DocumentStructure()
        )

        logger.debug(
            "markdown_loaded",
            filename=filename,
            headings=len(headings),
            front_matter_keys=sorted(front_matter),
        )
        return LoadResult(
            text=text,
            title=title,
            mime_type=_MIME_TYPE,
            structure=structure,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _split_front_matter(self, raw: str) -> tuple[dict[str, Any], str]:
        match = _FRONT_MATTER_RE.match(raw)
        if match is None:
            return {}, raw
        try:
            parsed = yaml.safe_load(match.group(1))
        except yaml.YAMLError as exc:
            logger.warning(
                "markdown_front_matter_invalid",
                loader=self.get_loader_name(),
                error=str(exc),
            )
            return {}, raw
        if not isinstance(parsed, dict):
            return {}, raw
        return {str(k): v for k, v in parsed.items()}, raw[match.end():]


def scan_headings(text: str) -> tuple[list[tuple[int, str, int]], bool]:
    """Return ``(level, title, offset)`` for each ATX heading, and whether code fences exist.

    Lines inside fenced code blocks are never treated as headings.
    """
    headings: list[tuple[int, str, int]] = []
    in_fence = False
    fence_marker = ""
    has_code = False
    offset = 0

    for line in text.split("\n"):
        fence = _FENCE_RE.match(line)
        if fence:
            has_code = True
            if not in_fence:
                in_fence, fence_marker = True, fence.group(1)
            elif fence.group(1) == fence_marker:
                in_fence = False
        elif not in_fence:
            heading = _ATX_HEADING_RE.match(line)
            if heading:
                headings.append((len(heading.group(1)), heading.group(2).strip(), offset))
        offset += len(line) + 1

    return headings, has_code


def _json_safe(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value
