"""HTML / web page loader.

Main-content extraction runs in two tiers:

1. **trafilatura** -- readability-style boilerplate removal producing
   Markdown (headings kept as ``#`` lines), plus page metadata (title,
   author, date, description, site name).
2. **BeautifulSoup DOM fallback** -- used only when trafilatura returns
   nothing.  Strips scripts, navigation and page chrome, prefers
   ``<article>``/``<main>``/``[role=main]``, else ``<body>``.

Both tiers emit Markdown-style headings, so the section tree is built the
same way as for Markdown files.
"""

from __future__ import annotations

import re
from typing import Any

import structlog
import trafilatura
from bs4 import BeautifulSoup, UnicodeDammit

from knowledge_rag.interfaces.document_loader import IDocumentLoader
from knowledge_rag.models.loading import DocumentStructure, LoadResult, StructureKind
from knowledge_rag.services.ingestion.chunker import normalize_text
from knowledge_rag.services.ingestion.loaders.base import build_section_tree, title_from_filename
from knowledge_rag.services.ingestion.loaders.markdown_loader import scan_headings
from knowledge_rag.utils.errors import LoaderError

logger = structlog.get_logger(logger_name=__name__)

_MIME_TYPE = "text/html"

_STRIP_TAGS = ("script", "style", "noscript", "nav", "header", "footer", "aside", "form", "iframe")
_MAIN_SELECTORS = ("article", "main", '[role="main"]')
_HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
_BLOCK_TAGS = ("p", "div", "section", "li", "pre", "blockquote", "tr", "dt", "dd", "br")

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
_INLINE_WHITESPACE_RE = re.compile(r"\s+")


class WebPageLoader(IDocumentLoader):
    """Extracts readable Markdown-ish text from HTML."""

    def get_loader_name(self) -> str:
        return "web_loader"

    def supported_extensions(self) -> frozenset[str]:
        return frozenset({"html", "htm", "xhtml"})

    def supported_mime_types(self) -> frozenset[str]:
        return frozenset({_MIME_TYPE, "application/xhtml+xml"})

    def load_from_bytes(self, data: bytes, filename: str | None = None) -> LoadResult:
        html = UnicodeDammit(data, is_html=True).unicode_markup or ""
        result = self.load_html(html)
        if result.title is None and filename:
            return result.model_copy(update={"title": title_from_filename(filename)})
        return result

    def load_html(self, html: str, url: str | None = None) -> LoadResult:
        """Extract main content from an HTML string.

        Parameters
        ----------
        html:
            Page markup.
        url:
            Source URL, passed to trafilatura for metadata and recorded in
            the result metadata.

        Raises
        ------
        LoaderError
            If neither extraction tier finds any text.
        """
        if not html or not html.strip():
            raise LoaderError(message="Page is empty", provider_name=self.get_loader_name())

        metadata: dict[str, Any] = {}
        if url:
            metadata["url"] = url

        title: str | None = None
        text = self._extract_with_trafilatura(html, url)
        if text:
            metadata["extractor"] = "trafilatura"
            page_meta = trafilatura.extract_metadata(html, default_url=url)
            if page_meta is not None:
                title = (page_meta.title or "").strip() or None
                for key in ("author", "date", "description", "sitename"):
                    value = getattr(page_meta, key, None)
                    if value:
                        metadata[key] = value
        else:
            logger.info("trafilatura_empty_using_dom_fallback", url=url)
            text, title = self._extract_with_dom(html)
            metadata["extractor"] = "dom"

        if not text:
            raise LoaderError(
                message=f"No readable content found{f' at {url}' if url else ''}",
                provider_name=self.get_loader_name(),
            )

        headings, _ = scan_headings(text)
        if title is None:
            title = next((t for level, t, _ in headings if level == 1), None)

        structure = (
            DocumentStructure(
                kind=StructureKind.SECTIONED,
                sections=build_section_tree(headings, text),
            )
            if headings
            else DocumentStructure()
        )

        logger.debug(
            "web_page_loaded",
            url=url,
            extractor=metadata["extractor"],
            chars=len(text),
            headings=len(headings),
        )
        return LoadResult(
            text=text,
            title=title,
            mime_type=_MIME_TYPE,
            structure=structure,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Extraction tiers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_with_trafilatura(html: str, url: str | None) -> str:
        extracted = trafilatura.extract(
            html,
            url=url,
            output_format="markdown",
            include_comments=False,
            include_tables=True,
            include_links=False,
            include_images=False,
        )
        return normalize_text(extracted or "")

    @staticmethod
    def _extract_with_dom(html: str) -> tuple[str, str | None]:
        soup = BeautifulSoup(html, "html.parser")

        title: str | None = None
        if soup.title and soup.title.string:
            title = soup.title.string.strip() or None
        if title is None:
            og_title = soup.find("meta", attrs={"property": "og:title"})
            if og_title and og_title.get("content"):
                title = str(og_title["content"]).strip() or None

        for tag in soup(_STRIP_TAGS):
            tag.decompose()

        root = None
        for selector in _MAIN_SELECTORS:
            root = soup.select_one(selector)
            if root is not None:
                break
        if root is None:
            root = soup.body or soup

        for heading in root.find_all(_HEADING_TAGS):
            heading_text = heading.get_text(" ", strip=True)
            if title is None and heading.name == "h1" and heading_text:
                title = heading_text
            level = int(heading.name[1])
            heading.replace_with(f"\n\n{'#' * level} {heading_text}\n\n" if heading_text else "")

        for block in root.find_all(_BLOCK_TAGS):
            block.insert_before("\n\n")
            block.insert_after("\n\n")

        paragraphs = [
            _INLINE_WHITESPACE_RE.sub(" ", part).strip()
            for part in _PARAGRAPH_BREAK_RE.split(root.get_text())
        ]
        return normalize_text("\n\n".join(p for p in paragraphs if p)), title
