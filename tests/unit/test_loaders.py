"""Unit tests for the format adapters (PDF, Word, PowerPoint, Markdown, text, HTML).

Binary fixtures are generated in memory with the same libraries the
loaders read them with.
"""

from __future__ import annotations

import io
from unittest.mock import patch

import fitz
import pytest
from docx import Document as new_docx
from pptx import Presentation

from knowledge_rag.models.loading import StructureKind
from knowledge_rag.services.ingestion.loaders.base import (
    build_section_tree,
    decode_text,
    join_pages,
    title_from_filename,
)
from knowledge_rag.services.ingestion.loaders.docx_loader import DocxLoader
from knowledge_rag.services.ingestion.loaders.markdown_loader import MarkdownLoader, scan_headings
from knowledge_rag.services.ingestion.loaders.pdf_loader import PDFLoader
from knowledge_rag.services.ingestion.loaders.pptx_loader import PptxLoader
from knowledge_rag.services.ingestion.loaders.text_loader import TextLoader
from knowledge_rag.services.ingestion.loaders.web_loader import WebPageLoader
from knowledge_rag.utils.errors import LoaderError


def _make_pdf(pages: list[str], title: str = "", author: str = "") -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text)
    doc.set_metadata({"title": title, "author": author})
    data = doc.tobytes()
    doc.close()
    return data


def _make_docx() -> bytes:
    document = new_docx()
    document.core_properties.title = ""
    document.add_heading("Handbook", level=1)
    document.add_paragraph("Welcome to the handbook.")
    document.add_heading("Setup", level=2)
    document.add_paragraph("Install the tools first.")
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "Tool"
    table.cell(0, 1).text = "Version"
    table.cell(1, 0).text = "python"
    table.cell(1, 1).text = "3.12"
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _make_pptx() -> bytes:
    presentation = Presentation()
    presentation.core_properties.title = ""
    layout = presentation.slide_layouts[1]  # Title and Content

    first = presentation.slides.add_slide(layout)
    first.shapes.title.text = "Quarterly Review"
    first.placeholders[1].text = "Revenue grew in every region."
    first.notes_slide.notes_text_frame.text = "Mention the new office."

    second = presentation.slides.add_slide(layout)
    second.shapes.title.text = "Next Steps"
    second.placeholders[1].text = "Hire two engineers."

    buffer = io.BytesIO()
    presentation.save(buffer)
    return buffer.getvalue()


# ======================================================================
# Shared helpers
# ======================================================================


class TestLoaderHelpers:
    def test_title_from_filename(self) -> None:
        assert title_from_filename("report.final.pdf") == "report.final"
        assert title_from_filename(None) is None
        assert title_from_filename("") is None

    def test_decode_text_handles_boms_and_latin1(self) -> None:
        assert decode_text("héllo".encode("utf-8-sig"), "t") == "héllo"
        assert decode_text("héllo".encode("utf-16"), "t") == "héllo"
        assert decode_text("héllo".encode("latin-1"), "t") == "héllo"

    def test_decode_text_rejects_binary(self) -> None:
        with pytest.raises(LoaderError):
            decode_text(b"\x00\x01\x02binary", "t")

    def test_join_pages_offsets_index_into_text(self) -> None:
        text, pages = join_pages([(1, "first page"), (2, "   "), (3, "third page")])

        assert text == "first page\n\nthird page"
        assert [p.page_number for p in pages] == [1, 3]
        for page in pages:
            assert text[page.start_offset : page.end_offset] == page.text

    def test_build_section_tree_nests_by_level(self) -> None:
        text = "# A\nintro\n## B\nbody\n# C\nend"
        headings, _ = scan_headings(text)

        sections = build_section_tree(headings, text)

        assert [s.title for s in sections] == ["A", "C"]
        assert [c.title for c in sections[0].children] == ["B"]
        assert sections[0].end_offset == sections[1].start_offset
        assert sections[1].end_offset == len(text)


# ======================================================================
# Plain text / Markdown
# ======================================================================


class TestTextLoader:
    def test_loads_flat_text(self) -> None:
        result = TextLoader().load_from_bytes(b"line one\r\nline two\n", filename="notes.txt")

        assert result.text == "line one\nline two"
        assert result.title == "notes"
        assert result.mime_type == "text/plain"
        assert result.structure.kind is StructureKind.FLAT
        assert result.metadata["line_count"] == 2

    def test_empty_file_is_an_error(self) -> None:
        with pytest.raises(LoaderError, match="Text file is empty"):
            TextLoader().load_from_bytes(b"  \n ")


class TestMarkdownLoader:
    def test_front_matter_title_and_metadata(self) -> None:
        source = (
            b"---\ntitle: Guide\ntags: [a, b]\ndate: 2024-01-31\n---\n"
            b"# Heading One\n\nText.\n\n## Sub\n\nMore text.\n"
        )
        result = MarkdownLoader().load_from_bytes(source, filename="guide.md")

        assert result.title == "Guide"
        assert result.metadata["tags"] == ["a", "b"]
        assert result.metadata["date"] == "2024-01-31"
        assert not result.text.startswith("---")
        assert result.structure.kind is StructureKind.SECTIONED
        top = result.structure.sections[0]
        assert top.title == "Heading One"
        assert top.children[0].title == "Sub"

    def test_title_falls_back_to_first_h1(self) -> None:
        result = MarkdownLoader().load_from_bytes(b"Intro\n\n# Real Title\n\nBody", "x.md")
        assert result.title == "Real Title"

    def test_headings_in_code_fences_are_ignored(self) -> None:
        source = b"# Top\n\n```bash\n# not a heading\n```\n"
        result = MarkdownLoader().load_from_bytes(source)

        titles = [s.title for s in result.structure.sections]
        assert titles == ["Top"]
        assert result.metadata["has_code_blocks"] is True

    def test_detects_tables(self) -> None:
        source = b"| a | b |\n| --- | --- |\n| 1 | 2 |\n"
        assert MarkdownLoader().load_from_bytes(source).metadata["has_tables"] is True

    def test_no_headings_is_flat(self) -> None:
        result = MarkdownLoader().load_from_bytes(b"just text", filename="plain.md")
        assert result.structure.kind is StructureKind.FLAT
        assert result.title == "plain"

    def test_empty_body_is_an_error(self) -> None:
        with pytest.raises(LoaderError, match="Markdown document is empty"):
            MarkdownLoader().load_from_bytes(b"---\ntitle: x\n---\n   \n")


# ======================================================================
# PDF
# ======================================================================


class TestPDFLoader:
    def test_extracts_pages_and_metadata(self) -> None:
        data = _make_pdf(["Alpha page text", "", "Gamma page text"], title="Field Guide", author="Ann")

        result = PDFLoader().load_from_bytes(data, filename="guide.pdf")

        assert result.title == "Field Guide"
        assert result.metadata == {"page_count": 3, "author": "Ann"}
        assert result.structure.kind is StructureKind.PAGED
        assert [p.page_number for p in result.structure.pages] == [1, 3]
        assert "Alpha page text" in result.text
        assert "Gamma page text" in result.text
        for page in result.structure.pages:
            assert result.text[page.start_offset : page.end_offset] == page.text

    def test_title_falls_back_to_filename(self) -> None:
        result = PDFLoader().load_from_bytes(_make_pdf(["Body"]), filename="manual.pdf")
        assert result.title == "manual"

    def test_empty_bytes(self) -> None:
        with pytest.raises(LoaderError, match="PDF is empty"):
            PDFLoader().load_from_bytes(b"")

    def test_corrupt_bytes(self) -> None:
        with pytest.raises(LoaderError):
            PDFLoader().load_from_bytes(b"this is not a pdf at all")

    def test_no_text_layer(self) -> None:
        with pytest.raises(LoaderError, match="no extractable text"):
            PDFLoader().load_from_bytes(_make_pdf(["", ""]))


# ======================================================================
# Word / PowerPoint
# ======================================================================


class TestDocxLoader:
    def test_sections_tables_and_title(self) -> None:
        result = DocxLoader().load_from_bytes(_make_docx(), filename="handbook.docx")

        assert result.title == "Handbook"
        assert result.structure.kind is StructureKind.SECTIONED
        top = result.structure.sections[0]
        assert top.title == "Handbook"
        assert top.children[0].title == "Setup"
        assert "Tool\tVersion" in result.text
        assert result.metadata["table_count"] == 1
        assert result.metadata["paragraph_count"] == 4

    def test_corrupt_file(self) -> None:
        with pytest.raises(LoaderError, match="Cannot open Word document"):
            DocxLoader().load_from_bytes(b"not a zip")

    def test_document_without_text(self) -> None:
        buffer = io.BytesIO()
        new_docx().save(buffer)
        with pytest.raises(LoaderError, match="contains no text"):
            DocxLoader().load_from_bytes(buffer.getvalue())


class TestPptxLoader:
    def test_one_page_per_slide_with_notes(self) -> None:
        result = PptxLoader().load_from_bytes(_make_pptx(), filename="deck.pptx")

        assert result.title == "Quarterly Review"
        assert result.structure.kind is StructureKind.PAGED
        assert [p.page_number for p in result.structure.pages] == [1, 2]
        first = result.structure.pages[0].text
        assert first.startswith("Quarterly Review")
        assert "Revenue grew in every region." in first
        assert "Notes: Mention the new office." in first
        assert result.metadata == {"slide_count": 2, "slides_with_notes": 1}

    def test_corrupt_file(self) -> None:
        with pytest.raises(LoaderError, match="Cannot open presentation"):
            PptxLoader().load_from_bytes(b"not a zip")


# ======================================================================
# HTML
# ======================================================================

_ARTICLE_HTML = """
<html>
  <head><title>Vector Search Basics</title></head>
  <body>
    <nav><a href="/">Home</a> | <a href="/about">About</a></nav>
    <article>
      <h1>Vector Search Basics</h1>
      <p>Vector search finds passages by meaning rather than by keywords.
         Each passage is embedded into a vector and compared by cosine similarity.</p>
      <h2>Chunking</h2>
      <p>Documents are split into overlapping chunks before embedding so that each
         vector describes a focused piece of text.</p>
    </article>
    <footer>Copyright notice</footer>
  </body>
</html>
"""


class TestWebPageLoader:
    def test_extracts_main_content(self) -> None:
        result = WebPageLoader().load_html(_ARTICLE_HTML, url="https://example.com/post")

        assert "Vector search finds passages by meaning" in result.text
        assert "Copyright notice" not in result.text
        assert result.title == "Vector Search Basics"
        assert result.metadata["url"] == "https://example.com/post"
        assert result.mime_type == "text/html"

    def test_dom_fallback_when_trafilatura_finds_nothing(self) -> None:
        with patch(
            "knowledge_rag.services.ingestion.loaders.web_loader.trafilatura.extract",
            return_value=None,
        ):
            result = WebPageLoader().load_html(_ARTICLE_HTML)

        assert result.metadata["extractor"] == "dom"
        assert result.title == "Vector Search Basics"
        assert "Home" not in result.text
        assert "Copyright notice" not in result.text
        assert result.structure.kind is StructureKind.SECTIONED
        assert [s.title for s in result.structure.sections] == ["Vector Search Basics"]
        assert result.structure.sections[0].children[0].title == "Chunking"

    def test_empty_page(self) -> None:
        with pytest.raises(LoaderError, match="Page is empty"):
            WebPageLoader().load_html("   ")

    def test_page_without_content(self) -> None:
        with patch(
            "knowledge_rag.services.ingestion.loaders.web_loader.trafilatura.extract",
            return_value=None,
        ):
            with pytest.raises(LoaderError, match="No readable content"):
                WebPageLoader().load_html("<html><body><script>x()</script></body></html>")

    def test_load_from_bytes_uses_filename_title_when_missing(self) -> None:
        html = b"<html><body><p>" + b"Plain paragraph with enough words to keep. " * 5 + b"</p></body></html>"
        with patch(
            "knowledge_rag.services.ingestion.loaders.web_loader.trafilatura.extract",
            return_value=None,
        ):
            result = WebPageLoader().load_from_bytes(html, filename="saved-page.html")
        assert result.title == "saved-page"
