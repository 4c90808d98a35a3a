"""Format-specific document loaders.

Each adapter turns raw bytes into a LoadResult (text + flat/paged/sectioned
structure).  LoaderRegistry picks the adapter by extension or media type.

  PDFLoader       .pdf            PyMuPDF, one page per PDF page
  DocxLoader      .docx           python-docx, sections from heading styles
  PptxLoader      .pptx           python-pptx, one page per slide
  MarkdownLoader  .md .markdown   front matter + ATX heading tree
  TextLoader      .txt            flat
  WebPageLoader   .html .htm      trafilatura, BeautifulSoup fallback
"""

from knowledge_rag.services.ingestion.loaders.docx_loader import DocxLoader
from knowledge_rag.services.ingestion.loaders.markdown_loader import MarkdownLoader
from knowledge_rag.services.ingestion.loaders.pdf_loader import PDFLoader
from knowledge_rag.services.ingestion.loaders.pptx_loader import PptxLoader
from knowledge_rag.services.ingestion.loaders.registry import LoaderRegistry, default_registry
from knowledge_rag.services.ingestion.loaders.text_loader import TextLoader
from knowledge_rag.services.ingestion.loaders.web_loader import WebPageLoader

__all__ = [
    "DocxLoader",
    "LoaderRegistry",
    "MarkdownLoader",
    "PDFLoader",
    "PptxLoader",
    "TextLoader",
    "WebPageLoader",
    "default_registry",
]
