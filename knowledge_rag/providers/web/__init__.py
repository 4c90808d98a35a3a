"""Web page fetching for URL ingestion (httpx)."""

from knowledge_rag.providers.web.web_fetch_provider import FetchedPage, WebFetchProvider

__all__ = ["FetchedPage", "WebFetchProvider"]
