"""Web page fetcher using httpx.

Downloads the raw HTML for ``add_url``; content extraction is left to
:class:`~knowledge_rag.services.ingestion.loaders.web_loader.WebPageLoader`.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

import httpx
import structlog

from knowledge_rag.utils.errors import LoaderError, UnsupportedInputError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_TIMEOUT = 30.0
_DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/121.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}
_HTML_TYPES = ("text/html", "application/xhtml+xml")


@dataclass(frozen=True)
class FetchedPage:
    """Raw result of fetching one URL.

    Attributes
    ----------
    url:
        The URL that was requested.
    final_url:
        The URL after redirects.
    html:
        Decoded response body.
    content_type:
        Media type from the ``Content-Type`` header, without parameters.
    """

    url: str
    final_url: str
    html: str
    content_type: str


class WebFetchProvider:
    """Fetches HTML pages over HTTP(S)."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = _DEFAULT_TIMEOUT,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers=_DEFAULT_HEADERS,
            follow_redirects=True,
        )

    async def fetch(self, url: str) -> FetchedPage:
        """GET *url* and return its HTML.

        Raises
        ------
        UnsupportedInputError
            If *url* is not an absolute http(s) URL.
        LoaderError
            On timeouts, HTTP error statuses, transport errors, or a
            non-HTML response.
        """
        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise UnsupportedInputError(
                message=f"Only http(s) URLs can be fetched: {url}",
                provider_name=self.get_provider_name(),
            )

        try:
            response = await self._client.get(url.strip())
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise LoaderError(
                message=f"Timeout fetching {url}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise LoaderError(
                message=f"HTTP {exc.response.status_code} for {url}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPError as exc:
            raise LoaderError(
                message=f"HTTP error fetching {url}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content_type = response.headers.get("content-type", "").split(";", 1)[0].strip().lower()
        if content_type and content_type not in _HTML_TYPES:
            raise LoaderError(
                message=f"Unsupported content type '{content_type}' at {url}",
                provider_name=self.get_provider_name(),
            )

        logger.info(
            "web_page_fetched",
            url=url,
            final_url=str(response.url),
            status=response.status_code,
            bytes=len(response.content),
        )
        return FetchedPage(
            url=url,
            final_url=str(response.url),
            html=response.text,
            content_type=content_type or "text/html",
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def get_provider_name(self) -> str:
        return "web_fetch"
