"""Ollama embedding adapter for ``nomic-embed-text`` (768 dimensions).

Ollama serves an OpenAI-compatible ``/v1/embeddings`` route, so requests
go through ``openai.AsyncOpenAI`` pointed at ``OLLAMA_BASE_URL``.  No API
key is needed.

Reachability is probed against ``/api/tags`` the first time
:meth:`NomicEmbeddingProvider.is_available` is called (normally during
provider selection at startup) and the answer is cached.  Embedding calls
never repeat the probe; a server that goes away later surfaces as an
:class:`EmbeddingError` from :meth:`embed`.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from knowledge_rag.config.settings import Settings
from knowledge_rag.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_rag.utils.errors import EmbeddingError, RateLimitError

logger = structlog.get_logger(logger_name=__name__)

_MODEL = "nomic-embed-text"
_DIMENSIONS = 768
_MAX_INPUTS_PER_REQUEST = 512
_PROBE_TIMEOUT = 3.0


class NomicEmbeddingProvider(IEmbeddingProvider):
    """``nomic-embed-text`` served by a local Ollama instance.

    Parameters
    ----------
    settings:
        Application settings; only ``ollama_base_url`` is read.
    """

    def __init__(self, settings: Settings) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._client = openai.AsyncOpenAI(base_url=f"{self._base_url}/v1", api_key="ollama")
        self._available: bool | None = None

    async def embed(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), _MAX_INPUTS_PER_REQUEST):
            request = texts[start : start + _MAX_INPUTS_PER_REQUEST]
            vectors.extend(await self._request(request))
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        [vector] = await self.embed([text])
        return vector

    def get_dimension(self) -> int | None:
        return _DIMENSIONS

    def get_model_name(self) -> str:
        return _MODEL

    def get_provider_name(self) -> str:
        return "nomic_embedding"

    def is_available(self) -> bool:
        """Whether Ollama answered the reachability probe (cached after the first call)."""
        if self._available is None:
            self._available = self._probe()
        return self._available

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(self, texts: list[str]) -> list[list[float]]:
        try:
            response = await self._client.embeddings.create(input=texts, model=_MODEL)
        except openai.RateLimitError as exc:
            raise RateLimitError(
                message=f"Ollama rate limited: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise EmbeddingError(
                message=f"Ollama embedding request failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.debug("ollama_embeddings", model=_MODEL, inputs=len(texts))
        return [item.embedding for item in response.data]

    def _probe(self) -> bool:
        if not self._base_url:
            return False
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=_PROBE_TIMEOUT)
        except httpx.HTTPError as exc:
            logger.warning("ollama_unreachable", base_url=self._base_url, error=str(exc))
            return False
        if response.status_code != 200:
            logger.warning(
                "ollama_unhealthy", base_url=self._base_url, status=response.status_code
            )
            return False
        return True
