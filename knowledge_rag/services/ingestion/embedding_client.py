"""Batched, retried embedding generation on top of an IEmbeddingProvider.

The provider adapters only translate one API call.  This client adds the
policy around them:

- inputs are split into fixed-size batches (default 20)
- a failing batch is retried with exponential backoff (1s, 2s, 4s ...)
  until ``max_retries`` attempts are used, then the whole call fails
- a short pause between successful batches acts as a rate limit
- a ``(completed, total)`` progress callback fires after each batch
- every batch is checked for vector count and a consistent dimensionality

Cancellation is never retried: ``asyncio.CancelledError`` propagates out
of the in-flight provider call immediately.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Sequence

import structlog

from knowledge_rag.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_rag.models.knowledge import EmbeddingResult
from knowledge_rag.utils.errors import EmbeddingError

logger = structlog.get_logger(logger_name=__name__)

EmbeddingProgressCallback = Callable[[int, int], Awaitable[None] | None]

_DEFAULT_BATCH_SIZE = 20
_DEFAULT_MAX_RETRIES = 3
_DEFAULT_RETRY_DELAY = 1.0
_DEFAULT_RATE_LIMIT_DELAY = 0.1


class EmbeddingClient:
    """Embedding policy wrapper around a single provider.

    Parameters
    ----------
    provider:
        The embedding backend, or ``None`` when nothing is configured (every
        call then fails fast with :class:`EmbeddingError`).
    batch_size:
        Texts per provider call.
    max_retries:
        Attempts per batch, including the first one.
    retry_delay:
        Backoff before the second attempt; doubles for each further attempt.
    rate_limit_delay:
        Pause between consecutive successful batches.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider | None,
        batch_size: int = _DEFAULT_BATCH_SIZE,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        retry_delay: float = _DEFAULT_RETRY_DELAY,
        rate_limit_delay: float = _DEFAULT_RATE_LIMIT_DELAY,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._provider = provider
        self._batch_size = batch_size
        self._max_retries = max(1, max_retries)
        self._retry_delay = max(0.0, retry_delay)
        self._rate_limit_delay = max(0.0, rate_limit_delay)

    @property
    def provider(self) -> IEmbeddingProvider | None:
        return self._provider

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def get_model_name(self) -> str:
        return self._require_provider().get_model_name()

    def ensure_available(self) -> IEmbeddingProvider:
        """Fail fast unless a usable provider is configured.

        Raises
        ------
        EmbeddingError
            If no provider is configured, or the provider reports itself
            unavailable (missing key, unreachable server).
        """
        provider = self._require_provider()
        if not provider.is_available():
            raise EmbeddingError(
                message=f"Provider {provider.get_provider_name()} does not support embedding",
                provider_name=provider.get_provider_name(),
            )
        return provider

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed a single text (a search query, typically)."""
        results = await self.embed_batch([text])
        return results[0]

    async def embed_batch(
        self,
        texts: Sequence[str],
        on_progress: EmbeddingProgressCallback | None = None,
    ) -> list[EmbeddingResult]:
        """Embed *texts*, returning one result per input in input order.

        Parameters
        ----------
        texts:
            Texts to embed.
        on_progress:
            Called with ``(completed, total)`` after each batch; may be a
            plain function or a coroutine function.

        Raises
        ------
        EmbeddingError
            When preconditions fail or a batch still fails after all retries.
            Nothing from earlier batches is returned in that case.
        """
        provider = self.ensure_available()
        if not texts:
            return []

        total = len(texts)
        batches = [
            list(texts[start : start + self._batch_size])
            for start in range(0, total, self._batch_size)
        ]
        logger.info(
            "embedding_started",
            provider=provider.get_provider_name(),
            model=provider.get_model_name(),
            texts=total,
            batches=len(batches),
        )

        results: list[EmbeddingResult] = []
        dimensions: int | None = None
        for index, batch in enumerate(batches):
            vectors = await self._embed_with_retry(provider, batch, index, len(batches))

            batch_dims = len(vectors[0])
            if dimensions is None:
                dimensions = batch_dims
            elif batch_dims != dimensions:
                raise EmbeddingError(
                    message=(
                        f"Provider changed dimensionality mid-call: {dimensions} then {batch_dims}"
                    ),
                    provider_name=provider.get_provider_name(),
                )

            model = provider.get_model_name()
            results.extend(
                EmbeddingResult(vector=vector, model=model, dimensions=batch_dims)
                for vector in vectors
            )

            if on_progress is not None:
                outcome = on_progress(len(results), total)
                if inspect.isawaitable(outcome):
                    await outcome

            if index < len(batches) - 1 and self._rate_limit_delay > 0:
                await asyncio.sleep(self._rate_limit_delay)

        logger.info(
            "embedding_completed",
            provider=provider.get_provider_name(),
            texts=total,
            dimensions=dimensions,
        )
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_provider(self) -> IEmbeddingProvider:
        if self._provider is None:
            raise EmbeddingError(message="No embedding provider available")
        return self._provider

    async def _embed_with_retry(
        self,
        provider: IEmbeddingProvider,
        batch: list[str],
        batch_index: int,
        batch_count: int,
    ) -> list[list[float]]:
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                vectors = await provider.embed(batch)
                self._validate(provider, batch, vectors)
                return vectors
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "embedding_batch_failed",
                    provider=provider.get_provider_name(),
                    batch=batch_index + 1,
                    batches=batch_count,
                    attempt=attempt,
                    max_attempts=self._max_retries,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                if attempt < self._max_retries:
                    delay = self._retry_delay * (2 ** (attempt - 1))
                    logger.info("embedding_batch_retry", batch=batch_index + 1, delay=delay)
                    await asyncio.sleep(delay)

        if isinstance(last_error, EmbeddingError):
            raise last_error
        raise EmbeddingError(
            message=f"Embedding failed after {self._max_retries} attempts: {last_error}",
            provider_name=provider.get_provider_name(),
        ) from last_error

    @staticmethod
    def _validate(
        provider: IEmbeddingProvider,
        batch: list[str],
        vectors: list[list[float]],
    ) -> None:
        if len(vectors) != len(batch):
            raise EmbeddingError(
                message=f"Provider returned {len(vectors)} vectors for {len(batch)} inputs",
                provider_name=provider.get_provider_name(),
            )
        dims = {len(v) for v in vectors}
        if len(dims) != 1 or 0 in dims:
            raise EmbeddingError(
                message=f"Provider returned inconsistent vector sizes: {sorted(dims)}",
                provider_name=provider.get_provider_name(),
            )
