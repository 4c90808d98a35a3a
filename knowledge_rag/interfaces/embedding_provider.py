"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations wrap OpenAI ``text-embedding-3-small`` (or any
OpenAI-compatible endpoint) and Nomic ``nomic-embed-text`` served by Ollama.
The wire format of each backend stays inside its adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations (knowledge_rag/providers/embedding/):
#   OpenAIEmbeddingProvider  -- text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider   -- nomic-embed-text via Ollama (local)
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the embedding client.

    Providers are raw capabilities: batching policy, retries and rate
    limiting live in
    :class:`~knowledge_rag.services.ingestion.embedding_client.EmbeddingClient`.
    """

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.

        Raises
        ------
        knowledge_rag.utils.errors.RateLimitError
            If the backend rejected the call for rate limiting.
        knowledge_rag.utils.errors.EmbeddingError
            If the embedding API call fails for any other reason.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""

    @abstractmethod
    def get_dimension(self) -> int | None:
        """Return the expected vector size, or ``None`` if only known after a call.

        Vector stores never trust this value; they record the length of
        the first vector they actually receive.
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier recorded on each embedding row."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider.

        Example return values: ``"openai_embedding"``, ``"nomic_embedding"``.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable.

        Implementations check credentials or reachability without
        generating an actual embedding.
        """
