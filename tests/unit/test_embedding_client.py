"""Unit tests for EmbeddingClient batching, retries, ordering and validation."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from knowledge_rag.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_rag.services.ingestion.embedding_client import EmbeddingClient
from knowledge_rag.utils.errors import EmbeddingError, RateLimitError
from tests.conftest import FakeEmbeddingProvider


def _mock_provider(side_effect=None, return_value=None) -> MagicMock:
    provider = MagicMock(spec=IEmbeddingProvider)
    provider.embed = AsyncMock(side_effect=side_effect, return_value=return_value)
    provider.get_provider_name.return_value = "mock_embedding"
    provider.get_model_name.return_value = "mock-model"
    provider.is_available.return_value = True
    return provider


# ======================================================================
# Preconditions
# ======================================================================


class TestEmbeddingClientPreconditions:
    @pytest.mark.asyncio
    async def test_no_provider_fails_fast(self) -> None:
        client = EmbeddingClient(None)
        with pytest.raises(EmbeddingError, match="No embedding provider"):
            await client.embed_batch(["text"])

    @pytest.mark.asyncio
    async def test_unavailable_provider_fails_fast(self) -> None:
        provider = FakeEmbeddingProvider(available=False)
        client = EmbeddingClient(provider)
        with pytest.raises(EmbeddingError) as exc_info:
            await client.embed_batch(["text"])
        assert exc_info.value.provider_name == "fake_embedding"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_empty_input_returns_empty_list(self) -> None:
        provider = FakeEmbeddingProvider()
        client = EmbeddingClient(provider)
        assert await client.embed_batch([]) == []
        assert provider.calls == []

    def test_batch_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            EmbeddingClient(FakeEmbeddingProvider(), batch_size=0)


# ======================================================================
# Batching and ordering
# ======================================================================


class TestEmbeddingClientBatching:
    @pytest.mark.asyncio
    async def test_splits_into_batches(self) -> None:
        provider = FakeEmbeddingProvider()
        client = EmbeddingClient(provider, batch_size=20, rate_limit_delay=0.0)
        texts = [f"text {i}" for i in range(45)]

        await client.embed_batch(texts)

        assert [len(batch) for batch in provider.calls] == [20, 20, 5]

    @pytest.mark.asyncio
    async def test_preserves_input_order_across_batches(self) -> None:
        provider = FakeEmbeddingProvider(dimensions=16)
        client = EmbeddingClient(provider, batch_size=3, rate_limit_delay=0.0)
        texts = [f"distinct passage number {i}" for i in range(10)]

        results = await client.embed_batch(texts)

        expected = [(await provider.embed_single(t)) for t in texts]
        assert [r.vector for r in results] == expected

    @pytest.mark.asyncio
    async def test_results_carry_model_and_dimensions(self) -> None:
        client = EmbeddingClient(
            FakeEmbeddingProvider(dimensions=24, model="m1"), rate_limit_delay=0.0
        )
        result = await client.embed("hello")
        assert result.model == "m1"
        assert result.dimensions == 24
        assert len(result.vector) == 24

    @pytest.mark.asyncio
    async def test_progress_reports_after_each_batch(self) -> None:
        client = EmbeddingClient(FakeEmbeddingProvider(), batch_size=2, rate_limit_delay=0.0)
        seen: list[tuple[int, int]] = []

        await client.embed_batch(["a", "b", "c", "d", "e"], on_progress=lambda d, t: seen.append((d, t)))

        assert seen == [(2, 5), (4, 5), (5, 5)]

    @pytest.mark.asyncio
    async def test_async_progress_callback_is_awaited(self) -> None:
        client = EmbeddingClient(FakeEmbeddingProvider(), batch_size=1, rate_limit_delay=0.0)
        callback = AsyncMock()

        await client.embed_batch(["a", "b"], on_progress=callback)

        assert callback.await_count == 2

    @pytest.mark.asyncio
    async def test_rate_limit_pause_between_batches_only(self) -> None:
        client = EmbeddingClient(FakeEmbeddingProvider(), batch_size=2, rate_limit_delay=0.25)
        with patch(
            "knowledge_rag.services.ingestion.embedding_client.asyncio.sleep",
            new=AsyncMock(),
        ) as sleep:
            await client.embed_batch(["a", "b", "c", "d", "e"])

        assert [c.args[0] for c in sleep.await_args_list] == [0.25, 0.25]


# ======================================================================
# Retries
# ======================================================================


class TestEmbeddingClientRetries:
    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff_then_succeeds(self) -> None:
        provider = _mock_provider(
            side_effect=[RateLimitError(), RateLimitError(), [[0.1, 0.2]]]
        )
        client = EmbeddingClient(provider, max_retries=3, retry_delay=1.0, rate_limit_delay=0.0)

        with patch(
            "knowledge_rag.services.ingestion.embedding_client.asyncio.sleep",
            new=AsyncMock(),
        ) as sleep:
            results = await client.embed_batch(["only"])

        assert results[0].vector == [0.1, 0.2]
        assert provider.embed.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        provider = _mock_provider(side_effect=RuntimeError("connection reset"))
        client = EmbeddingClient(provider, max_retries=3, retry_delay=0.0, rate_limit_delay=0.0)

        with pytest.raises(EmbeddingError, match="after 3 attempts"):
            await client.embed_batch(["a"])

        assert provider.embed.await_count == 3

    @pytest.mark.asyncio
    async def test_embedding_error_is_reraised_unchanged(self) -> None:
        error = RateLimitError(message="slow down", provider_name="mock_embedding")
        provider = _mock_provider(side_effect=error)
        client = EmbeddingClient(provider, max_retries=2, retry_delay=0.0)

        with pytest.raises(RateLimitError) as exc_info:
            await client.embed_batch(["a"])

        assert exc_info.value is error

    @pytest.mark.asyncio
    async def test_failure_in_later_batch_returns_nothing(self) -> None:
        provider = _mock_provider(
            side_effect=[[[1.0, 0.0]], RuntimeError("boom"), RuntimeError("boom")]
        )
        client = EmbeddingClient(
            provider, batch_size=1, max_retries=2, retry_delay=0.0, rate_limit_delay=0.0
        )
        with pytest.raises(EmbeddingError):
            await client.embed_batch(["first", "second"])


# ======================================================================
# Validation
# ======================================================================


class TestEmbeddingClientValidation:
    @pytest.mark.asyncio
    async def test_wrong_vector_count_is_an_error(self) -> None:
        provider = _mock_provider(return_value=[[0.1, 0.2]])
        client = EmbeddingClient(provider, max_retries=1)
        with pytest.raises(EmbeddingError, match="1 vectors for 2 inputs"):
            await client.embed_batch(["a", "b"])

    @pytest.mark.asyncio
    async def test_inconsistent_sizes_in_batch_is_an_error(self) -> None:
        provider = _mock_provider(return_value=[[0.1, 0.2], [0.1]])
        client = EmbeddingClient(provider, max_retries=1)
        with pytest.raises(EmbeddingError, match="inconsistent"):
            await client.embed_batch(["a", "b"])

    @pytest.mark.asyncio
    async def test_dimension_change_between_batches_is_an_error(self) -> None:
        provider = _mock_provider(side_effect=[[[0.1, 0.2]], [[0.1, 0.2, 0.3]]])
        client = EmbeddingClient(provider, batch_size=1, max_retries=1, rate_limit_delay=0.0)
        with pytest.raises(EmbeddingError, match="changed dimensionality"):
            await client.embed_batch(["a", "b"])
