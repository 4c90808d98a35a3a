"""Unit tests for the text chunker: boundaries, overlap, coverage, token estimates."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from knowledge_rag.models.knowledge import ChunkingOptions, TextChunk
from knowledge_rag.services.ingestion.chunker import TextChunker, estimate_tokens, normalize_text


def _assert_covers(text: str, chunks: list[TextChunk]) -> None:
    """Chunks start at 0, end at len(text), overlap or touch, and slice the source."""
    assert chunks[0].start_offset == 0
    assert chunks[-1].end_offset == len(text)
    for previous, current in zip(chunks, chunks[1:]):
        assert current.start_offset <= previous.end_offset
        assert current.end_offset > previous.end_offset
    for index, chunk in enumerate(chunks):
        assert chunk.index == index
        assert chunk.text == text[chunk.start_offset : chunk.end_offset]
        assert chunk.text.strip()


def _reconstruct(text: str, chunks: list[TextChunk]) -> str:
    rebuilt = chunks[0].text
    for previous, current in zip(chunks, chunks[1:]):
        rebuilt += text[previous.end_offset : current.end_offset]
    return rebuilt


# ======================================================================
# normalize_text / estimate_tokens
# ======================================================================


class TestNormalizeText:
    def test_collapses_long_newline_runs(self) -> None:
        assert normalize_text("a\n\n\n\n\n\nb") == "a\n\n\nb"

    def test_keeps_three_newlines(self) -> None:
        assert normalize_text("a\n\n\nb") == "a\n\n\nb"

    def test_converts_crlf_and_strips(self) -> None:
        assert normalize_text("  one\r\ntwo\rthree  \n") == "one\ntwo\nthree"

    def test_whitespace_only_becomes_empty(self) -> None:
        assert normalize_text(" \n\t\n ") == ""


class TestEstimateTokens:
    def test_empty(self) -> None:
        assert estimate_tokens("") == 0

    def test_latin_text_is_chars_over_four(self) -> None:
        assert estimate_tokens("abcdefgh") == 2
        assert estimate_tokens("abcdefghi") == 3

    def test_cjk_text_is_chars_over_one_and_a_half(self) -> None:
        assert estimate_tokens("日本語") == 2

    def test_is_deterministic(self) -> None:
        text = "Mixed 文字 text"
        assert estimate_tokens(text) == estimate_tokens(text)


# ======================================================================
# ChunkingOptions
# ======================================================================


class TestChunkingOptions:
    def test_defaults(self) -> None:
        options = ChunkingOptions()
        assert (options.chunk_size, options.chunk_overlap, options.min_chunk_size) == (500, 50, 100)

    def test_overlap_must_be_below_half_of_size(self) -> None:
        with pytest.raises(ValidationError):
            ChunkingOptions(chunk_size=100, chunk_overlap=50)

    def test_size_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ChunkingOptions(chunk_size=0, chunk_overlap=0)


# ======================================================================
# TextChunker
# ======================================================================


class TestTextChunker:
    @pytest.fixture()
    def chunker(self) -> TextChunker:
        return TextChunker(ChunkingOptions(chunk_size=100, chunk_overlap=20, min_chunk_size=10))

    def test_empty_and_whitespace_yield_no_chunks(self, chunker: TextChunker) -> None:
        assert chunker.chunk("") == []
        assert chunker.chunk("   \n\n  ") == []

    def test_short_text_is_one_chunk(self, chunker: TextChunker) -> None:
        chunks = chunker.chunk("A single short sentence.")
        assert len(chunks) == 1
        assert chunks[0].text == "A single short sentence."
        assert chunks[0].token_estimate == estimate_tokens("A single short sentence.")

    def test_prefers_paragraph_boundaries(self, chunker: TextChunker) -> None:
        first = "First paragraph talks about chunk sizes and overlap rules here."
        second = "Second paragraph is about embeddings and how vectors are stored."
        text = f"{first}\n\n{second}"

        chunks = chunker.chunk(text)

        assert len(chunks) == 2
        assert chunks[0].text == f"{first}\n\n"
        _assert_covers(text, chunks)

    def test_falls_back_to_sentence_boundaries(self) -> None:
        chunker = TextChunker(ChunkingOptions(chunk_size=70, chunk_overlap=10, min_chunk_size=5))
        text = (
            "Retrieval needs good chunks. Chunks should end at sentences. "
            "Otherwise context gets cut. That hurts answers."
        )
        chunks = chunker.chunk(text)
        assert chunks[0].text.endswith(". ")
        _assert_covers(text, chunks)

    def test_abbreviation_is_not_a_sentence_end(self) -> None:
        chunker = TextChunker(ChunkingOptions(chunk_size=40, chunk_overlap=5, min_chunk_size=5))
        text = "The meeting was long, we spoke with Dr. Smith about the results today."
        chunks = chunker.chunk(text)
        assert not chunks[0].text.endswith("Dr. ")
        assert chunks[0].text == "The meeting was long, "
        _assert_covers(text, chunks)

    def test_hard_cut_without_any_boundary(self) -> None:
        chunker = TextChunker(ChunkingOptions(chunk_size=50, chunk_overlap=10, min_chunk_size=5))
        text = "x" * 180
        chunks = chunker.chunk(text)
        assert len(chunks[0].text) == 50
        _assert_covers(text, chunks)
        assert _reconstruct(text, chunks) == text

    def test_chunks_overlap(self, chunker: TextChunker) -> None:
        text = " ".join(f"word{i}" for i in range(120))
        chunks = chunker.chunk(text)
        assert len(chunks) > 2
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start_offset < previous.end_offset

    def test_long_text_reconstructs_exactly(self, chunker: TextChunker) -> None:
        paragraphs = [
            f"Paragraph {n} explains a detail of the indexing pipeline, step {n}. "
            f"It has a second sentence, with a clause; and a third part."
            for n in range(12)
        ]
        text = "\n\n".join(paragraphs)
        chunks = chunker.chunk(text)
        _assert_covers(text, chunks)
        assert _reconstruct(text, chunks) == text

    def test_no_chunk_exceeds_size_plus_min(self, chunker: TextChunker) -> None:
        text = " ".join(f"token{i}" for i in range(400))
        for chunk in chunker.chunk(text):
            assert len(chunk.text.lstrip()) <= 100 + 10

    def test_small_tail_is_merged(self) -> None:
        chunker = TextChunker(ChunkingOptions(chunk_size=60, chunk_overlap=0, min_chunk_size=30))
        text = "This first part is long enough to fill most of a chunk ok.\n\nTail."
        chunks = chunker.chunk(text)
        assert len(chunks) == 1
        assert chunks[0].end_offset == len(text)

    def test_cjk_punctuation_is_a_boundary(self) -> None:
        chunker = TextChunker(ChunkingOptions(chunk_size=24, chunk_overlap=0, min_chunk_size=2))
        text = "これは最初の文です。これは二番目の文です。これは三番目の文です。"
        chunks = chunker.chunk(text)
        assert chunks[0].text.endswith("。")
        _assert_covers(text, chunks)

    def test_per_call_options_override_defaults(self, chunker: TextChunker) -> None:
        text = " ".join(f"w{i}" for i in range(100))
        default_chunks = chunker.chunk(text)
        larger = chunker.chunk(
            text, ChunkingOptions(chunk_size=1000, chunk_overlap=0, min_chunk_size=0)
        )
        assert len(larger) == 1
        assert len(default_chunks) > 1

    def test_is_deterministic(self, chunker: TextChunker) -> None:
        text = "Same input. " * 40
        assert chunker.chunk(text) == chunker.chunk(text)
