"""Structure-aware text chunking with overlapping windows.

Splits normalised document text into :class:`~knowledge_rag.models.knowledge.TextChunk`
segments sized for embedding models.

Each window is at most ``chunk_size`` characters (counted from its first
non-whitespace character).  Inside the second half of the window the
chunker looks for the strongest available boundary, in priority order:
section breaks, paragraph breaks, line breaks, sentence ends (Latin and
CJK punctuation), clause punctuation, and finally plain spaces.  A hard
cut is used only when none exists.  Sentence ends preceded by a common
abbreviation ("Dr.", "vs.", ...) are not treated as boundaries.

Guarantees for any text with non-whitespace content:

- every chunk's ``text`` equals ``source[start_offset:end_offset]``
- the first chunk starts at 0 and the last one ends at ``len(source)``
- each chunk starts at or before the previous chunk's end (overlap) and
  ends strictly after it, so dropping the overlap reconstructs the source
- no chunk is empty or whitespace-only
"""

from __future__ import annotations

import math
import re

import structlog

from knowledge_rag.models.knowledge import ChunkingOptions, TextChunk

logger = structlog.get_logger(logger_name=__name__)

# Boundary separators, strongest first.  The split point is placed after
# the separator so it stays with the preceding chunk.
_SEPARATORS: tuple[str, ...] = (
    "\n\n\n",
    "\n\n",
    "\n",
    "。",
    ". ",
    "！",
    "! ",
    "？",
    "? ",
    "；",
    "; ",
    "，",
    ", ",
    " ",
)

# Common abbreviations that should NOT end a sentence ("Dr. Smith").
_ABBREVIATIONS = frozenset(
    {
        "dr", "mr", "mrs", "ms", "prof", "jr", "sr", "st", "vs", "etc",
        "e.g", "i.e", "approx", "dept", "fig", "inc", "ltd", "co", "no", "vol",
    }
)

_CJK_RE = re.compile(r"[぀-ヿ㐀-䶿一-鿿가-힯豈-﫿]")
_NON_SPACE_RE = re.compile(r"\S")
_WHITESPACE_RE = re.compile(r"\s+")
_EXCESS_NEWLINES_RE = re.compile(r"\n{4,}")
_LAST_WORD_RE = re.compile(r"([A-Za-z][A-Za-z.]*)$")


def normalize_text(text: str) -> str:
    """Normalise line endings, collapse 4+ newlines to 3, and strip the ends.

    Documents store the normalised text so chunk offsets index into it.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _EXCESS_NEWLINES_RE.sub("\n\n\n", text)
    return text.strip()


def estimate_tokens(text: str) -> int:
    """Deterministic token estimate: CJK chars / 1.5 plus other chars / 4."""
    if not text:
        return 0
    cjk = len(_CJK_RE.findall(text))
    other = len(text) - cjk
    return math.ceil(cjk / 1.5 + other / 4)


class TextChunker:
    """Splits text into overlapping, boundary-aligned chunks.

    Parameters
    ----------
    options:
        Default size bounds; individual :meth:`chunk` calls may override them.
    """

    def __init__(self, options: ChunkingOptions | None = None) -> None:
        self._options = options or ChunkingOptions()

    @property
    def options(self) -> ChunkingOptions:
        return self._options

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str, options: ChunkingOptions | None = None) -> list[TextChunk]:
        """Split *text* into ordered chunks with offsets and token estimates.

        Parameters
        ----------
        text:
            Text to split, normally already passed through :func:`normalize_text`.
        options:
            Overrides the chunker's default options for this call.

        Returns
        -------
        list[TextChunk]
            Empty only when *text* is empty or whitespace-only.
        """
        opts = options or self._options
        if not text or not text.strip():
            return []

        spans = self._split_spans(text, opts)
        chunks = [
            TextChunk(
                text=text[start:end],
                index=index,
                start_offset=start,
                end_offset=end,
                token_estimate=estimate_tokens(text[start:end]),
            )
            for index, (start, end) in enumerate(spans)
        ]

        logger.debug(
            "text_chunked",
            chars=len(text),
            chunks=len(chunks),
            chunk_size=opts.chunk_size,
            overlap=opts.chunk_overlap,
        )
        return chunks

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _split_spans(self, text: str, opts: ChunkingOptions) -> list[tuple[int, int]]:
        """Compute (start, end) spans covering *text*."""
        length = len(text)
        spans: list[tuple[int, int]] = []
        start = 0

        while start < length:
            content = _NON_SPACE_RE.search(text, start)
            if content is None:
                # Only whitespace remains; it belongs to the previous chunk.
                if spans:
                    spans[-1] = (spans[-1][0], length)
                break

            content_start = content.start()
            window_end = min(content_start + opts.chunk_size, length)

            if window_end >= length:
                end = length
            else:
                end = self._find_split_point(text, content_start, window_end)
                remainder = text[end:]
                if not remainder.strip() or (
                    len(remainder) < opts.min_chunk_size
                    and length - content_start <= opts.chunk_size + opts.min_chunk_size
                ):
                    end = length

            spans.append((start, end))
            if end >= length:
                break
            start = self._next_start(text, end, opts.chunk_overlap)

        return spans

    def _find_split_point(self, text: str, window_start: int, window_end: int) -> int:
        """Return the best boundary in the second half of the window."""
        search_from = window_start + (window_end - window_start) // 2

        for separator in _SEPARATORS:
            pos = text.rfind(separator, search_from, window_end)
            while pos != -1:
                if separator == ". " and self._ends_with_abbreviation(text, pos):
                    pos = text.rfind(separator, search_from, pos)
                    continue
                return pos + len(separator)

        return window_end

    @staticmethod
    def _ends_with_abbreviation(text: str, period_pos: int) -> bool:
        match = _LAST_WORD_RE.search(text[max(0, period_pos - 12):period_pos])
        return bool(match) and match.group(1).lower() in _ABBREVIATIONS

    @staticmethod
    def _next_start(text: str, end: int, overlap: int) -> int:
        """Step back *overlap* chars from *end*, then forward to a word boundary."""
        if overlap <= 0:
            return end
        start = end - overlap
        gap = _WHITESPACE_RE.search(text, start, end)
        if gap is not None and gap.end() < end:
            return gap.end()
        return start
