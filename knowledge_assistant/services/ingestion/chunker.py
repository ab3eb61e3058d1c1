"""Text chunking with sliding-window overlap and token budgeting.

Splits normalized source text into :class:`~knowledge_assistant.models.knowledge.TextChunk`
objects sized for embedding models (500 estimated tokens with a 50-token
overlap by default).

Token counts are estimated, not measured: text is split on whitespace and
each word counts as ``1 / 0.75`` tokens, i.e. ``tokens = ceil(words / 0.75)``.
The same estimate drives both window sizing and :meth:`TextChunker.estimate_tokens`.

Windowing works over word indices only:

1. Locate every whitespace-delimited word and its character span.
2. A window holds the largest number of words whose estimate still fits
   in ``chunk_size``.
3. The next window starts ``overlap`` tokens' worth of words before the
   previous window's end, so consecutive chunks share trailing/leading
   content.

Every window but the last is full, so only the final chunk can fall below
``min_chunk_size``.  Oversized single words are emitted as-is; truncation
is the embedding client's job.
"""

from __future__ import annotations

import math
import re

import structlog

from knowledge_assistant.models.knowledge import TextChunk
from knowledge_assistant.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

WORDS_PER_TOKEN = 0.75

_WORD = re.compile(r"\S+")


def tokens_for_words(word_count: int) -> int:
    """Estimated token count for *word_count* words."""
    return math.ceil(word_count / WORDS_PER_TOKEN)


def words_for_tokens(token_budget: int) -> int:
    """Largest word count whose estimate does not exceed *token_budget*."""
    return math.floor(token_budget * WORDS_PER_TOKEN)


def window_bounds(
    word_count: int, window_words: int, overlap_words: int
) -> list[tuple[int, int]]:
    """Return ``(start, end)`` word-index pairs for every window.

    ``end`` is exclusive.  Windows advance by ``window_words - overlap_words``
    (at least one word) until the last word is covered.
    """
    bounds: list[tuple[int, int]] = []
    start = 0
    while True:
        end = min(start + window_words, word_count)
        bounds.append((start, end))
        if end >= word_count:
            return bounds
        start = max(end - overlap_words, start + 1)


class TextChunker:
    """Splits text into overlapping, token-bounded chunks.

    Parameters
    ----------
    chunk_size:
        Maximum estimated tokens per chunk (default 500).
    overlap:
        Estimated tokens shared by consecutive chunks (default 50).  Must be
        less than *chunk_size*.
    min_chunk_size:
        Minimum estimated tokens for every chunk except the last
        (default 100).  Must be less than *chunk_size*.
    """

    def __init__(self, chunk_size: int = 500, overlap: int = 50, min_chunk_size: int = 100) -> None:
        if chunk_size <= 0:
            raise ValidationError("Chunk size must be a positive number")
        if overlap < 0:
            raise ValidationError("Overlap cannot be negative")
        if min_chunk_size < 0:
            raise ValidationError("Min chunk size cannot be negative")
        if overlap >= chunk_size:
            raise ValidationError("Overlap must be less than chunk size")
        if min_chunk_size >= chunk_size:
            raise ValidationError("Chunk size must be greater than min chunk size")

        # A window must hold at least one word and still fit the budget;
        # chunk_size=1 rounds down to zero words.
        if words_for_tokens(chunk_size) < 1:
            raise ValidationError("Chunk size is too small to hold a single word")

        self._chunk_size = chunk_size
        self._overlap = overlap
        self._min_chunk_size = min_chunk_size
        self._window_words = words_for_tokens(chunk_size)
        self._overlap_words = words_for_tokens(overlap)

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    @property
    def min_chunk_size(self) -> int:
        return self._min_chunk_size

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str | None) -> list[TextChunk]:
        """Split *text* into overlapping :class:`TextChunk` objects.

        Returns at least one chunk for any non-blank input.

        Raises
        ------
        ValidationError
            If *text* is ``None`` or blank.
        """
        if text is None:
            raise ValidationError("Text cannot be null or undefined")
        if not text.strip():
            raise ValidationError("Text cannot be empty")

        spans = [(m.start(), m.end()) for m in _WORD.finditer(text)]
        bounds = window_bounds(len(spans), self._window_words, self._overlap_words)

        chunks: list[TextChunk] = []
        for position, (first, last) in enumerate(bounds):
            start_index = spans[first][0]
            end_index = spans[last - 1][1]
            chunks.append(
                TextChunk(
                    content=text[start_index:end_index],
                    position=position,
                    tokens=tokens_for_words(last - first),
                    start_index=start_index,
                    end_index=end_index,
                )
            )

        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            total_words=len(spans),
            avg_tokens=sum(c.tokens for c in chunks) // len(chunks),
        )
        return chunks

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Estimate the token count of *text* (``0`` for blank text)."""
        return tokens_for_words(len(text.split()))
