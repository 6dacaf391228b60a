"""Text chunking with overlapping windows and paragraph boundary preservation.

Splits extracted document text into ordered
:class:`~ragcore.models.chunk.TextChunk` objects sized in characters
(default 1000 with 200 characters of overlap).

Two strategies:

1. **grouped** (default) -- paragraphs (blank-line separated) are packed
   greedily into a chunk until the next one would exceed ``chunk_size``.
   The next chunk then opens with overlap from the previous one:

   * ``preserve_paragraphs=True``: whole trailing paragraphs whose combined
     length fits in ``overlap`` are repeated, so a paragraph may appear in
     two chunks but is never cut mid-sentence.
   * ``preserve_paragraphs=False``: the trailing ``overlap`` characters of
     the previous chunk (snapped forward to a word boundary) are prefixed.

2. **paragraph** -- exactly one chunk per paragraph, no overlap.

A paragraph longer than ``chunk_size`` always becomes its own chunk.
Paragraphs are never dropped: ``chunk.text[chunk.overlap_length:]`` is each
chunk's own segment, and those segments in index order cover every
paragraph of the input.

Token counts are whitespace word counts, an approximation of model tokens.
"""

from __future__ import annotations

import re
from typing import Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from ragcore.models.chunk import TextChunk
from ragcore.services.chunk_classifier import classify_chunk

logger = structlog.get_logger(logger_name=__name__)

_PARAGRAPH_SEPARATOR = "\n\n"


class ChunkingOptions(BaseModel):
    """Size, overlap and strategy for :class:`TextChunker`."""

    model_config = ConfigDict(frozen=True)

    chunk_size: int = Field(default=1000, gt=0)
    overlap: int = Field(default=200, ge=0)
    preserve_paragraphs: bool = True
    strategy: Literal["grouped", "paragraph"] = "grouped"

    @model_validator(mode="after")
    def _overlap_below_size(self) -> ChunkingOptions:
        if self.overlap >= self.chunk_size:
            raise ValueError("overlap must be smaller than chunk_size")
        return self


def count_tokens(text: str) -> int:
    """Approximate token count: number of whitespace-delimited words."""
    return len(text.split())


class TextChunker:
    """Splits text into ordered, typed chunks.

    Parameters
    ----------
    options:
        Default options; :meth:`split` accepts per-call overrides.
    """

    def __init__(self, options: ChunkingOptions | None = None) -> None:
        self._options = options or ChunkingOptions()

    @property
    def options(self) -> ChunkingOptions:
        return self._options

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def split(self, text: str, options: ChunkingOptions | None = None) -> list[TextChunk]:
        """Split *text* into chunks with zero-based indices in emission order.

        Empty or whitespace-only text yields an empty list.
        """
        opts = options or self._options
        if not text or not text.strip():
            return []

        paragraphs = self._split_paragraphs(text)
        if opts.strategy == "paragraph":
            windows = [(para, 0) for para in paragraphs]
        else:
            windows = self._accumulate_chunks(paragraphs, opts)

        chunks = [
            TextChunk(
                index=index,
                text=chunk_text,
                chunk_type=classify_chunk(chunk_text[overlap_length:], index),
                token_count=count_tokens(chunk_text),
                overlap_length=overlap_length,
            )
            for index, (chunk_text, overlap_length) in enumerate(windows)
        ]

        logger.debug(
            "chunking_complete",
            strategy=opts.strategy,
            num_paragraphs=len(paragraphs),
            num_chunks=len(chunks),
            avg_chars=sum(len(c.text) for c in chunks) // len(chunks),
        )
        return chunks

    # ------------------------------------------------------------------
    # Paragraph splitting
    # ------------------------------------------------------------------

    @staticmethod
    def _split_paragraphs(text: str) -> list[str]:
        """Split *text* on blank lines, discarding blanks."""
        parts = re.split(r"\n\s*\n", text.replace("\r\n", "\n"))
        return [p.strip() for p in parts if p.strip()]

    # ------------------------------------------------------------------
    # Chunk accumulation
    # ------------------------------------------------------------------

    def _accumulate_chunks(
        self, paragraphs: list[str], opts: ChunkingOptions
    ) -> list[tuple[str, int]]:
        """Pack paragraphs into ``(chunk_text, overlap_length)`` windows.

        Greedily packs paragraphs into the current chunk until adding the
        next paragraph would exceed ``chunk_size``, then flushes and starts
        a new chunk carrying the configured overlap.
        """
        windows: list[tuple[str, int]] = []
        overlap_prefix = ""
        own_parts: list[str] = []

        def current_length() -> int:
            body = _PARAGRAPH_SEPARATOR.join(own_parts)
            if overlap_prefix and own_parts:
                return len(overlap_prefix) + len(_PARAGRAPH_SEPARATOR) + len(body)
            return len(overlap_prefix) + len(body)

        def flush() -> None:
            body = _PARAGRAPH_SEPARATOR.join(own_parts)
            if overlap_prefix:
                windows.append(
                    (
                        overlap_prefix + _PARAGRAPH_SEPARATOR + body,
                        len(overlap_prefix) + len(_PARAGRAPH_SEPARATOR),
                    )
                )
            else:
                windows.append((body, 0))

        for para in paragraphs:
            # Oversized paragraph: flush, then emit it alone.
            if len(para) > opts.chunk_size:
                if own_parts:
                    flush()
                windows.append((para, 0))
                own_parts = []
                overlap_prefix = ""
                continue

            projected = current_length() + len(_PARAGRAPH_SEPARATOR) + len(para)
            if own_parts and projected > opts.chunk_size:
                flush()
                previous_text = windows[-1][0]
                previous_parts = (
                    self._split_paragraphs(overlap_prefix) + own_parts
                    if overlap_prefix
                    else list(own_parts)
                )
                overlap_prefix = self._build_overlap(previous_text, previous_parts, opts)
                own_parts = []

            # Drop the overlap if it leaves no room for the next paragraph.
            if (
                overlap_prefix
                and len(overlap_prefix) + len(_PARAGRAPH_SEPARATOR) + len(para) > opts.chunk_size
            ):
                overlap_prefix = ""

            own_parts.append(para)

        if own_parts:
            flush()

        return windows

    def _build_overlap(
        self, previous_text: str, previous_parts: list[str], opts: ChunkingOptions
    ) -> str:
        """Return the text to repeat at the start of the next chunk."""
        if opts.overlap <= 0:
            return ""
        if opts.preserve_paragraphs:
            return self._build_paragraph_overlap(previous_parts, opts.overlap)
        return self._build_character_overlap(previous_text, opts.overlap)

    @staticmethod
    def _build_paragraph_overlap(parts: list[str], overlap: int) -> str:
        """Return tail paragraphs of *parts* whose joined length is <= *overlap*."""
        overlap_parts: list[str] = []
        for text in reversed(parts):
            candidate = [text, *overlap_parts]
            if len(_PARAGRAPH_SEPARATOR.join(candidate)) > overlap:
                break
            overlap_parts = candidate
        return _PARAGRAPH_SEPARATOR.join(overlap_parts)

    @staticmethod
    def _build_character_overlap(previous_text: str, overlap: int) -> str:
        """Return the last *overlap* characters, starting at a word boundary."""
        tail = previous_text[-overlap:]
        if len(tail) < len(previous_text) and not previous_text[-overlap - 1].isspace():
            # Started mid-word: skip to the next whitespace.
            match = re.search(r"\s", tail)
            tail = tail[match.end():] if match else ""
        return tail.strip()
