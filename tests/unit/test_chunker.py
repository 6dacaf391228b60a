"""Unit tests for the TextChunker: paragraph-aware overlapping text chunking."""

from __future__ import annotations

import re

import pytest

from ragcore.models.chunk import ChunkType
from ragcore.services.chunker import ChunkingOptions, TextChunker, count_tokens
from tests.fakes import DEPA_PARAGRAPHS, DEPA_TEXT

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _paragraphs(text: str) -> list[str]:
    return [p.strip() for p in re.split(r"\n\s*\n", text) if p.strip()]


def _make_chunker(chunk_size: int = 200, overlap: int = 40, **kwargs) -> TextChunker:
    """Build a TextChunker with a predictable configuration."""
    return TextChunker(ChunkingOptions(chunk_size=chunk_size, overlap=overlap, **kwargs))


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class TestChunkingOptions:
    def test_defaults(self) -> None:
        opts = ChunkingOptions()
        assert opts.chunk_size == 1000
        assert opts.overlap == 200
        assert opts.preserve_paragraphs is True
        assert opts.strategy == "grouped"

    def test_overlap_must_be_smaller_than_size(self) -> None:
        with pytest.raises(ValueError):
            ChunkingOptions(chunk_size=100, overlap=100)

    def test_unknown_strategy_rejected(self) -> None:
        with pytest.raises(ValueError):
            ChunkingOptions(strategy="sentence")

    def test_count_tokens_is_word_count(self) -> None:
        assert count_tokens("one two  three\nfour") == 4
        assert count_tokens("") == 0


# ---------------------------------------------------------------------------
# Empty input
# ---------------------------------------------------------------------------


class TestEmptyInput:
    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t\n"])
    def test_blank_text_yields_no_chunks(self, text: str) -> None:
        assert _make_chunker().split(text) == []


# ---------------------------------------------------------------------------
# Paragraph strategy
# ---------------------------------------------------------------------------


class TestParagraphStrategy:
    """One chunk per paragraph, typed by the classifier."""

    def test_one_chunk_per_paragraph(self) -> None:
        chunker = TextChunker(ChunkingOptions(strategy="paragraph"))
        chunks = chunker.split(DEPA_TEXT)

        assert [c.index for c in chunks] == list(range(8))
        assert [c.text for c in chunks] == list(DEPA_PARAGRAPHS)
        assert all(c.overlap_length == 0 for c in chunks)

    def test_chunk_types(self) -> None:
        chunker = TextChunker(ChunkingOptions(strategy="paragraph"))
        types = [c.chunk_type for c in chunker.split(DEPA_TEXT)]

        assert types == [
            ChunkType.HEADER,
            ChunkType.CONTENT,
            ChunkType.LIST,
            ChunkType.LIST,
            ChunkType.CONTENT,
            ChunkType.CONTACT,
            ChunkType.VISION,
            ChunkType.CONTENT,
        ]

    def test_per_call_options_override_defaults(self) -> None:
        chunker = _make_chunker(chunk_size=5000, overlap=0)
        assert len(chunker.split(DEPA_TEXT)) == 1
        chunks = chunker.split(DEPA_TEXT, ChunkingOptions(strategy="paragraph"))
        assert len(chunks) == len(DEPA_PARAGRAPHS)

    def test_windows_line_endings_are_normalised(self) -> None:
        chunker = TextChunker(ChunkingOptions(strategy="paragraph"))
        chunks = chunker.split("First block\r\n\r\nSecond block")
        assert [c.text for c in chunks] == ["First block", "Second block"]


# ---------------------------------------------------------------------------
# Grouped strategy
# ---------------------------------------------------------------------------


class TestGroupedStrategy:
    def test_short_text_is_a_single_chunk(self) -> None:
        chunks = _make_chunker(chunk_size=1000, overlap=200).split("alpha\n\nbeta")
        assert len(chunks) == 1
        assert chunks[0].text == "alpha\n\nbeta"
        assert chunks[0].index == 0

    def test_indices_are_contiguous(self) -> None:
        chunks = _make_chunker(chunk_size=150, overlap=40).split(DEPA_TEXT)
        assert len(chunks) > 1
        assert [c.index for c in chunks] == list(range(len(chunks)))

    @pytest.mark.parametrize("preserve", [True, False])
    def test_own_segments_cover_every_paragraph(self, preserve: bool) -> None:
        chunks = _make_chunker(
            chunk_size=150, overlap=40, preserve_paragraphs=preserve
        ).split(DEPA_TEXT)

        covered = [p for c in chunks for p in _paragraphs(c.own_text)]
        assert covered == list(DEPA_PARAGRAPHS)

    def test_chunks_respect_size_unless_single_oversized_paragraph(self) -> None:
        size = 120
        chunks = _make_chunker(chunk_size=size, overlap=30).split(DEPA_TEXT)

        for chunk in chunks:
            if len(chunk.text) > size:
                assert chunk.overlap_length == 0
                assert chunk.text in DEPA_PARAGRAPHS

    def test_paragraph_overlap_repeats_whole_tail_paragraphs(self) -> None:
        text = "\n\n".join(f"Paragraph {i} has a few words." for i in range(12))
        chunks = _make_chunker(chunk_size=120, overlap=70).split(text)

        overlapped = [c for c in chunks if c.overlap_length > 0]
        assert overlapped, "Expected at least one chunk to carry overlap"
        for chunk in overlapped:
            previous = chunks[chunk.index - 1]
            prefix = chunk.text[: chunk.overlap_length]
            assert prefix.endswith("\n\n")
            assert previous.text.endswith(prefix[:-2])
            for para in _paragraphs(prefix):
                assert para in _paragraphs(previous.text)

    def test_character_overlap_starts_on_word_boundary(self) -> None:
        chunks = _make_chunker(chunk_size=150, overlap=30, preserve_paragraphs=False).split(
            DEPA_TEXT
        )

        for chunk in chunks:
            if chunk.overlap_length == 0:
                continue
            previous = chunks[chunk.index - 1]
            prefix = chunk.text[: chunk.overlap_length - 2]
            assert len(prefix) <= 30
            assert previous.text.endswith(prefix)
            if len(prefix) < len(previous.text):
                assert previous.text[-len(prefix) - 1].isspace()

    def test_zero_overlap_never_repeats_text(self) -> None:
        chunks = _make_chunker(chunk_size=150, overlap=0).split(DEPA_TEXT)
        assert all(c.overlap_length == 0 for c in chunks)
        assert "\n\n".join(c.text for c in chunks) == DEPA_TEXT

    def test_token_counts(self) -> None:
        for chunk in _make_chunker(chunk_size=150, overlap=40).split(DEPA_TEXT):
            assert chunk.token_count == len(chunk.text.split())

    def test_classification_uses_own_segment(self) -> None:
        text = (
            "The programme began in 2019 with pilots.\n\n"
            "Contact Information: Email team@example.org\n\n"
            "Further programme details follow here."
        )
        chunks = _make_chunker(chunk_size=100, overlap=50).split(text)

        assert len(chunks) == 2
        assert chunks[0].chunk_type is ChunkType.CONTACT
        # The repeated contact paragraph does not make the next chunk a contact chunk.
        assert chunks[1].overlap_length > 0
        assert "team@example.org" in chunks[1].text
        assert chunks[1].chunk_type is ChunkType.CONTENT
