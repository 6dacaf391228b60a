"""Unit tests for the heuristic chunk classifier."""

from __future__ import annotations

import pytest

from ragcore.models.chunk import ChunkType
from ragcore.services.chunk_classifier import classify_chunk


class TestContact:
    @pytest.mark.parametrize(
        "text",
        [
            "Contact Information: 80 Lat Phrao Road, Bangkok",
            "Write to info@example.org for details.",
            "Call us on +66 2 026 2333 during office hours.",
            "Phone: 555 0100",
        ],
    )
    def test_contact_markers(self, text: str) -> None:
        assert classify_chunk(text, 3) is ChunkType.CONTACT

    def test_contact_wins_over_vision(self) -> None:
        assert classify_chunk("Vision: reach us at hello@example.org", 2) is ChunkType.CONTACT


class TestVision:
    @pytest.mark.parametrize("text", ["Vision: a connected nation.", "Our vision - growth for all"])
    def test_vision_prefix(self, text: str) -> None:
        assert classify_chunk(text, 4) is ChunkType.VISION

    def test_vision_mid_sentence_is_content(self) -> None:
        assert classify_chunk("We share a vision: progress.", 4) is ChunkType.CONTENT


class TestList:
    def test_marker(self) -> None:
        assert classify_chunk("Strategic Goals: grow and expand", 2) is ChunkType.LIST

    def test_bulleted_lines(self) -> None:
        assert classify_chunk("Services\n- audits\n- training", 2) is ChunkType.LIST

    def test_enumerated_lines(self) -> None:
        assert classify_chunk("1. first\n2) second", 2) is ChunkType.LIST

    def test_single_bullet_is_not_a_list(self) -> None:
        assert classify_chunk("- only one item here", 2) is ChunkType.CONTENT


class TestHeader:
    def test_markdown_heading_anywhere(self) -> None:
        assert classify_chunk("## Programme overview\nDetails follow.", 5) is ChunkType.HEADER

    def test_short_first_chunk(self) -> None:
        assert classify_chunk("Annual Report 2024", 0) is ChunkType.HEADER

    def test_short_line_later_is_content(self) -> None:
        assert classify_chunk("Annual Report 2024", 3) is ChunkType.CONTENT

    def test_first_chunk_with_title_line(self) -> None:
        text = "Safety Data Sheet\nThis sheet lists the hazards of the product."
        assert classify_chunk(text, 0) is ChunkType.HEADER

    def test_first_chunk_opening_with_sentence(self) -> None:
        text = "This sheet lists the hazards.\nIt is reviewed yearly by the team."
        assert classify_chunk(text, 0) is ChunkType.CONTENT


class TestContent:
    def test_blank(self) -> None:
        assert classify_chunk("   ", 0) is ChunkType.CONTENT

    def test_prose(self) -> None:
        text = "The agency funds research and publishes an annual report on its activities."
        assert classify_chunk(text, 1) is ChunkType.CONTENT
