"""Heuristic structural classification of chunks.

:func:`classify_chunk` is a pure function of the chunk text and its
position, kept apart from the chunker so a model-based classifier can
replace it without touching chunking or storage.  The result is advisory
metadata only; deduplication and retrieval correctness never depend on it.

Rules are evaluated in order; the first match wins:

    1. contact : "Contact Information:"-style marker, an email address,
                 or an international phone number
    2. vision  : first line opens with "Vision:" / "Our vision:"
    3. list    : "Key Initiatives:" / "Strategic Goals:" marker, or at
                 least two bulleted / enumerated lines
    4. header  : Markdown heading, or the first chunk when it is a short
                 single line or opens with a title-like line
    5. content : everything else
"""

from __future__ import annotations

import re

from ragcore.models.chunk import ChunkType

_CONTACT_MARKER = re.compile(
    r"\b(contact\s+(information|details|us)|e-?mail\s*:|phone\s*:|tel\s*:)",
    re.IGNORECASE,
)
_EMAIL = re.compile(r"[\w.+-]+@[\w-]+(\.[\w-]+)+")
_PHONE = re.compile(r"\+\d[\d\s().-]{6,}\d")

_VISION_MARKER = re.compile(r"^\s*(our\s+)?vision\s*[:\-]", re.IGNORECASE)

_LIST_MARKER = re.compile(r"\b(key\s+initiatives|strategic\s+goals)\s*:", re.IGNORECASE)
_LIST_ITEM = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+\S")

_MARKDOWN_HEADING = re.compile(r"^\s*#{1,6}\s+\S")

# A first chunk this short (in words) with no line break reads as a title.
_HEADER_MAX_WORDS = 15
_TITLE_LINE_MAX_WORDS = 10


def classify_chunk(text: str, index: int) -> ChunkType:
    """Return the structural type of a chunk.

    Parameters
    ----------
    text:
        The chunk text.
    index:
        Zero-based position of the chunk within its document.
    """
    stripped = text.strip()
    if not stripped:
        return ChunkType.CONTENT

    lines = [line for line in stripped.splitlines() if line.strip()]
    first_line = lines[0].strip()

    if _CONTACT_MARKER.search(stripped) or _EMAIL.search(stripped) or _PHONE.search(stripped):
        return ChunkType.CONTACT

    if _VISION_MARKER.match(first_line):
        return ChunkType.VISION

    if _LIST_MARKER.search(stripped):
        return ChunkType.LIST
    if sum(1 for line in lines if _LIST_ITEM.match(line)) >= 2:
        return ChunkType.LIST

    if _MARKDOWN_HEADING.match(first_line):
        return ChunkType.HEADER
    if index == 0:
        if len(lines) == 1 and len(stripped.split()) <= _HEADER_MAX_WORDS:
            return ChunkType.HEADER
        if len(lines) > 1 and _is_title_like(first_line):
            return ChunkType.HEADER

    return ChunkType.CONTENT


def _is_title_like(line: str) -> bool:
    """A short line without sentence-ending punctuation."""
    return len(line.split()) <= _TITLE_LINE_MAX_WORDS and not line.rstrip().endswith(
        (".", "!", "?", ":", ";", ",")
    )
