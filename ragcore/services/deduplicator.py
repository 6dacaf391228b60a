"""Content fingerprinting and duplicate collapsing for chunks.

A fingerprint is the SHA-256 hex digest of the chunk text after
normalisation (trimmed, every whitespace run collapsed to one space), so
two chunks with the same words produce the same fingerprint regardless of
source document, chunk index or line wrapping.

The storage-side half of deduplication (atomic insert-or-touch keyed on the
fingerprint) lives in :meth:`ragcore.interfaces.chunk_store.IChunkStore.upsert_chunk`.
"""

from __future__ import annotations

import hashlib
import re
from typing import TYPE_CHECKING, TypeVar

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from ragcore.interfaces.chunk_store import IChunkStore

logger = structlog.get_logger(logger_name=__name__)

_WHITESPACE_RUN = re.compile(r"\s+")

T = TypeVar("T")


def normalize_text(text: str) -> str:
    """Trim *text* and collapse every whitespace run to a single space."""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def fingerprint(text: str) -> str:
    """Return the SHA-256 hex digest of the normalised *text*."""
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


class ContentDeduplicator:
    """Collapses duplicate chunks within a run and against the chunk store."""

    def fingerprint(self, text: str) -> str:
        return fingerprint(text)

    def collapse(self, items: list[T], text_of: Callable[[T], str]) -> list[tuple[T, str]]:
        """Drop in-run duplicates, keeping the first occurrence.

        Returns ``(item, fingerprint)`` pairs in input order.
        """
        seen: set[str] = set()
        unique: list[tuple[T, str]] = []
        for item in items:
            fp = fingerprint(text_of(item))
            if fp in seen:
                continue
            seen.add(fp)
            unique.append((item, fp))

        dropped = len(items) - len(unique)
        if dropped:
            logger.debug("in_run_duplicates_collapsed", dropped=dropped, kept=len(unique))
        return unique

    async def partition(
        self, items: list[tuple[T, str]], store: IChunkStore
    ) -> tuple[list[tuple[T, str]], list[tuple[T, str]]]:
        """Split fingerprinted items into ``(new, already_stored)``."""
        if not items:
            return [], []
        existing = await store.existing_fingerprints([fp for _, fp in items])
        new = [pair for pair in items if pair[1] not in existing]
        known = [pair for pair in items if pair[1] in existing]
        return new, known
