"""Abstract base class for the chunk store.

The chunk store is the only shared mutable resource in the core.  Every
write goes through :meth:`IChunkStore.upsert_chunk`, which is keyed on the
chunk's content fingerprint: a second insert of the same fingerprint never
creates a second row, it only refreshes ``updated_at``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragcore.models.chunk import DocumentChunk
from ragcore.models.retrieval import SearchFilters, StoreSearchResult


# Concrete implementation: SQLiteChunkStore (ragcore/providers/storage/)
class IChunkStore(ABC):
    """Contract for durable chunk storage and similarity query.

    All methods are async so network-backed stores can be swapped in
    without blocking the event loop.
    """

    @abstractmethod
    async def upsert_chunk(self, chunk: DocumentChunk) -> bool:
        """Insert *chunk* unless its fingerprint is already stored.

        The insert-or-touch is atomic: concurrent upserts of the same
        fingerprint yield exactly one row (last writer wins on the
        ``updated_at`` touch).

        Returns
        -------
        bool
            ``True`` if a new row was created, ``False`` on a dedup-hit.

        Raises
        ------
        ragcore.utils.errors.StorageError
            If the write fails.
        """

    @abstractmethod
    async def touch(self, fingerprints: list[str]) -> int:
        """Refresh ``updated_at`` on stored chunks with these fingerprints.

        Returns the number of rows touched.
        """

    @abstractmethod
    async def existing_fingerprints(self, fingerprints: list[str]) -> set[str]:
        """Return the subset of *fingerprints* that are already stored."""

    @abstractmethod
    async def similarity_search(
        self,
        query_embedding: list[float],
        filters: SearchFilters | None = None,
        threshold: float = 0.7,
        limit: int = 10,
        boost_recent: bool = False,
    ) -> StoreSearchResult:
        """Rank stored chunks by similarity to *query_embedding*.

        Parameters
        ----------
        query_embedding:
            Vector of the store's fixed dimension.
        filters:
            Conjunctive pre-filter applied before ranking.
        threshold:
            Minimum base similarity in ``[0, 1]``; lower scores are excluded.
        limit:
            Maximum number of matches, in ``[1, 50]``.
        boost_recent:
            Add a small decaying bonus favouring recently created documents.

        Returns
        -------
        StoreSearchResult
            Matches ordered by descending score, ties broken by ascending
            chunk index.

        Raises
        ------
        ragcore.utils.errors.ValidationError
            If *limit* or *threshold* is out of range, or the embedding has
            the wrong dimension.
        ragcore.utils.errors.StorageError
            If the query fails.
        """

    @abstractmethod
    async def get_chunks(self, document_id: str) -> list[DocumentChunk]:
        """Return a document's stored chunks ordered by chunk index."""

    @abstractmethod
    async def delete_stale(self, document_id: str, keep_fingerprints: set[str]) -> int:
        """Delete a document's chunks whose fingerprint is not in *keep_fingerprints*."""

    @abstractmethod
    async def reposition(self, document_id: str, chunks: list[DocumentChunk]) -> int:
        """Move this document's already-stored rows to the positions in *chunks*.

        Each row is matched by ``content_hash`` and rewritten with the
        chunk's ``chunk_index``, ``chunk_type``, ``token_count`` and
        ``metadata``; text and embedding are left alone.  Rows owned by
        another document are not touched.  Returns the number of rows moved.
        """

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete every chunk belonging to *document_id*; return the count."""

    @abstractmethod
    async def count(self, document_id: str | None = None) -> int:
        """Return the number of stored chunks, optionally for one document."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the fixed embedding dimension this store accepts."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"sqlite"``."""
