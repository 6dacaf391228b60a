"""Abstract base class for document persistence.

The repository owns the ``documents`` record and its append-only
processing log.  Status transitions into ``processing`` happen only through
:meth:`IDocumentRepository.claim_for_processing`, an atomic
compare-and-swap, so the at-most-one-run guarantee holds across processes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from ragcore.models.document import (
    Document,
    DocumentPage,
    DocumentType,
    NewDocument,
    ProcessingLogEntry,
    ProcessingStatus,
)


# Concrete implementation: SQLiteDocumentRepository (ragcore/providers/storage/)
class IDocumentRepository(ABC):
    """Contract for storing documents and their processing state."""

    # -- CRUD -------------------------------------------------------------

    @abstractmethod
    async def create(self, new_document: NewDocument) -> Document:
        """Persist a new document with status ``uploaded``."""

    @abstractmethod
    async def get(self, document_id: str) -> Document:
        """Return the document or raise :class:`~ragcore.utils.errors.NotFoundError`."""

    @abstractmethod
    async def list_documents(
        self,
        organization_id: str | None = None,
        collection_id: str | None = None,
        document_type: DocumentType | None = None,
        status: ProcessingStatus | None = None,
        language: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> DocumentPage:
        """Return one page of documents, newest first."""

    @abstractmethod
    async def update(
        self,
        document_id: str,
        *,
        title: str | None = None,
        document_type: DocumentType | None = None,
        language: str | None = None,
        tags: list[str] | None = None,
    ) -> Document:
        """Update descriptive fields; processing state is not editable here."""

    @abstractmethod
    async def delete(self, document_id: str) -> None:
        """Delete the document and, transitively, its chunks."""

    @abstractmethod
    async def get_text(self, document_id: str) -> str | None:
        """Return the extracted text, or ``None`` if extraction has not succeeded."""

    # -- Processing state ----------------------------------------------------

    @abstractmethod
    async def claim_for_processing(self, document_id: str, force: bool = False) -> Document:
        """Atomically move the document into ``processing``.

        Allowed sources are ``uploaded`` and ``failed``; ``completed`` only
        when *force* is set; ``processing`` only after the previous run has
        acknowledged a cancellation (see :meth:`acknowledge_cancellation`).
        On success an ``ocr/started`` entry is appended in the same
        transaction.

        Raises
        ------
        ragcore.utils.errors.NotFoundError
        ragcore.utils.errors.AlreadyProcessingError
        ragcore.utils.errors.AlreadyCompletedError
            Conflicts leave the processing log untouched.
        """

    @abstractmethod
    async def append_log(self, document_id: str, entry: ProcessingLogEntry) -> None:
        """Append one entry to the document's processing log."""

    @abstractmethod
    async def merge_metadata(self, document_id: str, patch: dict[str, Any]) -> None:
        """Merge *patch* into ``extracted_metadata`` without dropping existing keys."""

    @abstractmethod
    async def set_extracted_text(
        self,
        document_id: str,
        text: str,
        confidence: float | None,
        content_hash: str | None = None,
    ) -> None:
        """Record the extraction output, its confidence and the text fingerprint."""

    @abstractmethod
    async def mark_completed(self, document_id: str) -> Document:
        """Transition ``processing`` -> ``completed`` and set ``processed_at``."""

    @abstractmethod
    async def mark_failed(self, document_id: str) -> Document:
        """Transition ``processing`` -> ``failed``."""

    @abstractmethod
    async def mark_cancelled(self, document_id: str) -> bool:
        """Record a cancellation request; ``True`` if a run is in flight to receive it."""

    @abstractmethod
    async def is_cancelled(self, document_id: str) -> bool:
        """Return ``True`` if a cancellation was requested for the current run."""

    @abstractmethod
    async def acknowledge_cancellation(self, document_id: str, entry: ProcessingLogEntry) -> None:
        """Record that the in-flight run stopped, appending its ``cancelled`` *entry*.

        Until this is called a ``processing`` document cannot be reclaimed,
        even if a cancellation has been requested.
        """

    @abstractmethod
    async def status_counts(self) -> dict[str, int]:
        """Return the number of documents per processing status."""
