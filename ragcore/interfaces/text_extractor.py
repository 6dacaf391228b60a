"""Abstract base class for text-extraction providers.

Extraction is an external collaborator: given a document locator and its
MIME type, an extractor returns the document's plain text together with a
confidence score.  Implementations may wrap PyMuPDF, python-docx,
Tesseract, or a hosted OCR service.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragcore.models.extraction import ExtractionResult


# Concrete implementations live in ragcore/providers/extraction/.
# ExtractionService routes each document to the first available extractor
# whose supported_mime_types() contains the document's MIME type.
class ITextExtractor(ABC):
    """Contract for services that turn a stored document into plain text."""

    @abstractmethod
    async def extract(self, locator: str, mime_type: str) -> ExtractionResult:
        """Extract text from the document at *locator*.

        Parameters
        ----------
        locator:
            Where the document lives.  The bundled extractors accept a
            filesystem path.
        mime_type:
            The document's declared MIME type.

        Returns
        -------
        ExtractionResult
            Extracted text, confidence in ``[0, 1]``, provider name and
            provider-specific metadata.

        Raises
        ------
        ragcore.utils.errors.ExtractionFailedError
            If the document cannot be read.  ``transient`` is set when a
            retry could plausibly succeed (timeouts, busy service).
        """

    @abstractmethod
    def supported_mime_types(self) -> frozenset[str]:
        """Return the MIME types this extractor handles."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"pymupdf"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the extractor's backing library or binary is usable."""
