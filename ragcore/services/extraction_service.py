"""Text-extraction routing with a per-MIME-type fallback chain.

Every registered extractor declares the MIME types it handles.  For a
given document the service walks the extractors that support its MIME
type, in registration order, skipping unavailable ones, and returns the
first non-empty result.

Failure semantics:

    * No registered extractor handles the MIME type
          -> UnsupportedMediaTypeError (permanent, never retried)
    * Every candidate is unavailable or raises
          -> ExtractionFailedError; transient if any attempt was transient
    * A candidate returns only whitespace
          -> counted as a permanent failure of that candidate
"""

from __future__ import annotations

from ragcore.interfaces.text_extractor import ITextExtractor
from ragcore.models.extraction import ExtractionResult
from ragcore.utils.errors import ExtractionFailedError, UnsupportedMediaTypeError
from ragcore.utils.logging import get_logger


class ExtractionService:
    """Routes documents to the text extractor that understands their format.

    Parameters
    ----------
    extractors:
        Extractors in priority order.  The caller (the app builder)
        controls the ordering.
    """

    def __init__(self, extractors: list[ITextExtractor]) -> None:
        self._extractors = extractors
        self._logger = get_logger(__name__)

    def supported_mime_types(self) -> frozenset[str]:
        """Return the union of MIME types any registered extractor handles."""
        types: set[str] = set()
        for extractor in self._extractors:
            types.update(extractor.supported_mime_types())
        return frozenset(types)

    def candidates_for(self, mime_type: str) -> list[ITextExtractor]:
        return [e for e in self._extractors if mime_type in e.supported_mime_types()]

    async def extract(self, locator: str, mime_type: str) -> ExtractionResult:
        """Extract text from the document at *locator*.

        Raises
        ------
        UnsupportedMediaTypeError
            If no extractor is registered for *mime_type*.
        ExtractionFailedError
            If every candidate extractor failed or produced no text.
        """
        candidates = self.candidates_for(mime_type)
        if not candidates:
            raise UnsupportedMediaTypeError(
                f"No text extractor is registered for MIME type {mime_type!r}",
                mime_type=mime_type,
            )

        last_error: ExtractionFailedError | None = None
        any_transient = False

        for extractor in candidates:
            name = extractor.get_provider_name()
            if not extractor.is_available():
                self._logger.warning("extractor_unavailable", provider=name)
                any_transient = True
                continue

            try:
                self._logger.info("extractor_attempting", provider=name, mime_type=mime_type)
                result = await extractor.extract(locator, mime_type)
            except ExtractionFailedError as exc:
                self._logger.warning(
                    "extractor_failed",
                    provider=name,
                    error=str(exc),
                    transient=exc.transient,
                )
                any_transient = any_transient or exc.transient
                last_error = exc
                continue

            if not result.text.strip():
                self._logger.warning("extractor_empty_text", provider=name)
                last_error = ExtractionFailedError(
                    "Extraction produced no text",
                    provider_name=name,
                )
                continue

            self._logger.info(
                "extractor_accepted",
                provider=name,
                chars=len(result.text),
                confidence=round(result.confidence, 4),
            )
            return result

        if last_error is None:
            raise ExtractionFailedError(
                f"No available text extractor for MIME type {mime_type!r}",
                transient=any_transient,
            )
        if any_transient and not last_error.transient:
            raise ExtractionFailedError(
                last_error.message,
                transient=True,
                provider_name=last_error.provider_name,
            ) from last_error
        raise last_error
