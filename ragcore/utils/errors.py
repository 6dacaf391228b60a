"""Custom exception hierarchy for ragcore.

All application exceptions inherit from :class:`RagCoreError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "tesseract", "sqlite") caused the failure.

The hierarchy is organized by concern:

    RagCoreError  (base -- catch-all for any ragcore error)
    +-- NotFoundError              (document or chunk missing)
    +-- ConflictError              (state-machine conflicts)
    |   +-- AlreadyProcessingError
    |   +-- AlreadyCompletedError
    +-- PipelineStageError         (carries document_id + stage)
    |   +-- ExtractionFailedError
    |   |   +-- UnsupportedMediaTypeError
    |   +-- EmbeddingDegradedError
    |   +-- StorageError
    +-- EmbeddingError             (raised by embedding adapters)
    +-- ValidationError            (malformed query parameters)
    +-- ConfigurationError         (startup / missing config)

Caller errors (NotFound, Validation, UnsupportedMediaType) are never
retried.  ``transient`` on ExtractionFailedError / EmbeddingError is what
:class:`~ragcore.pipeline.retry_policy.RetryPolicy` inspects.
"""

from __future__ import annotations


class RagCoreError(Exception):
    """Base exception for all ragcore errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Caller errors
# ---------------------------------------------------------------------------

class NotFoundError(RagCoreError):
    """Raised when a document or chunk does not exist."""

    def __init__(
        self,
        message: str = "Resource not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ValidationError(RagCoreError):
    """Raised when query parameters are malformed or out of range.

    ``parameter`` names the offending field (``"limit"``, ``"threshold"``,
    ``"date_range"``...) so the API can surface it to the caller.
    """

    def __init__(
        self,
        message: str = "Invalid parameter",
        parameter: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self._parameter = parameter
        super().__init__(message=message, provider_name=provider_name)

    @property
    def parameter(self) -> str | None:
        return self._parameter


# ---------------------------------------------------------------------------
# State-machine conflicts
# ---------------------------------------------------------------------------

class ConflictError(RagCoreError):
    """Base for document state conflicts (HTTP 409 equivalent)."""

    def __init__(
        self,
        message: str = "Document state conflict",
        document_id: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self._document_id = document_id
        super().__init__(message=message, provider_name=provider_name)

    @property
    def document_id(self) -> str | None:
        return self._document_id


class AlreadyProcessingError(ConflictError):
    """Raised when a processing run is requested for a document already in flight."""

    def __init__(
        self,
        message: str = "Document is already being processed",
        document_id: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, document_id=document_id, provider_name=provider_name)


class AlreadyCompletedError(ConflictError):
    """Raised when a completed document is processed again without ``force``."""

    def __init__(
        self,
        message: str = "Document has already been processed",
        document_id: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, document_id=document_id, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Pipeline stage errors
# ---------------------------------------------------------------------------

class PipelineStageError(RagCoreError):
    """A failure attributable to one pipeline stage of one document."""

    def __init__(
        self,
        message: str = "Pipeline stage failed",
        document_id: str | None = None,
        stage: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self._document_id = document_id
        self._stage = stage
        super().__init__(message=message, provider_name=provider_name)

    @property
    def document_id(self) -> str | None:
        return self._document_id

    @property
    def stage(self) -> str | None:
        return self._stage

    def with_context(self, document_id: str, stage: str) -> PipelineStageError:
        """Attach document and stage context, keeping any already set."""
        self._document_id = self._document_id or document_id
        self._stage = self._stage or stage
        return self


class ExtractionFailedError(PipelineStageError):
    """Raised when the text-extraction collaborator fails.

    ``transient`` is True for provider hiccups (timeouts, unavailable
    binaries during a restart) and False for permanent failures such as a
    corrupt file or an empty result.
    """

    def __init__(
        self,
        message: str = "Text extraction failed",
        transient: bool = False,
        document_id: str | None = None,
        stage: str | None = "ocr",
        provider_name: str | None = None,
    ) -> None:
        self._transient = transient
        super().__init__(
            message=message,
            document_id=document_id,
            stage=stage,
            provider_name=provider_name,
        )

    @property
    def transient(self) -> bool:
        return self._transient


class UnsupportedMediaTypeError(ExtractionFailedError):
    """Raised when no extractor handles the document's MIME type.  Never retried."""

    def __init__(
        self,
        message: str = "Unsupported media type",
        mime_type: str | None = None,
        document_id: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self._mime_type = mime_type
        super().__init__(
            message=message,
            transient=False,
            document_id=document_id,
            stage="ocr",
            provider_name=provider_name,
        )

    @property
    def mime_type(self) -> str | None:
        return self._mime_type


class EmbeddingDegradedError(PipelineStageError):
    """Non-fatal: chunks could not be embedded, the document is text-only.

    Recorded in ``extracted_metadata`` by the pipeline; never propagated
    out of a processing run.
    """

    def __init__(
        self,
        message: str = "Embedding failed; document is not searchable",
        failed_chunks: int = 0,
        document_id: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        self._failed_chunks = failed_chunks
        super().__init__(
            message=message,
            document_id=document_id,
            stage="embedding",
            provider_name=provider_name,
        )

    @property
    def failed_chunks(self) -> int:
        return self._failed_chunks


class StorageError(PipelineStageError):
    """Raised when the chunk store or document repository cannot persist or query."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        document_id: str | None = None,
        stage: str | None = None,
        provider_name: str | None = None,
    ) -> None:
        super().__init__(
            message=message,
            document_id=document_id,
            stage=stage,
            provider_name=provider_name,
        )


# ---------------------------------------------------------------------------
# Provider / configuration errors
# ---------------------------------------------------------------------------

class EmbeddingError(RagCoreError):
    """Raised by embedding adapters when the embedding API call fails."""

    def __init__(
        self,
        message: str = "Embedding API call failed",
        transient: bool = False,
        provider_name: str | None = None,
    ) -> None:
        self._transient = transient
        super().__init__(message=message, provider_name=provider_name)

    @property
    def transient(self) -> bool:
        return self._transient


class ConfigurationError(RagCoreError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
