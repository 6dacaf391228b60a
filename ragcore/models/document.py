"""Document lifecycle models for the ragcore ingestion pipeline.

Defines Pydantic v2 models for uploaded documents, their append-only
processing log, and the outcome/status reports returned by the pipeline.
All persisted models use frozen config; state transitions produce new
instances via ``model_copy(update={...})`` and are written through the
document repository, never mutated in place.

Lifecycle:
    uploaded --start--> processing --ocr_ok--> processing --store--> completed
    processing --ocr_fail--> failed --retry--> processing
    completed --force--> processing
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_MIME_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "text/plain",
        "text/markdown",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "image/jpeg",
        "image/png",
        "image/tiff",
    }
)

MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MB


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------
class DocumentType(str, Enum):  # noqa: UP042
    """Business classification of a document (used as the search "category")."""

    TECHNICAL = "technical"
    REGULATORY = "regulatory"
    SAFETY = "safety"
    MARKETING = "marketing"
    CERTIFICATION = "certification"
    OTHER = "other"


class ProcessingStatus(str, Enum):  # noqa: UP042
    """Document processing state.  Only the pipeline moves a document between these."""

    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProcessingStage(str, Enum):  # noqa: UP042
    """Ordered pipeline stages.  Progress is the share of these with a completed entry."""

    UPLOAD = "upload"
    OCR = "ocr"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    INDEXING = "indexing"


class LogStatus(str, Enum):  # noqa: UP042
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


STAGE_ORDER: tuple[ProcessingStage, ...] = tuple(ProcessingStage)


# ---------------------------------------------------------------------------
# ProcessingLogEntry: one immutable audit record per stage attempt.
# ---------------------------------------------------------------------------
class ProcessingLogEntry(BaseModel):
    """An audit record describing one pipeline stage attempt.

    ``duration_ms`` is only ever set on ``completed`` entries and is
    measured from the matching ``started`` entry's timestamp.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_utcnow)
    stage: ProcessingStage
    status: LogStatus
    message: str | None = None
    error: str | None = None
    duration_ms: int | None = Field(default=None, ge=0)

    @classmethod
    def started(cls, stage: ProcessingStage, message: str | None = None) -> ProcessingLogEntry:
        return cls(stage=stage, status=LogStatus.STARTED, message=message)

    @classmethod
    def completed(
        cls,
        stage: ProcessingStage,
        started_entry: ProcessingLogEntry | None = None,
        message: str | None = None,
    ) -> ProcessingLogEntry:
        now = _utcnow()
        duration_ms = None
        if started_entry is not None:
            delta = now - started_entry.timestamp
            duration_ms = max(0, int(delta.total_seconds() * 1000))
        return cls(
            timestamp=now,
            stage=stage,
            status=LogStatus.COMPLETED,
            message=message,
            duration_ms=duration_ms,
        )

    @classmethod
    def failed(
        cls, stage: ProcessingStage, error: str, message: str | None = None
    ) -> ProcessingLogEntry:
        return cls(stage=stage, status=LogStatus.FAILED, error=error, message=message)

    @classmethod
    def cancelled(cls, stage: ProcessingStage) -> ProcessingLogEntry:
        return cls(
            stage=stage,
            status=LogStatus.CANCELLED,
            message="Processing cancelled before this stage",
        )


def calculate_progress(log: list[ProcessingLogEntry]) -> int:
    """Return the percentage of pipeline stages with at least one completed entry."""
    completed = {
        entry.stage for entry in log if entry.status is LogStatus.COMPLETED
    }
    done = sum(1 for stage in STAGE_ORDER if stage in completed)
    return round(done / len(STAGE_ORDER) * 100)


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """One uploaded source file and its processing state.

    ``extracted_metadata`` accumulates across stages (the repository merges
    patches into it); ``processed_at`` is only set on terminal success.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    organization_id: str
    collection_id: str
    title: str
    filename: str
    storage_locator: str
    file_size: int = Field(ge=0)
    mime_type: str
    document_type: DocumentType = DocumentType.OTHER
    language: str = "en"
    tags: list[str] = Field(default_factory=list)
    processing_status: ProcessingStatus = ProcessingStatus.UPLOADED
    processing_log: list[ProcessingLogEntry] = Field(default_factory=list)
    extracted_metadata: dict[str, Any] = Field(default_factory=dict)
    content_hash: str | None = None
    ocr_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    extracted_text: str | None = None
    cancelled_at: datetime | None = None
    cancel_acknowledged_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    processed_at: datetime | None = None

    @property
    def progress_percentage(self) -> int:
        return calculate_progress(self.processing_log)

    def last_error(self) -> str | None:
        """Return the error text of the most recent failed log entry, if any."""
        for entry in reversed(self.processing_log):
            if entry.status is LogStatus.FAILED:
                return entry.error
        return None


class NewDocument(BaseModel):
    """Validated payload for registering an uploaded document."""

    model_config = ConfigDict(frozen=True)

    organization_id: str = Field(min_length=1)
    collection_id: str = Field(min_length=1)
    title: str = Field(max_length=255)
    filename: str = Field(min_length=1, max_length=500)
    storage_locator: str = Field(min_length=1, max_length=1000)
    file_size: int = Field(gt=0, le=MAX_FILE_SIZE)
    mime_type: str
    document_type: DocumentType = DocumentType.OTHER
    language: str = Field(default="en", min_length=2, max_length=8)
    tags: list[str] = Field(default_factory=list)
    content_hash: str | None = None
    extracted_metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Document title must be a non-empty string")
        return value

    @field_validator("mime_type")
    @classmethod
    def _mime_supported(cls, value: str) -> str:
        if value not in SUPPORTED_MIME_TYPES:
            supported = ", ".join(sorted(SUPPORTED_MIME_TYPES))
            raise ValueError(f"Unsupported MIME type. Supported types: {supported}")
        return value


class DocumentPage(BaseModel):
    """One page of a document listing."""

    model_config = ConfigDict(frozen=True)

    documents: list[Document] = Field(default_factory=list)
    current_page: int = 1
    total_pages: int = 0
    total_items: int = 0
    items_per_page: int = 20


# ---------------------------------------------------------------------------
# Pipeline reports
# ---------------------------------------------------------------------------
class ProcessingOutcome(BaseModel):
    """Summary of one ``DocumentPipeline.start_processing`` run."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    status: ProcessingStatus
    chunk_count: int = Field(default=0, ge=0)
    chunks_created: int = Field(default=0, ge=0)
    chunks_deduplicated: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    vector_processed: bool = False
    vector_error: str | None = None
    extracted_text_length: int = Field(default=0, ge=0)
    cancelled: bool = False
    elapsed_ms: int = Field(default=0, ge=0)


class ProcessingStatusReport(BaseModel):
    """Progress snapshot for a document, derived from its processing log."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    title: str
    processing_status: ProcessingStatus
    progress_percentage: int = Field(ge=0, le=100)
    error_message: str | None = None
    chunks_created: int = 0
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
