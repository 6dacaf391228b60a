"""Pydantic request/response schemas for the ragcore API.

Defines the public contract for the document lifecycle endpoints, the
processing trigger, status polling, search and health.

# ─── CONVENTIONS ──────────────────────────────────────────────────────
#
# Request schemas end with "Request", response schemas with "Response".
# Search parameters (limit, threshold, offset, filter values) carry no
# pydantic range constraints: the retrieval engine validates them and the
# error middleware turns its ValidationError into a 400 naming the
# offending parameter.  Pydantic's own 422 is reserved for bodies that
# are not the right shape at all.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from ragcore.models.chunk import ChunkType
from ragcore.models.document import (
    Document,
    DocumentType,
    NewDocument,
    ProcessingLogEntry,
    ProcessingStatus,
)
from ragcore.models.retrieval import (
    DEFAULT_SEARCH_LIMIT,
    DEFAULT_SIMILARITY_THRESHOLD,
    RetrievedChunk,
    SearchMetadata,
)


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
    parameter: str | None = Field(
        default=None, description="The offending request parameter, for validation errors."
    )
    document_id: str | None = None
    stage: str | None = None


class CreateDocumentRequest(NewDocument):
    """Register an already-stored file as a document (status ``uploaded``)."""


class UpdateDocumentRequest(BaseModel):
    """Editable document attributes; omitted fields are left unchanged."""

    title: str | None = None
    document_type: DocumentType | None = None
    language: str | None = Field(default=None, min_length=2, max_length=8)
    tags: list[str] | None = None


class DocumentResponse(BaseModel):
    """A document record without its (potentially large) extracted text."""

    id: str
    organization_id: str
    collection_id: str
    title: str
    filename: str
    storage_locator: str
    file_size: int
    mime_type: str
    document_type: DocumentType
    language: str
    tags: list[str] = Field(default_factory=list)
    processing_status: ProcessingStatus
    progress_percentage: int
    processing_log: list[ProcessingLogEntry] = Field(default_factory=list)
    extracted_metadata: dict[str, Any] = Field(default_factory=dict)
    ocr_confidence: float | None = None
    created_at: datetime
    updated_at: datetime
    processed_at: datetime | None = None

    @classmethod
    def from_document(cls, document: Document) -> DocumentResponse:
        data = document.model_dump(
            exclude={"extracted_text", "content_hash", "cancelled_at", "cancel_acknowledged_at"}
        )
        return cls(**data, progress_percentage=document.progress_percentage)


class DocumentListResponse(BaseModel):
    """One page of documents."""

    documents: list[DocumentResponse] = Field(default_factory=list)
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class DocumentTextResponse(BaseModel):
    """Extracted text of a processed document."""

    document_id: str
    text: str | None = None
    ocr_confidence: float | None = None
    available: bool = Field(description="False until text extraction has succeeded.")


class CancelResponse(BaseModel):
    document_id: str
    cancellation_requested: bool


class SearchRequest(BaseModel):
    """Free-text query with optional scope and filters."""

    query: str
    limit: int = DEFAULT_SEARCH_LIMIT
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    offset: int = 0
    organization_id: str | None = None
    collection_ids: list[str] = Field(default_factory=list)
    document_ids: list[str] = Field(default_factory=list)
    content_types: list[str] = Field(
        default_factory=list,
        description='Chunk types: "header", "list", "contact", "vision", "content".',
    )
    categories: list[str] = Field(
        default_factory=list, description="Document types, e.g. technical, safety."
    )
    tags: list[str] = Field(default_factory=list)
    date_from: datetime | None = None
    date_to: datetime | None = None
    boost_recent: bool = False
    session_id: str | None = None


class SearchResultItem(BaseModel):
    """One ranked hit as returned to API clients."""

    chunk_id: str
    document_id: str
    chunk_index: int
    chunk_type: ChunkType
    similarity_score: float
    keyword_bonus: float = 0.0
    recency_bonus: float = 0.0
    score: float
    content_preview: str
    matched_keywords: list[str] = Field(default_factory=list)
    matched_filters: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_retrieved(cls, hit: RetrievedChunk) -> SearchResultItem:
        return cls(
            chunk_id=hit.chunk.id,
            document_id=hit.chunk.document_id,
            chunk_index=hit.chunk.chunk_index,
            chunk_type=hit.chunk.chunk_type,
            similarity_score=round(hit.similarity_score, 6),
            keyword_bonus=round(hit.keyword_bonus, 6),
            recency_bonus=round(hit.recency_bonus, 6),
            score=round(hit.score, 6),
            content_preview=hit.content_preview,
            matched_keywords=hit.matched_keywords,
            matched_filters=hit.matched_filters,
            metadata=hit.chunk.metadata,
        )


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResultItem] = Field(default_factory=list)
    metadata: SearchMetadata


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]
    documents: dict[str, int] = Field(default_factory=dict)
    total_chunks: int = 0
