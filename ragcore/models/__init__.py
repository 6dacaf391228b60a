"""ragcore domain models, re-exported from their submodules.

    - document.py: Document lifecycle, processing log, pipeline reports
    - chunk.py: Chunker output and stored chunk rows
    - extraction.py: Text-extraction results
    - retrieval.py: Search filters, options and ranked results
"""

from __future__ import annotations

from ragcore.models.chunk import (
    CHUNK_LEVELS,
    CHUNK_SECTIONS,
    ChunkLevel,
    ChunkType,
    DocumentChunk,
    TextChunk,
)
from ragcore.models.document import (
    MAX_FILE_SIZE,
    SUPPORTED_MIME_TYPES,
    Document,
    DocumentPage,
    DocumentType,
    LogStatus,
    NewDocument,
    ProcessingLogEntry,
    ProcessingOutcome,
    ProcessingStage,
    ProcessingStatus,
    ProcessingStatusReport,
    calculate_progress,
)
from ragcore.models.extraction import ExtractionResult
from ragcore.models.retrieval import (
    MAX_QUERY_LENGTH,
    MAX_SEARCH_LIMIT,
    DateRange,
    RetrievalResult,
    RetrievedChunk,
    ScoredChunk,
    SearchFilters,
    SearchMetadata,
    SearchOptions,
    SearchScope,
    StoreSearchResult,
    validate_limit,
    validate_threshold,
)

__all__ = [
    "CHUNK_LEVELS",
    "CHUNK_SECTIONS",
    "MAX_FILE_SIZE",
    "MAX_QUERY_LENGTH",
    "MAX_SEARCH_LIMIT",
    "SUPPORTED_MIME_TYPES",
    "ChunkLevel",
    "ChunkType",
    "DateRange",
    "Document",
    "DocumentChunk",
    "DocumentPage",
    "DocumentType",
    "ExtractionResult",
    "LogStatus",
    "NewDocument",
    "ProcessingLogEntry",
    "ProcessingOutcome",
    "ProcessingStage",
    "ProcessingStatus",
    "ProcessingStatusReport",
    "RetrievalResult",
    "RetrievedChunk",
    "ScoredChunk",
    "SearchFilters",
    "SearchMetadata",
    "SearchOptions",
    "SearchScope",
    "StoreSearchResult",
    "TextChunk",
    "calculate_progress",
    "validate_limit",
    "validate_threshold",
]
