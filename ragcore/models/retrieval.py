"""Retrieval data models: search filters, options, scored chunks and results.

These models flow through the query-time path::

    RetrievalEngine.search(query, scope, session_id, options)
        -> IChunkStore.similarity_search(embedding, filters, threshold, limit)
            -> StoreSearchResult(matches=[ScoredChunk, ...])
        -> RetrievalResult(results=[RetrievedChunk, ...], metadata=SearchMetadata)

Range checks on ``limit`` / ``threshold`` are not pydantic constraints;
out-of-range values surface as
:class:`~ragcore.utils.errors.ValidationError` naming the parameter, which
the engine and the chunk store raise themselves.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ragcore.models.chunk import ChunkType, DocumentChunk
from ragcore.models.document import DocumentType
from ragcore.utils.errors import ValidationError

MAX_SEARCH_LIMIT = 50
DEFAULT_SEARCH_LIMIT = 10
DEFAULT_SIMILARITY_THRESHOLD = 0.7
MAX_QUERY_LENGTH = 1000
PREVIEW_LENGTH = 200


class DateRange(BaseModel):
    """Inclusive bounds on the owning document's creation time."""

    model_config = ConfigDict(frozen=True)

    start: datetime | None = None
    end: datetime | None = None


# ---------------------------------------------------------------------------
# SearchFilters: conjunctive pre-filter applied before ranking.
# ---------------------------------------------------------------------------
class SearchFilters(BaseModel):
    """Structured filters; every non-empty field must match (logical AND).

    Within a list-valued field, membership is any-of: a chunk tagged
    ``["safety"]`` matches ``tags=["safety", "haccp"]``.
    """

    model_config = ConfigDict(frozen=True)

    organization_id: str | None = Field(
        default=None, description="Restrict to documents owned by this organization."
    )
    collection_ids: list[str] = Field(
        default_factory=list, description="Restrict to documents in these collections."
    )
    document_ids: list[str] = Field(
        default_factory=list, description="Restrict to these documents."
    )
    content_types: list[ChunkType] = Field(
        default_factory=list, description="Chunk structural types to include."
    )
    categories: list[DocumentType] = Field(
        default_factory=list, description="Document classifications to include."
    )
    tags: list[str] = Field(
        default_factory=list, description="Chunk must carry at least one of these tags."
    )
    date_range: DateRange | None = Field(
        default=None, description="Creation-time window of the owning document."
    )

    def applied(self) -> list[str]:
        """Return the names of the filters that actually constrain the search."""
        names: list[str] = []
        if self.organization_id:
            names.append("organization_id")
        for name in ("collection_ids", "document_ids", "content_types", "categories", "tags"):
            if getattr(self, name):
                names.append(name)
        if self.date_range is not None and (
            self.date_range.start is not None or self.date_range.end is not None
        ):
            names.append("date_range")
        return names


class SearchScope(BaseModel):
    """Identifiers supplied by the conversation collaborator (e.g. a chatbot's collections)."""

    model_config = ConfigDict(frozen=True)

    organization_id: str | None = None
    collection_ids: list[str] = Field(default_factory=list)
    document_ids: list[str] = Field(default_factory=list)


class SearchOptions(BaseModel):
    """Caller-tunable search parameters."""

    model_config = ConfigDict(frozen=True)

    limit: int = DEFAULT_SEARCH_LIMIT
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    offset: int = 0
    filters: SearchFilters = Field(default_factory=SearchFilters)
    boost_recent: bool = False
    # Pre-computed query embedding; skips the embedding call when given.
    query_embedding: list[float] | None = None


# ---------------------------------------------------------------------------
# Store-level results
# ---------------------------------------------------------------------------
class ScoredChunk(BaseModel):
    """A chunk returned by the store with its base similarity and recency bonus."""

    model_config = ConfigDict(frozen=True)

    chunk: DocumentChunk
    similarity: float = Field(ge=0.0, le=1.0, description="Clamped cosine similarity.")
    recency_bonus: float = Field(default=0.0, ge=0.0)
    document_type: DocumentType = DocumentType.OTHER
    document_created_at: datetime | None = None

    @property
    def score(self) -> float:
        return self.similarity + self.recency_bonus


class StoreSearchResult(BaseModel):
    """Outcome of ``IChunkStore.similarity_search``."""

    model_config = ConfigDict(frozen=True)

    matches: list[ScoredChunk] = Field(default_factory=list)
    candidate_count: int = Field(
        default=0, ge=0, description="Chunks passing the filters, before the threshold."
    )
    above_threshold_count: int = Field(
        default=0, ge=0, description="Candidates whose base similarity met the threshold."
    )


# ---------------------------------------------------------------------------
# Engine-level results
# ---------------------------------------------------------------------------
class RetrievedChunk(BaseModel):
    """One ranked search hit with the breakdown of its blended score."""

    model_config = ConfigDict(frozen=True)

    chunk: DocumentChunk
    similarity_score: float = Field(description="Base similarity from the chunk store.")
    keyword_bonus: float = 0.0
    recency_bonus: float = 0.0
    score: float = Field(description="similarity_score + keyword_bonus + recency_bonus.")
    matched_filters: list[str] = Field(default_factory=list)
    matched_keywords: list[str] = Field(default_factory=list)
    content_preview: str = ""


class SearchMetadata(BaseModel):
    """Aggregate information about one search call."""

    model_config = ConfigDict(frozen=True)

    total_results: int = 0
    candidate_count: int = 0
    above_threshold_count: int = 0
    search_time_ms: int = 0
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    max_results: int = DEFAULT_SEARCH_LIMIT
    filters_applied: list[str] = Field(default_factory=list)
    average_similarity: float = 0.0
    embedding_provider: str = ""


class RetrievalResult(BaseModel):
    """Ranked chunks plus search metadata, returned by ``RetrievalEngine.search``."""

    model_config = ConfigDict(frozen=True)

    query: str
    results: list[RetrievedChunk] = Field(default_factory=list)
    metadata: SearchMetadata = Field(default_factory=SearchMetadata)


# ---------------------------------------------------------------------------
# Range checks shared by the retrieval engine and chunk stores
# ---------------------------------------------------------------------------
def validate_limit(limit: int, parameter: str = "limit") -> None:
    """Raise :class:`ValidationError` unless *limit* is an int in ``[1, 50]``."""
    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_SEARCH_LIMIT:
        raise ValidationError(
            f"{parameter} must be an integer between 1 and {MAX_SEARCH_LIMIT}, got {limit!r}",
            parameter=parameter,
        )


def validate_threshold(threshold: float, parameter: str = "threshold") -> None:
    """Raise :class:`ValidationError` unless *threshold* is a number in ``[0, 1]``."""
    if (
        isinstance(threshold, bool)
        or not isinstance(threshold, (int, float))
        or not 0.0 <= float(threshold) <= 1.0
    ):
        raise ValidationError(
            f"{parameter} must be a number between 0 and 1, got {threshold!r}",
            parameter=parameter,
        )
