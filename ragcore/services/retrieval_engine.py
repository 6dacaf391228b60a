"""Query-time retrieval: embed the query, search the chunk store, re-rank.

The blended score of a hit is::

    score = similarity + keyword_bonus + recency_bonus

``similarity`` is the store's clamped cosine score and is the only value
compared against the threshold.  ``keyword_bonus`` rewards chunks that
contain the query's words verbatim (exact-match lookups such as "contact
information" are where embeddings are least precise) and is at most
``keyword_bonus_cap``.  ``recency_bonus`` comes from the store when
``boost_recent`` is set and is at most ``recency_bonus_cap``.  Because both
bonuses are capped, a similarity gap larger than the sum of the caps can
never be inverted.

Ranking is fully deterministic: ties on the blended score fall back to the
chunk index, then document id, then chunk id.
"""

from __future__ import annotations

import re
import time
from typing import TYPE_CHECKING

import structlog
from structlog.contextvars import bound_contextvars

from ragcore.models.retrieval import (
    MAX_QUERY_LENGTH,
    MAX_SEARCH_LIMIT,
    PREVIEW_LENGTH,
    RetrievalResult,
    RetrievedChunk,
    ScoredChunk,
    SearchFilters,
    SearchMetadata,
    SearchOptions,
    SearchScope,
    validate_limit,
    validate_threshold,
)
from ragcore.utils.errors import EmbeddingError, ValidationError

if TYPE_CHECKING:
    from ragcore.interfaces.chunk_store import IChunkStore
    from ragcore.interfaces.embedding_provider import IEmbeddingProvider

logger = structlog.get_logger(logger_name=__name__)

_WORD = re.compile(r"\w+", re.UNICODE)


def query_tokens(query: str) -> list[str]:
    """Distinct lowercase word tokens of length >= 2, in first-seen order."""
    seen: dict[str, None] = {}
    for token in _WORD.findall(query.lower()):
        if len(token) >= 2:
            seen.setdefault(token, None)
    return list(seen)


def content_preview(text: str, length: int = PREVIEW_LENGTH) -> str:
    """First *length* characters of *text* with whitespace collapsed."""
    flat = " ".join(text.split())
    if len(flat) <= length:
        return flat
    return flat[: length - 3].rstrip() + "..."


class RetrievalEngine:
    """Facade combining the embedding provider with chunk-store similarity search.

    Parameters
    ----------
    embedding_provider:
        Embeds the free-text query.
    chunk_store:
        Source of candidate chunks; its dimension is the deployment's.
    keyword_bonus_cap:
        Bonus for a chunk containing every query token.
    recency_bonus_cap:
        Upper bound of the store's recency bonus; reported for ranking
        analysis only, the store applies it.
    """

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        chunk_store: IChunkStore,
        keyword_bonus_cap: float = 0.05,
        recency_bonus_cap: float = 0.02,
    ) -> None:
        if keyword_bonus_cap < 0 or recency_bonus_cap < 0:
            raise ValueError("bonus caps must be non-negative")
        self._embedding_provider = embedding_provider
        self._chunk_store = chunk_store
        self._keyword_bonus_cap = keyword_bonus_cap
        self._recency_bonus_cap = recency_bonus_cap

    @property
    def max_bonus(self) -> float:
        """Largest total bonus any hit can receive."""
        return self._keyword_bonus_cap + self._recency_bonus_cap

    async def search(
        self,
        query: str,
        scope: SearchScope | None = None,
        session_id: str | None = None,
        options: SearchOptions | None = None,
    ) -> RetrievalResult:
        """Return ranked chunks for *query* within *scope*.

        Raises
        ------
        ValidationError
            For an empty or over-long query, an out-of-range ``limit``,
            ``threshold`` or ``offset``, an inverted date range, or a
            pre-computed embedding of the wrong dimension.
        EmbeddingError
            When the query cannot be embedded.
        StorageError
            When the chunk store fails.
        """
        options = options or SearchOptions()
        context = {"session_id": session_id} if session_id else {}
        with bound_contextvars(**context):
            return await self._search(query, scope, options)

    async def _search(
        self, query: str, scope: SearchScope | None, options: SearchOptions
    ) -> RetrievalResult:
        started = time.perf_counter()
        query = self._validate(query, options)

        filters = _apply_scope(options.filters, scope)
        if filters is None:
            # Scope and filters select disjoint sets of documents.
            logger.info("search_scope_disjoint", query_length=len(query))
            return self._result(query, [], options, options.filters, started, 0, 0)

        embedding = await self._query_embedding(query, options)

        store_result = await self._chunk_store.similarity_search(
            embedding,
            filters=filters,
            threshold=options.threshold,
            limit=MAX_SEARCH_LIMIT,
            boost_recent=options.boost_recent,
        )

        tokens = query_tokens(query)
        applied = filters.applied()
        ranked = sorted(
            (self._rerank(match, tokens, applied) for match in store_result.matches),
            key=lambda hit: (
                -hit.score,
                hit.chunk.chunk_index,
                hit.chunk.document_id,
                hit.chunk.id,
            ),
        )
        page = ranked[options.offset : options.offset + options.limit]

        result = self._result(
            query,
            page,
            options,
            filters,
            started,
            store_result.candidate_count,
            store_result.above_threshold_count,
        )
        logger.info(
            "search_complete",
            results=result.metadata.total_results,
            candidates=result.metadata.candidate_count,
            above_threshold=result.metadata.above_threshold_count,
            threshold=options.threshold,
            elapsed_ms=result.metadata.search_time_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self, query: str, options: SearchOptions) -> str:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Query must not be empty", parameter="query")
        query = query.strip()
        if len(query) > MAX_QUERY_LENGTH:
            raise ValidationError(
                f"Query must be at most {MAX_QUERY_LENGTH} characters", parameter="query"
            )

        validate_limit(options.limit)
        validate_threshold(options.threshold)
        if options.offset < 0:
            raise ValidationError("offset must be non-negative", parameter="offset")
        if options.offset + options.limit > MAX_SEARCH_LIMIT:
            raise ValidationError(
                f"offset + limit must not exceed {MAX_SEARCH_LIMIT}", parameter="offset"
            )

        date_range = options.filters.date_range
        if (
            date_range is not None
            and date_range.start is not None
            and date_range.end is not None
            and date_range.start > date_range.end
        ):
            raise ValidationError(
                "date_range start must not be after its end", parameter="date_range"
            )

        if options.query_embedding is not None:
            dimension = self._chunk_store.get_dimension()
            if len(options.query_embedding) != dimension:
                raise ValidationError(
                    f"query_embedding has dimension {len(options.query_embedding)}, "
                    f"expected {dimension}",
                    parameter="query_embedding",
                )
        return query

    async def _query_embedding(self, query: str, options: SearchOptions) -> list[float]:
        if options.query_embedding is not None:
            return list(options.query_embedding)

        embedding = await self._embedding_provider.embed_single(query)
        dimension = self._chunk_store.get_dimension()
        if len(embedding) != dimension:
            raise EmbeddingError(
                f"Query embedding has dimension {len(embedding)}, expected {dimension}",
                transient=False,
                provider_name=self._embedding_provider.get_provider_name(),
            )
        return embedding

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def _rerank(
        self, match: ScoredChunk, tokens: list[str], applied_filters: list[str]
    ) -> RetrievedChunk:
        matched = self._matched_keywords(match.chunk.chunk_text, tokens)
        keyword_bonus = (
            self._keyword_bonus_cap * len(matched) / len(tokens) if tokens else 0.0
        )
        recency_bonus = min(match.recency_bonus, self._recency_bonus_cap)
        return RetrievedChunk(
            chunk=match.chunk,
            similarity_score=match.similarity,
            keyword_bonus=keyword_bonus,
            recency_bonus=recency_bonus,
            score=match.similarity + keyword_bonus + recency_bonus,
            matched_filters=list(applied_filters),
            matched_keywords=matched,
            content_preview=content_preview(match.chunk.chunk_text),
        )

    @staticmethod
    def _matched_keywords(text: str, tokens: list[str]) -> list[str]:
        words = set(_WORD.findall(text.lower()))
        return [token for token in tokens if token in words]

    def _result(
        self,
        query: str,
        results: list[RetrievedChunk],
        options: SearchOptions,
        filters: SearchFilters,
        started: float,
        candidate_count: int,
        above_threshold_count: int,
    ) -> RetrievalResult:
        average = (
            sum(hit.similarity_score for hit in results) / len(results) if results else 0.0
        )
        return RetrievalResult(
            query=query,
            results=results,
            metadata=SearchMetadata(
                total_results=len(results),
                candidate_count=candidate_count,
                above_threshold_count=above_threshold_count,
                search_time_ms=int((time.perf_counter() - started) * 1000),
                similarity_threshold=options.threshold,
                max_results=options.limit,
                filters_applied=filters.applied(),
                average_similarity=round(average, 4),
                embedding_provider=self._embedding_provider.get_provider_name(),
            ),
        )


def _apply_scope(filters: SearchFilters, scope: SearchScope | None) -> SearchFilters | None:
    """Fold the caller's scope into *filters* conjunctively.

    Returns ``None`` when scope and filters cannot both be satisfied.
    """
    if scope is None:
        return filters

    organization_id = filters.organization_id
    if scope.organization_id:
        if organization_id and organization_id != scope.organization_id:
            return None
        organization_id = scope.organization_id

    collection_ids = _intersect(filters.collection_ids, scope.collection_ids)
    document_ids = _intersect(filters.document_ids, scope.document_ids)
    if collection_ids is None or document_ids is None:
        return None

    return filters.model_copy(
        update={
            "organization_id": organization_id,
            "collection_ids": collection_ids,
            "document_ids": document_ids,
        }
    )


def _intersect(requested: list[str], allowed: list[str]) -> list[str] | None:
    """Intersect two id lists where an empty list means "unrestricted"."""
    if not allowed:
        return list(requested)
    if not requested:
        return list(allowed)
    common = [value for value in requested if value in set(allowed)]
    return common or None
