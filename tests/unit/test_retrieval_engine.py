"""Unit tests for RetrievalEngine: validation, scope folding and score blending."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from ragcore.models.chunk import DocumentChunk
from ragcore.models.retrieval import DateRange, SearchFilters, SearchOptions, SearchScope
from ragcore.services.deduplicator import fingerprint
from ragcore.services.retrieval_engine import RetrievalEngine, content_preview, query_tokens
from ragcore.utils.errors import EmbeddingError, ValidationError
from tests.fakes import (
    CONCEPT_DIMENSION,
    KeywordConceptEmbedder,
    concept_vector,
    make_new_document,
    unit_vector,
)

# ======================================================================
# Helpers
# ======================================================================


async def _store(chunk_store, document_id: str, index: int, text: str, embedding=None) -> None:
    await chunk_store.upsert_chunk(
        DocumentChunk(
            document_id=document_id,
            chunk_index=index,
            chunk_text=text,
            embedding=embedding or concept_vector(text),
            embedding_model="keyword_concept",
            content_hash=fingerprint(text),
        )
    )


@pytest.fixture
async def document(repository):
    return await repository.create(make_new_document())


# ======================================================================
# Pure helpers
# ======================================================================


class TestQueryTokens:
    def test_lowercases_dedups_and_drops_single_characters(self) -> None:
        assert query_tokens("Contact the CONTACT a b info!") == ["contact", "the", "info"]

    def test_empty(self) -> None:
        assert query_tokens("?! -") == []


class TestContentPreview:
    def test_short_text_is_flattened(self) -> None:
        assert content_preview("a\n\nb   c") == "a b c"

    def test_long_text_truncated_with_ellipsis(self) -> None:
        preview = content_preview("word " * 100)
        assert len(preview) <= 200
        assert preview.endswith("...")


class TestConstruction:
    def test_negative_caps_rejected(self, embedder, chunk_store) -> None:
        with pytest.raises(ValueError):
            RetrievalEngine(embedder, chunk_store, keyword_bonus_cap=-0.1)

    def test_max_bonus(self, embedder, chunk_store) -> None:
        engine = RetrievalEngine(embedder, chunk_store, keyword_bonus_cap=0.05)
        assert engine.max_bonus == pytest.approx(0.07)


# ======================================================================
# Validation
# ======================================================================


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   ", "x" * 1001])
    async def test_bad_query(self, retrieval_engine, query: str) -> None:
        with pytest.raises(ValidationError) as excinfo:
            await retrieval_engine.search(query)
        assert excinfo.value.parameter == "query"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("options", "parameter"),
        [
            (SearchOptions(limit=0), "limit"),
            (SearchOptions(limit=51), "limit"),
            (SearchOptions(threshold=-0.1), "threshold"),
            (SearchOptions(threshold=1.5), "threshold"),
            (SearchOptions(offset=-1), "offset"),
            (SearchOptions(offset=45, limit=10), "offset"),
        ],
    )
    async def test_out_of_range_options(self, retrieval_engine, options, parameter) -> None:
        with pytest.raises(ValidationError) as excinfo:
            await retrieval_engine.search("contact", options=options)
        assert excinfo.value.parameter == parameter

    @pytest.mark.asyncio
    async def test_inverted_date_range(self, retrieval_engine) -> None:
        now = datetime.now(tz=timezone.utc)
        filters = SearchFilters(date_range=DateRange(start=now, end=now - timedelta(days=1)))
        with pytest.raises(ValidationError) as excinfo:
            await retrieval_engine.search("contact", options=SearchOptions(filters=filters))
        assert excinfo.value.parameter == "date_range"

    @pytest.mark.asyncio
    async def test_precomputed_embedding_dimension(self, retrieval_engine) -> None:
        options = SearchOptions(query_embedding=[1.0, 0.0])
        with pytest.raises(ValidationError) as excinfo:
            await retrieval_engine.search("contact", options=options)
        assert excinfo.value.parameter == "query_embedding"

    @pytest.mark.asyncio
    async def test_validation_happens_before_embedding(self, retrieval_engine, embedder) -> None:
        with pytest.raises(ValidationError):
            await retrieval_engine.search("contact", options=SearchOptions(limit=0))
        assert embedder.calls == []


# ======================================================================
# Embedding
# ======================================================================


class TestQueryEmbedding:
    @pytest.mark.asyncio
    async def test_precomputed_embedding_skips_provider(
        self, retrieval_engine, embedder, chunk_store, document
    ) -> None:
        await _store(chunk_store, document.id, 0, "contact email")
        options = SearchOptions(query_embedding=unit_vector(0), threshold=0.5)

        result = await retrieval_engine.search("anything", options=options)

        assert embedder.calls == []
        assert [hit.chunk.chunk_text for hit in result.results] == ["contact email"]

    @pytest.mark.asyncio
    async def test_provider_with_wrong_dimension(self, chunk_store) -> None:
        engine = RetrievalEngine(KeywordConceptEmbedder(output_dimension=3), chunk_store)
        with pytest.raises(EmbeddingError):
            await engine.search("contact")

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self, chunk_store) -> None:
        engine = RetrievalEngine(KeywordConceptEmbedder(fail_all=True), chunk_store)
        with pytest.raises(EmbeddingError):
            await engine.search("contact")


# ======================================================================
# Scope
# ======================================================================


class TestScope:
    @pytest.mark.asyncio
    async def test_scope_restricts_documents(
        self, retrieval_engine, repository, chunk_store, document
    ) -> None:
        other = await repository.create(make_new_document(collection_id="col-2"))
        await _store(chunk_store, document.id, 0, "contact email one")
        await _store(chunk_store, other.id, 0, "contact email two")

        result = await retrieval_engine.search(
            "contact",
            scope=SearchScope(collection_ids=["col-2"]),
            options=SearchOptions(threshold=0.5),
        )

        assert [hit.chunk.document_id for hit in result.results] == [other.id]
        assert "collection_ids" in result.metadata.filters_applied
        assert result.results[0].matched_filters == ["collection_ids"]

    @pytest.mark.asyncio
    async def test_scope_intersects_with_filters(
        self, retrieval_engine, repository, chunk_store, document
    ) -> None:
        other = await repository.create(make_new_document())
        await _store(chunk_store, document.id, 0, "contact email one")
        await _store(chunk_store, other.id, 0, "contact email two")

        options = SearchOptions(
            threshold=0.5, filters=SearchFilters(document_ids=[document.id, other.id])
        )
        result = await retrieval_engine.search(
            "contact", scope=SearchScope(document_ids=[other.id]), options=options
        )

        assert [hit.chunk.document_id for hit in result.results] == [other.id]

    @pytest.mark.asyncio
    async def test_disjoint_scope_returns_nothing_without_embedding(
        self, retrieval_engine, embedder
    ) -> None:
        options = SearchOptions(filters=SearchFilters(organization_id="org-a"))

        result = await retrieval_engine.search(
            "contact", scope=SearchScope(organization_id="org-b"), options=options
        )

        assert result.results == []
        assert result.metadata.total_results == 0
        assert embedder.calls == []


# ======================================================================
# Ranking
# ======================================================================


class TestRanking:
    @pytest.mark.asyncio
    async def test_keyword_bonus_breaks_similarity_ties(
        self, retrieval_engine, chunk_store, document
    ) -> None:
        query_vector = concept_vector("phone number")
        await _store(chunk_store, document.id, 0, "Ring the office", embedding=query_vector)
        await _store(chunk_store, document.id, 1, "Our phone number", embedding=query_vector)

        result = await retrieval_engine.search(
            "phone number", options=SearchOptions(threshold=0.5)
        )

        first, second = result.results
        assert first.chunk.chunk_index == 1
        assert first.matched_keywords == ["phone", "number"]
        assert first.keyword_bonus == pytest.approx(0.05)
        assert first.score == pytest.approx(first.similarity_score + 0.05)
        assert second.keyword_bonus == 0.0

    @pytest.mark.asyncio
    async def test_partial_keyword_match_earns_partial_bonus(
        self, retrieval_engine, chunk_store, document
    ) -> None:
        await _store(chunk_store, document.id, 0, "Phone only", embedding=unit_vector(0))

        result = await retrieval_engine.search(
            "phone number", options=SearchOptions(threshold=0.5)
        )

        assert result.results[0].keyword_bonus == pytest.approx(0.025)

    @pytest.mark.asyncio
    async def test_bonus_cannot_invert_a_large_similarity_gap(
        self, retrieval_engine, chunk_store, document
    ) -> None:
        await _store(chunk_store, document.id, 0, "Unrelated words", embedding=unit_vector(0))
        await _store(
            chunk_store,
            document.id,
            1,
            "Contact details here",
            embedding=[1.0, 1.0] + [0.0] * (CONCEPT_DIMENSION - 2),
        )

        result = await retrieval_engine.search(
            "contact details",
            options=SearchOptions(threshold=0.0, query_embedding=unit_vector(0)),
        )

        assert [hit.chunk.chunk_index for hit in result.results] == [0, 1]
        assert result.results[1].keyword_bonus == pytest.approx(0.05)

    @pytest.mark.asyncio
    async def test_threshold_applies_to_base_similarity(
        self, retrieval_engine, chunk_store, document
    ) -> None:
        await _store(chunk_store, document.id, 0, "contact", embedding=unit_vector(1))

        result = await retrieval_engine.search(
            "contact", options=SearchOptions(threshold=0.5, query_embedding=unit_vector(0))
        )

        assert result.results == []
        assert result.metadata.candidate_count == 1
        assert result.metadata.above_threshold_count == 0

    @pytest.mark.asyncio
    async def test_recency_bonus_reported_when_requested(
        self, retrieval_engine, chunk_store, document
    ) -> None:
        await _store(chunk_store, document.id, 0, "contact email")

        plain = await retrieval_engine.search("contact", options=SearchOptions(threshold=0.5))
        boosted = await retrieval_engine.search(
            "contact", options=SearchOptions(threshold=0.5, boost_recent=True)
        )

        assert plain.results[0].recency_bonus == 0.0
        assert 0.0 < boosted.results[0].recency_bonus <= 0.02
        assert boosted.results[0].score > plain.results[0].score

    @pytest.mark.asyncio
    async def test_offset_pages_through_ranking(
        self, retrieval_engine, chunk_store, document
    ) -> None:
        for i in range(5):
            await _store(chunk_store, document.id, i, f"contact {i}", embedding=unit_vector(0))
        options = SearchOptions(threshold=0.5, query_embedding=unit_vector(0), limit=2)

        first = await retrieval_engine.search("x", options=options)
        second = await retrieval_engine.search(
            "x", options=options.model_copy(update={"offset": 2})
        )

        assert [h.chunk.chunk_index for h in first.results] == [0, 1]
        assert [h.chunk.chunk_index for h in second.results] == [2, 3]

    @pytest.mark.asyncio
    async def test_store_is_queried_for_full_pool(self, embedder) -> None:
        store = AsyncMock()
        store.get_dimension = lambda: CONCEPT_DIMENSION
        store.similarity_search.return_value.matches = []
        store.similarity_search.return_value.candidate_count = 0
        store.similarity_search.return_value.above_threshold_count = 0
        engine = RetrievalEngine(embedder, store)

        await engine.search("contact", options=SearchOptions(limit=3, threshold=0.6))

        kwargs = store.similarity_search.await_args.kwargs
        assert kwargs["limit"] == 50
        assert kwargs["threshold"] == 0.6


# ======================================================================
# Metadata
# ======================================================================


@pytest.mark.asyncio
async def test_metadata(retrieval_engine, chunk_store, document) -> None:
    await _store(chunk_store, document.id, 0, "contact email")
    await _store(chunk_store, document.id, 1, "digital technology")

    result = await retrieval_engine.search(
        "  contact  ", session_id="chat-1", options=SearchOptions(threshold=0.5, limit=5)
    )

    assert result.query == "contact"
    meta = result.metadata
    assert meta.total_results == len(result.results) == 1
    assert meta.candidate_count == 2
    assert meta.similarity_threshold == 0.5
    assert meta.max_results == 5
    assert meta.embedding_provider == "keyword_concept"
    assert meta.average_similarity == pytest.approx(result.results[0].similarity_score, abs=1e-4)
    assert result.results[0].content_preview == "contact email"
