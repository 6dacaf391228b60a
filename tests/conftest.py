"""Shared pytest fixtures for the ragcore test suite."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import pytest

from ragcore.pipeline.document_pipeline import DocumentPipeline
from ragcore.pipeline.retry_policy import RetryPolicy
from ragcore.providers.extraction.plain_text_extractor import PlainTextExtractor
from ragcore.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from ragcore.providers.storage.sqlite_document_repository import SQLiteDocumentRepository
from ragcore.services.chunker import ChunkingOptions, TextChunker
from ragcore.services.deduplicator import ContentDeduplicator
from ragcore.services.extraction_service import ExtractionService
from ragcore.services.retrieval_engine import RetrievalEngine
from ragcore.utils.logging import configure_logging
from tests.fakes import CONCEPT_DIMENSION, DEPA_TEXT, KeywordConceptEmbedder

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session", autouse=True)
def _logs_to_stderr() -> None:
    """Send logs to stderr as ``ragcore.cli.main()`` does, before any logger is cached.

    The CLI tests call ``cli._run`` directly and parse its stdout as JSON.
    """
    configure_logging(stream=sys.stderr)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Return a fresh SQLite database path under the test's tmp dir."""
    return tmp_path / "ragcore.db"


@pytest.fixture
async def repository(db_path: Path):
    repo = SQLiteDocumentRepository(db_path)
    await repo.initialize()
    yield repo


@pytest.fixture
async def chunk_store(db_path: Path):
    store = SQLiteChunkStore(db_path, dimension=CONCEPT_DIMENSION)
    await store.initialize()
    yield store


@pytest.fixture
def depa_file(tmp_path: Path) -> Path:
    path = tmp_path / "depa.txt"
    path.write_text(DEPA_TEXT, encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def embedder() -> KeywordConceptEmbedder:
    return KeywordConceptEmbedder()


@pytest.fixture
def pipeline_factory(repository, chunk_store, embedder):
    """Build a DocumentPipeline, overriding any collaborator by keyword."""

    def _factory(**overrides: Any) -> DocumentPipeline:
        components: dict[str, Any] = {
            "repository": repository,
            "extraction_service": ExtractionService([PlainTextExtractor()]),
            "chunker": TextChunker(ChunkingOptions(strategy="paragraph")),
            "deduplicator": ContentDeduplicator(),
            "embedding_provider": embedder,
            "chunk_store": chunk_store,
            "retry_policy": RetryPolicy(),
            "embedding_concurrency": 4,
        }
        components.update(overrides)
        return DocumentPipeline(**components)

    return _factory


@pytest.fixture
def pipeline(pipeline_factory) -> DocumentPipeline:
    return pipeline_factory()


@pytest.fixture
def retrieval_engine(embedder, chunk_store) -> RetrievalEngine:
    return RetrievalEngine(embedding_provider=embedder, chunk_store=chunk_store)
