"""ragcore FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml`` and configures
structured logging.

Also exposes :func:`build_services`, used by the CLI to get the same
object graph without a web server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from ragcore import __version__
from ragcore.api.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from ragcore.api.routes import router as api_router
from ragcore.config.loader import load_config
from ragcore.config.settings import Settings
from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.interfaces.text_extractor import ITextExtractor
from ragcore.pipeline.document_pipeline import DocumentPipeline
from ragcore.pipeline.retry_policy import RetryPolicy
from ragcore.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from ragcore.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from ragcore.providers.extraction.docx_extractor import DocxTextExtractor
from ragcore.providers.extraction.pdf_extractor import PDFTextExtractor
from ragcore.providers.extraction.plain_text_extractor import PlainTextExtractor
from ragcore.providers.extraction.tesseract_extractor import TesseractImageExtractor
from ragcore.providers.storage.sqlite_chunk_store import SQLiteChunkStore
from ragcore.providers.storage.sqlite_document_repository import SQLiteDocumentRepository
from ragcore.services.chunker import ChunkingOptions, TextChunker
from ragcore.services.deduplicator import ContentDeduplicator
from ragcore.services.extraction_service import ExtractionService
from ragcore.services.retrieval_engine import RetrievalEngine
from ragcore.utils.errors import ConfigurationError
from ragcore.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)

_DEFAULT_EXTRACTION_PRIORITY = ("plain_text", "pdf", "docx", "tesseract")


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Instantiate the embedding provider named by ``EMBEDDING_PROVIDER``."""
    name = app_settings.embedding_provider.lower()
    if name == "openai":
        return OpenAIEmbeddingProvider(settings=app_settings)
    if name == "nomic":
        return NomicEmbeddingProvider(settings=app_settings)
    raise ConfigurationError(
        f"Unknown embedding provider {app_settings.embedding_provider!r}; "
        "expected 'openai' or 'nomic'"
    )


def _build_extractors(config: dict[str, Any]) -> list[ITextExtractor]:
    """Instantiate text extractors in the configured priority order."""
    extraction = config.get("extraction", {})
    factories = {
        "plain_text": PlainTextExtractor,
        "pdf": PDFTextExtractor,
        "docx": DocxTextExtractor,
        "tesseract": lambda: TesseractImageExtractor(
            language=extraction.get("tesseract_language", "eng")
        ),
    }
    priority = extraction.get("priority") or list(_DEFAULT_EXTRACTION_PRIORITY)
    unknown = [name for name in priority if name not in factories]
    if unknown:
        raise ConfigurationError(f"Unknown extractors in extraction.priority: {unknown}")
    return [factories[name]() for name in priority]


def _build_chunking_options(app_settings: Settings) -> ChunkingOptions:
    try:
        return ChunkingOptions(
            chunk_size=app_settings.chunk_size,
            overlap=app_settings.chunk_overlap,
            preserve_paragraphs=app_settings.chunk_preserve_paragraphs,
            strategy=app_settings.chunk_strategy,
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid chunking configuration: {exc}") from exc


# ---------------------------------------------------------------------------
# Service graph
# ---------------------------------------------------------------------------


def build_services(
    app_settings: Settings,
    embedding_provider: IEmbeddingProvider | None = None,
    extractors: list[ITextExtractor] | None = None,
    config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance for the application.

    Returns a flat dict of named components to be stored on ``app.state``.
    *embedding_provider* and *extractors* replace the configured ones when
    given.

    Raises
    ------
    ConfigurationError
        For an unknown provider name, invalid chunking settings, or an
        embedding provider whose dimension differs from
        ``EMBEDDING_DIMENSION``.
    """
    config = config if config is not None else load_config(settings=app_settings)

    # -- Storage (one SQLite file) --
    repository = SQLiteDocumentRepository(app_settings.database_path)
    chunk_store = SQLiteChunkStore(
        app_settings.database_path,
        dimension=app_settings.embedding_dimension,
        recency_bonus_cap=app_settings.recency_bonus_cap,
        recency_half_life_days=app_settings.recency_half_life_days,
    )

    # -- Embedding --
    embedder = embedding_provider or _build_embedding_provider(app_settings)
    if embedder.get_dimension() != chunk_store.get_dimension():
        raise ConfigurationError(
            f"Embedding provider {embedder.get_provider_name()!r} produces "
            f"{embedder.get_dimension()}-d vectors but EMBEDDING_DIMENSION is "
            f"{chunk_store.get_dimension()}"
        )

    # -- Extraction --
    extraction_service = ExtractionService(
        extractors if extractors is not None else _build_extractors(config)
    )

    # -- Pipeline --
    retry_policy = RetryPolicy(
        max_attempts=app_settings.retry_max_attempts,
        backoff_seconds=app_settings.retry_backoff_seconds,
        backoff_max_seconds=app_settings.retry_backoff_max_seconds,
    )
    pipeline = DocumentPipeline(
        repository=repository,
        extraction_service=extraction_service,
        chunker=TextChunker(_build_chunking_options(app_settings)),
        deduplicator=ContentDeduplicator(),
        embedding_provider=embedder,
        chunk_store=chunk_store,
        retry_policy=retry_policy,
        embedding_concurrency=app_settings.embedding_concurrency,
    )

    # -- Retrieval --
    retrieval_engine = RetrievalEngine(
        embedding_provider=embedder,
        chunk_store=chunk_store,
        keyword_bonus_cap=app_settings.keyword_bonus_cap,
        recency_bonus_cap=app_settings.recency_bonus_cap,
    )

    provider_registry = {
        "embedding": embedder.is_available(),
        "embedding_provider": embedder.get_provider_name(),
        "extraction": sorted(extraction_service.supported_mime_types()),
        "storage": chunk_store.get_provider_name(),
    }

    return {
        "settings": app_settings,
        "config": config,
        "repository": repository,
        "chunk_store": chunk_store,
        "embedding_provider": embedder,
        "extraction_service": extraction_service,
        "pipeline": pipeline,
        "retrieval_engine": retrieval_engine,
        "provider_registry": provider_registry,
    }


async def initialize_storage(components: dict[str, Any]) -> None:
    """Create the database schema if needed."""
    await components["repository"].initialize()
    await components["chunk_store"].initialize()


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
    extractors: list[ITextExtractor] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Services are constructed in the lifespan handler, so creating the app
    performs no I/O.
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        """Initialise providers and services on startup."""
        components = build_services(
            app_settings, embedding_provider=embedding_provider, extractors=extractors
        )
        for key, value in components.items():
            setattr(application.state, key, value)
        await initialize_storage(components)

        _logger.info(
            "app_startup",
            version=__version__,
            environment=app_settings.app_env,
            database=app_settings.database_path,
            embedding_provider=components["provider_registry"]["embedding_provider"],
        )
        yield
        _logger.info("app_shutdown")

    application = FastAPI(
        title="ragcore API",
        version=__version__,
        description=(
            "Ingest documents, extract and chunk their text, embed the chunks, "
            "and serve similarity-ranked retrieval for retrieval-augmented generation."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "ragcore.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
