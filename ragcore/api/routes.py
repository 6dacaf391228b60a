"""FastAPI routes for document lifecycle, processing and search.

Service dependencies are resolved from ``app.state`` via FastAPI's
``Depends`` using the ``Annotated`` pattern.  Routes raise domain errors
(``NotFoundError``, ``AlreadyProcessingError``...) and let
:class:`~ragcore.api.middleware.ErrorHandlingMiddleware` map them to HTTP
status codes.

# ─── API ROUTE MAP ────────────────────────────────────────────────────
#
# Endpoint                              Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/documents                     POST    Register a stored file
# /api/v1/documents                     GET     List documents (paged)
# /api/v1/documents/{id}                GET     Fetch one document
# /api/v1/documents/{id}                PATCH   Edit title/type/language/tags
# /api/v1/documents/{id}                DELETE  Delete document and its chunks
# /api/v1/documents/{id}/text           GET     Extracted text
# /api/v1/documents/{id}/status         GET     Processing progress
# /api/v1/documents/{id}/process        POST    Run the pipeline (?force=)
# /api/v1/documents/{id}/cancel         POST    Request cooperative cancellation
# /api/v1/search                        POST    Similarity search
# /api/v1/health                        GET     Health check + provider status
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response

from ragcore import __version__
from ragcore.api.schemas import (
    CancelResponse,
    CreateDocumentRequest,
    DocumentListResponse,
    DocumentResponse,
    DocumentTextResponse,
    ErrorResponse,
    HealthResponse,
    SearchRequest,
    SearchResponse,
    SearchResultItem,
    UpdateDocumentRequest,
)
from ragcore.interfaces.chunk_store import IChunkStore
from ragcore.interfaces.document_repository import IDocumentRepository
from ragcore.models.chunk import ChunkType
from ragcore.models.document import (
    DocumentType,
    NewDocument,
    ProcessingOutcome,
    ProcessingStatus,
    ProcessingStatusReport,
)
from ragcore.models.retrieval import DateRange, SearchFilters, SearchOptions, SearchScope
from ragcore.pipeline.document_pipeline import DocumentPipeline
from ragcore.services.retrieval_engine import RetrievalEngine
from ragcore.utils.errors import ValidationError
from ragcore.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Dependency injection helpers: resolve singletons from app.state
# ---------------------------------------------------------------------------


def _get_repository(request: Request) -> IDocumentRepository:
    """Return the document repository from application state."""
    return request.app.state.repository


def _get_chunk_store(request: Request) -> IChunkStore:
    """Return the chunk store from application state."""
    return request.app.state.chunk_store


def _get_pipeline(request: Request) -> DocumentPipeline:
    """Return the document pipeline from application state."""
    return request.app.state.pipeline


def _get_retrieval_engine(request: Request) -> RetrievalEngine:
    """Return the retrieval engine from application state."""
    return request.app.state.retrieval_engine


RepositoryDep = Annotated[IDocumentRepository, Depends(_get_repository)]
ChunkStoreDep = Annotated[IChunkStore, Depends(_get_chunk_store)]
PipelineDep = Annotated[DocumentPipeline, Depends(_get_pipeline)]
RetrievalDep = Annotated[RetrievalEngine, Depends(_get_retrieval_engine)]

_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


# ---------------------------------------------------------------------------
# Document lifecycle
# ---------------------------------------------------------------------------


@router.post(
    "/documents",
    response_model=DocumentResponse,
    status_code=201,
    summary="Register a document",
)
async def create_document(
    body: CreateDocumentRequest, repository: RepositoryDep
) -> DocumentResponse:
    document = await repository.create(NewDocument(**body.model_dump()))
    return DocumentResponse.from_document(document)


@router.get("/documents", response_model=DocumentListResponse, summary="List documents")
async def list_documents(
    repository: RepositoryDep,
    organization_id: str | None = None,
    collection_id: str | None = None,
    document_type: DocumentType | None = None,
    status: ProcessingStatus | None = None,
    language: str | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> DocumentListResponse:
    result = await repository.list_documents(
        organization_id=organization_id,
        collection_id=collection_id,
        document_type=document_type,
        status=status,
        language=language,
        page=page,
        page_size=page_size,
    )
    return DocumentListResponse(
        documents=[DocumentResponse.from_document(d) for d in result.documents],
        current_page=result.current_page,
        total_pages=result.total_pages,
        total_items=result.total_items,
        items_per_page=result.items_per_page,
    )


@router.get(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    responses=_ERRORS,
    summary="Fetch a document",
)
async def get_document(document_id: str, repository: RepositoryDep) -> DocumentResponse:
    return DocumentResponse.from_document(await repository.get(document_id))


@router.patch(
    "/documents/{document_id}",
    response_model=DocumentResponse,
    responses=_ERRORS,
    summary="Update a document",
)
async def update_document(
    document_id: str, body: UpdateDocumentRequest, repository: RepositoryDep
) -> DocumentResponse:
    document = await repository.update(
        document_id,
        title=body.title,
        document_type=body.document_type,
        language=body.language,
        tags=body.tags,
    )
    return DocumentResponse.from_document(document)


@router.delete(
    "/documents/{document_id}",
    status_code=204,
    responses=_ERRORS,
    summary="Delete a document and its chunks",
)
async def delete_document(document_id: str, repository: RepositoryDep) -> Response:
    await repository.delete(document_id)
    return Response(status_code=204)


@router.get(
    "/documents/{document_id}/text",
    response_model=DocumentTextResponse,
    responses=_ERRORS,
    summary="Fetch extracted text",
)
async def get_document_text(
    document_id: str, repository: RepositoryDep
) -> DocumentTextResponse:
    document = await repository.get(document_id)
    return DocumentTextResponse(
        document_id=document.id,
        text=document.extracted_text,
        ocr_confidence=document.ocr_confidence,
        available=document.extracted_text is not None,
    )


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


@router.get(
    "/documents/{document_id}/status",
    response_model=ProcessingStatusReport,
    responses=_ERRORS,
    summary="Poll processing progress",
)
async def get_processing_status(
    document_id: str, pipeline: PipelineDep
) -> ProcessingStatusReport:
    return await pipeline.get_status(document_id)


@router.post(
    "/documents/{document_id}/process",
    response_model=ProcessingOutcome,
    responses=_ERRORS,
    summary="Process a document",
)
async def process_document(
    document_id: str,
    pipeline: PipelineDep,
    force: bool = False,
) -> ProcessingOutcome:
    """Run extraction, chunking, embedding and indexing to completion.

    409 when the document is already processing (or completed without
    ``force``); 422 when text extraction fails.
    """
    return await pipeline.start_processing(document_id, force=force)


@router.post(
    "/documents/{document_id}/cancel",
    response_model=CancelResponse,
    responses=_ERRORS,
    summary="Request cancellation of an in-flight run",
)
async def cancel_processing(document_id: str, pipeline: PipelineDep) -> CancelResponse:
    requested = await pipeline.request_cancellation(document_id)
    return CancelResponse(document_id=document_id, cancellation_requested=requested)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


@router.post(
    "/search",
    response_model=SearchResponse,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Similarity search over stored chunks",
)
async def search(body: SearchRequest, engine: RetrievalDep) -> SearchResponse:
    filters = SearchFilters(
        content_types=_parse_enum_list(body.content_types, ChunkType, "content_types"),
        categories=_parse_enum_list(body.categories, DocumentType, "categories"),
        tags=body.tags,
        date_range=(
            DateRange(start=body.date_from, end=body.date_to)
            if body.date_from or body.date_to
            else None
        ),
    )
    scope = SearchScope(
        organization_id=body.organization_id,
        collection_ids=body.collection_ids,
        document_ids=body.document_ids,
    )
    options = SearchOptions(
        limit=body.limit,
        threshold=body.threshold,
        offset=body.offset,
        filters=filters,
        boost_recent=body.boost_recent,
    )
    result = await engine.search(
        body.query, scope=scope, session_id=body.session_id, options=options
    )
    return SearchResponse(
        query=result.query,
        results=[SearchResultItem.from_retrieved(hit) for hit in result.results],
        metadata=result.metadata,
    )


def _parse_enum_list(values: list[str], enum_type: type, parameter: str) -> list:
    parsed = []
    for value in values:
        try:
            parsed.append(enum_type(value))
        except ValueError as exc:
            allowed = ", ".join(member.value for member in enum_type)
            raise ValidationError(
                f"Unknown {parameter} value {value!r}; expected one of: {allowed}",
                parameter=parameter,
            ) from exc
    return parsed


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Application health check")
async def health_check(
    request: Request, repository: RepositoryDep, chunk_store: ChunkStoreDep
) -> HealthResponse:
    """Return application health, version, provider availability and corpus size."""
    providers = dict(getattr(request.app.state, "provider_registry", {}))
    documents = await repository.status_counts()
    total_chunks = await chunk_store.count()

    status = "healthy" if providers.get("embedding", False) else "degraded"
    return HealthResponse(
        status=status,
        version=__version__,
        providers=providers,
        documents=documents,
        total_chunks=total_chunks,
    )
