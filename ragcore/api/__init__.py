"""ragcore API layer: routes, schemas and middleware."""

from ragcore.api.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from ragcore.api.routes import router
from ragcore.api.schemas import (
    CreateDocumentRequest,
    DocumentResponse,
    ErrorResponse,
    HealthResponse,
    SearchRequest,
    SearchResponse,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "router",
    "CreateDocumentRequest",
    "DocumentResponse",
    "ErrorResponse",
    "HealthResponse",
    "SearchRequest",
    "SearchResponse",
]
