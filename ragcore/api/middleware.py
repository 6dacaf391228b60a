"""API middleware: request logging and error handling.

Provides middleware classes for structured request logging (via structlog)
and automatic conversion of ``RagCoreError`` subclasses into JSON
``ErrorResponse`` bodies with the matching HTTP status.

# ─── MIDDLEWARE EXECUTION ORDER ───────────────────────────────────────
#
# Starlette middleware is a stack (last added, first executed):
#
#   In main.py:
#     app.add_middleware(ErrorHandlingMiddleware)    # added 1st, inner
#     app.add_middleware(RequestLoggingMiddleware)   # added 2nd, outermost
#
#   Request flow:
#     Client -> RequestLogging -> ErrorHandling -> route handler
#
# So RequestLoggingMiddleware sees the *final* status code, including
# the ones ErrorHandling produced from domain errors.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import time

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ragcore.api.schemas import ErrorResponse
from ragcore.utils.errors import (
    ConflictError,
    EmbeddingError,
    ExtractionFailedError,
    NotFoundError,
    PipelineStageError,
    RagCoreError,
    ValidationError,
)
from ragcore.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

# Checked in order; the first matching class wins.
_STATUS_CODES: tuple[tuple[type[RagCoreError], int], ...] = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 400),
    (ExtractionFailedError, 422),
    (EmbeddingError, 503),
)


def status_code_for(exc: RagCoreError) -> int:
    """Map a domain error to its HTTP status code (500 when unmapped)."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def error_response(exc: RagCoreError) -> ErrorResponse:
    """Build the sanitized client-facing body for *exc*."""
    body = ErrorResponse(error=type(exc).__name__, detail=exc.message)
    if isinstance(exc, ValidationError):
        body = body.model_copy(update={"parameter": exc.parameter})
    if isinstance(exc, PipelineStageError):
        body = body.model_copy(update={"document_id": exc.document_id, "stage": exc.stage})
    elif isinstance(exc, ConflictError):
        body = body.model_copy(update={"document_id": exc.document_id})
    return body


# ---------------------------------------------------------------------------
# Request Logging
# ---------------------------------------------------------------------------


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status code, and duration."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response: Response | None = None

        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = response.status_code if response else 500
            _logger.info(
                "http_request",
                method=request.method,
                path=str(request.url.path),
                status=status_code,
                duration_ms=duration_ms,
            )


# ---------------------------------------------------------------------------
# Error Handling
# ---------------------------------------------------------------------------


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Catch ``RagCoreError`` subclasses and return structured JSON errors.

    Stack traces are logged server-side only; the client sees the error
    class name, its message and, where known, the parameter, document and
    stage it concerns.  Generic Python exceptions bubble up to FastAPI's
    default 500 handler.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)
        except RagCoreError as exc:
            status_code = status_code_for(exc)
            log = _logger.error if status_code >= 500 else _logger.warning
            log(
                "application_error",
                error_type=type(exc).__name__,
                message=exc.message,
                provider=exc.provider_name,
                status=status_code,
                path=str(request.url.path),
            )
            return JSONResponse(
                status_code=status_code,
                content=error_response(exc).model_dump(exclude_none=True),
            )
