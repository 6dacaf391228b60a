"""Utility modules for ragcore.

- **errors** -- Domain-specific exception hierarchy rooted at RagCoreError;
  pipeline stages raise their own subclass so callers can map failures to
  conflicts, caller errors, or degraded runs without broad ``except`` blocks.
- **concurrency** -- semaphore-bounded ``asyncio.gather`` used for the
  per-chunk embedding worker pool.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
"""

from ragcore.utils.concurrency import throttled_gather
from ragcore.utils.errors import (
    AlreadyCompletedError,
    AlreadyProcessingError,
    ConfigurationError,
    ConflictError,
    EmbeddingDegradedError,
    EmbeddingError,
    ExtractionFailedError,
    NotFoundError,
    PipelineStageError,
    RagCoreError,
    StorageError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from ragcore.utils.logging import configure_logging, get_logger

__all__ = [
    "AlreadyCompletedError",
    "AlreadyProcessingError",
    "ConfigurationError",
    "ConflictError",
    "EmbeddingDegradedError",
    "EmbeddingError",
    "ExtractionFailedError",
    "NotFoundError",
    "PipelineStageError",
    "RagCoreError",
    "StorageError",
    "UnsupportedMediaTypeError",
    "ValidationError",
    "configure_logging",
    "get_logger",
    "throttled_gather",
]
