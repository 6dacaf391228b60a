"""Document processing state machine and its retry policy."""

from ragcore.pipeline.document_pipeline import DocumentPipeline
from ragcore.pipeline.retry_policy import RetryPolicy

__all__ = [
    "DocumentPipeline",
    "RetryPolicy",
]
