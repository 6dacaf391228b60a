"""Text-extraction result model returned by every ``ITextExtractor``."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ExtractionResult(BaseModel):
    """The result of running a text extractor on one document.

    Produced by :class:`~ragcore.services.extraction_service.ExtractionService`,
    which routes a document to the first available extractor that supports
    its MIME type.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    provider: str
    # Provider-specific details: page count, word count, processing time...
    metadata: dict[str, Any] = Field(default_factory=dict)
