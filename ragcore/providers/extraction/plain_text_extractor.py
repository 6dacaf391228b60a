"""Plain-text and Markdown extractor.

Reads the file as UTF-8 (undecodable bytes are replaced) and normalises
line endings so paragraph boundaries survive for the chunker.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from ragcore.interfaces.text_extractor import ITextExtractor
from ragcore.models.extraction import ExtractionResult
from ragcore.utils.errors import ExtractionFailedError

logger = structlog.get_logger(logger_name=__name__)

_MIME_TYPES = frozenset({"text/plain", "text/markdown"})


class PlainTextExtractor(ITextExtractor):
    """Extractor for ``text/plain`` and ``text/markdown`` documents."""

    async def extract(self, locator: str, mime_type: str) -> ExtractionResult:
        path = Path(locator)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        except FileNotFoundError as exc:
            raise ExtractionFailedError(
                f"Document file not found: {locator}",
                provider_name=self.get_provider_name(),
            ) from exc
        except OSError as exc:
            raise ExtractionFailedError(
                f"Could not read document file: {exc}",
                transient=True,
                provider_name=self.get_provider_name(),
            ) from exc

        text = raw.replace("\r\n", "\n").replace("\r", "\n").strip()
        logger.debug("plain_text_extracted", locator=locator, chars=len(text))
        return ExtractionResult(
            text=text,
            confidence=1.0,
            provider=self.get_provider_name(),
            metadata={"word_count": len(text.split()), "mime_type": mime_type},
        )

    def supported_mime_types(self) -> frozenset[str]:
        return _MIME_TYPES

    def get_provider_name(self) -> str:
        return "plain_text"

    def is_available(self) -> bool:
        return True
