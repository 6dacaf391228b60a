"""Tesseract OCR extractor for scanned images.

Wraps pytesseract and reconstructs paragraph structure from Tesseract's
word-level block/paragraph numbering.  Confidence is the mean word
confidence reported by Tesseract, scaled to ``[0, 1]``.
"""

from __future__ import annotations

import asyncio
import time

import pytesseract
from PIL import Image, UnidentifiedImageError

from ragcore.interfaces.text_extractor import ITextExtractor
from ragcore.models.extraction import ExtractionResult
from ragcore.utils.errors import ExtractionFailedError
from ragcore.utils.logging import get_logger

_IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/tiff"})


class TesseractImageExtractor(ITextExtractor):
    """Extractor for JPEG, PNG and TIFF images via Google Tesseract."""

    def __init__(self, language: str = "eng") -> None:
        self._language = language
        self._logger = get_logger(__name__)

    async def extract(self, locator: str, mime_type: str) -> ExtractionResult:
        start = time.perf_counter()
        try:
            text, confidence, word_count = await asyncio.to_thread(self._run_tesseract, locator)
        except (FileNotFoundError, UnidentifiedImageError) as exc:
            raise ExtractionFailedError(
                f"Unreadable image: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        except pytesseract.TesseractNotFoundError as exc:
            raise ExtractionFailedError(
                "Tesseract binary is not installed",
                transient=True,
                provider_name=self.get_provider_name(),
            ) from exc
        except pytesseract.TesseractError as exc:
            self._logger.error("ocr_extraction_failed", provider="tesseract", error=str(exc))
            raise ExtractionFailedError(
                f"Tesseract OCR failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        elapsed = time.perf_counter() - start
        self._logger.info(
            "ocr_extraction_complete",
            provider="tesseract",
            confidence=round(confidence, 4),
            words=word_count,
            processing_time=round(elapsed, 3),
        )
        return ExtractionResult(
            text=text,
            confidence=confidence,
            provider=self.get_provider_name(),
            metadata={"word_count": word_count, "processing_time": round(elapsed, 3)},
        )

    def _run_tesseract(self, file_path: str) -> tuple[str, float, int]:
        """Run Tesseract once and rebuild text from the word-level data output."""
        with Image.open(file_path) as image:
            data = pytesseract.image_to_data(
                image.convert("RGB"),
                lang=self._language,
                output_type=pytesseract.Output.DICT,
            )

        paragraphs: list[list[str]] = []
        confidences: list[float] = []
        prev_key: tuple[int, int] | None = None

        for i in range(len(data["text"])):
            word = data["text"][i].strip()
            conf = float(data["conf"][i])
            # conf == -1 marks layout rows, not words.
            if not word or conf < 0:
                continue
            key = (data["block_num"][i], data["par_num"][i])
            if key != prev_key:
                paragraphs.append([])
                prev_key = key
            paragraphs[-1].append(word)
            confidences.append(conf)

        text = "\n\n".join(" ".join(words) for words in paragraphs)
        avg_confidence = (sum(confidences) / len(confidences) / 100.0) if confidences else 0.0
        return text, min(1.0, avg_confidence), len(confidences)

    def supported_mime_types(self) -> frozenset[str]:
        return _IMAGE_MIME_TYPES

    def get_provider_name(self) -> str:
        return "tesseract"

    def is_available(self) -> bool:
        """Check that the Tesseract binary is installed."""
        try:
            pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError:
            return False
        return True
