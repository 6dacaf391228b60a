"""Text-extraction adapters, one per document family."""

from ragcore.providers.extraction.docx_extractor import DocxTextExtractor
from ragcore.providers.extraction.pdf_extractor import PDFTextExtractor
from ragcore.providers.extraction.plain_text_extractor import PlainTextExtractor
from ragcore.providers.extraction.tesseract_extractor import TesseractImageExtractor

__all__ = [
    "DocxTextExtractor",
    "PDFTextExtractor",
    "PlainTextExtractor",
    "TesseractImageExtractor",
]
