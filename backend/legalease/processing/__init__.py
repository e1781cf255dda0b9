"""
Document text extraction.

    from legalease.processing import TextExtractor, build_ocr_provider

    extractor = TextExtractor(build_ocr_provider(settings), settings.ocr_timeout_seconds)
    document  = await extractor.extract_text(buffer, mime_type)
"""

from legalease.processing.extractor import ExtractedDocument, TextExtractor
from legalease.processing.ocr import (
    CascadingOCRProvider,
    OCRProvider,
    PlainTextProvider,
    PyMuPDFProvider,
    RawDocument,
    TextractProvider,
    build_ocr_provider,
)

__all__ = [
    "CascadingOCRProvider",
    "ExtractedDocument",
    "OCRProvider",
    "PlainTextProvider",
    "PyMuPDFProvider",
    "RawDocument",
    "TextExtractor",
    "TextractProvider",
    "build_ocr_provider",
]
