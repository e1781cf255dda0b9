"""
Extraction Adapter
══════════════════

Wraps an OCRProvider and turns its raw output into the ExtractedDocument the
pipeline persists:

  1. Run the provider, bounded by a timeout.
  2. Drop low-quality structure:
       entities   : confidence must exceed 0.5
       paragraphs : must be longer than 10 characters AND exceed 0.7 confidence
       key/values : key and value both present AND exceed 0.6 confidence
       tables     : kept as extracted
  3. Aggregate confidence = mean of the retained paragraph confidences
     (0.0 when none remain).
  4. Reject documents whose text is blank with ExtractionError(kind=empty).

Failure kinds (ExtractionError.kind):
  unavailable       : provider unreachable, timed out or failed
  empty             : provider answered but produced no text
  permission_denied : PermissionDeniedError, credentials lack OCR access

This module is the only place that knows about the quality thresholds.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from legalease.core.errors import ExtractionError, ExtractionErrorKind
from legalease.processing.ocr import OCRProvider, RawDocument
from legalease.schemas.documents import Entity, ExtractedData, KeyValuePair, Paragraph, Table

logger = logging.getLogger(__name__)

ENTITY_MIN_CONFIDENCE    = 0.5
PARAGRAPH_MIN_CHARS      = 10
PARAGRAPH_MIN_CONFIDENCE = 0.7
KEY_VALUE_MIN_CONFIDENCE = 0.6


@dataclass
class ExtractedDocument:
    """Filtered extraction output, not persisted as-is."""
    text:       str
    pages:      int
    entities:   list[Entity]       = field(default_factory=list)
    paragraphs: list[Paragraph]    = field(default_factory=list)
    tables:     list[Table]        = field(default_factory=list)
    key_values: list[KeyValuePair] = field(default_factory=list)
    confidence: float = 0.0
    strategy:   str   = "unknown"

    def to_extracted_data(self) -> ExtractedData:
        return ExtractedData(
            pages=self.pages,
            entities=self.entities,
            paragraphs=self.paragraphs,
            tables=self.tables,
            key_value_pairs=self.key_values,
            confidence=self.confidence,
        )


class TextExtractor:
    """
    Stateless adapter; one instance is shared by all requests.

    Usage:
        extractor = TextExtractor(build_ocr_provider(settings), timeout_seconds=120)
        document  = await extractor.extract_text(buffer, "application/pdf")
    """

    def __init__(self, provider: OCRProvider, timeout_seconds: float = 120.0) -> None:
        self._provider = provider
        self._timeout  = timeout_seconds

    async def extract_text(self, buffer: bytes, mime_type: str) -> ExtractedDocument:
        try:
            raw = await asyncio.wait_for(
                self._provider.process(buffer, mime_type),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Extraction | timed out after %.0fs mime=%s", self._timeout, mime_type)
            raise ExtractionError(
                f"Text extraction timed out after {self._timeout:.0f} seconds.",
                ExtractionErrorKind.UNAVAILABLE,
            ) from exc
        except ExtractionError:
            raise
        except Exception as exc:
            logger.exception("Extraction | provider=%s failed", self._provider.strategy_name)
            raise ExtractionError(
                f"Text extraction failed: {exc}", ExtractionErrorKind.UNAVAILABLE,
            ) from exc

        document = build_extracted_document(raw)
        if not document.text.strip():
            raise ExtractionError(
                "No text could be extracted from the document.", ExtractionErrorKind.EMPTY,
            )

        logger.info(
            "Extraction | strategy=%s pages=%d chars=%d entities=%d paragraphs=%d tables=%d key_values=%d confidence=%.3f",
            document.strategy, document.pages, len(document.text),
            len(document.entities), len(document.paragraphs),
            len(document.tables), len(document.key_values), document.confidence,
        )
        return document


def build_extracted_document(raw: RawDocument) -> ExtractedDocument:
    """Apply the quality filters to a provider result."""
    entities = [
        Entity(type=e.type, text=e.text, confidence=e.confidence)
        for e in raw.entities
        if e.text and e.confidence > ENTITY_MIN_CONFIDENCE
    ]
    paragraphs = [
        Paragraph(page_number=p.page_number, text=p.text, confidence=p.confidence)
        for p in raw.paragraphs
        if len(p.text) > PARAGRAPH_MIN_CHARS and p.confidence > PARAGRAPH_MIN_CONFIDENCE
    ]
    tables = [
        Table(
            page_number=t.page_number,
            table_index=t.table_index,
            rows=t.rows,
            columns=t.columns,
            content=t.content,
        )
        for t in raw.tables
    ]
    key_values = [
        KeyValuePair(key=kv.key, value=kv.value, confidence=kv.confidence)
        for kv in raw.key_values
        if kv.key and kv.value and kv.confidence > KEY_VALUE_MIN_CONFIDENCE
    ]
    confidence = (
        sum(p.confidence for p in paragraphs) / len(paragraphs) if paragraphs else 0.0
    )
    return ExtractedDocument(
        text=raw.full_text,
        pages=len(raw.pages),
        entities=entities,
        paragraphs=paragraphs,
        tables=tables,
        key_values=key_values,
        confidence=round(min(confidence, 1.0), 4),
        strategy=raw.strategy_name,
    )
