"""
Unit Tests — TextExtractor (Extraction Adapter)
════════════════════════════════════════════════
Coverage targets:
  ✅ Entity filter: confidence must exceed 0.5
  ✅ Paragraph filter: longer than 10 chars AND confidence above 0.7
  ✅ Key/value filter: both sides present AND confidence above 0.6; tables kept
  ✅ Aggregate confidence = mean of retained paragraphs (0 when none)
  ✅ Blank text → ExtractionError(kind=empty)
  ✅ Provider timeout / unexpected exception → ExtractionError(kind=unavailable)
  ✅ PermissionDeniedError passes through with its distinct kind
  ✅ ExtractedDocument → ExtractedData conversion
"""

from __future__ import annotations

import asyncio

import pytest

from legalease.core.errors import ExtractionError, ExtractionErrorKind, PermissionDeniedError
from legalease.processing.extractor import TextExtractor, build_extracted_document
from legalease.processing.ocr import (
    OCRProvider,
    PageText,
    RawDocument,
    RawEntity,
    RawKeyValue,
    RawParagraph,
    RawTable,
)


class _StaticProvider(OCRProvider):
    def __init__(self, raw: RawDocument | None = None, error: Exception | None = None, delay: float = 0.0):
        self._raw = raw
        self._error = error
        self._delay = delay

    @property
    def strategy_name(self) -> str:
        return "static"

    async def process(self, buffer: bytes, mime_type: str) -> RawDocument:
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return self._raw


def _raw(paragraphs=(), entities=(), text: str = "Some extracted agreement text.") -> RawDocument:
    return RawDocument(
        pages=[PageText(1, text, "static")],
        paragraphs=list(paragraphs),
        entities=list(entities),
        strategy_name="static",
    )


@pytest.mark.unit
class TestQualityFilters:

    def test_low_confidence_entities_dropped(self):
        raw = _raw(entities=[
            RawEntity("PERSON", "Asha Landlord", 0.91),
            RawEntity("DATE", "fifth day", 0.5),          # not strictly above threshold
            RawEntity("LOCATION", "Mumbai", 0.49),
        ])
        document = build_extracted_document(raw)
        assert [e.text for e in document.entities] == ["Asha Landlord"]

    def test_short_and_low_confidence_paragraphs_dropped(self):
        raw = _raw(paragraphs=[
            RawParagraph(1, "The tenant shall pay rent monthly.", 0.95),
            RawParagraph(1, "Ten chars.", 0.99),                    # exactly 10 chars
            RawParagraph(1, "Blurry scanned paragraph text here.", 0.7),
            RawParagraph(2, "Deposit is refundable within 30 days.", 0.85),
        ])
        document = build_extracted_document(raw)

        assert [p.text for p in document.paragraphs] == [
            "The tenant shall pay rent monthly.",
            "Deposit is refundable within 30 days.",
        ]
        assert document.confidence == pytest.approx(0.9)

    def test_key_values_below_threshold_dropped(self):
        raw = _raw()
        raw.key_values = [
            RawKeyValue("Monthly rent", "Rs. 25,000", 0.93),
            RawKeyValue("Deposit", "Rs. 1,00,000", 0.6),      # not strictly above threshold
            RawKeyValue("Tenant signature", "", 0.99),
        ]
        document = build_extracted_document(raw)
        assert [(kv.key, kv.value) for kv in document.key_values] == [("Monthly rent", "Rs. 25,000")]

    def test_tables_kept_with_dimensions(self):
        raw = _raw()
        raw.tables = [RawTable(2, 1, [["Item", "Amount"], ["Rent", "25,000"], ["Maintenance", "2,000"]])]

        data = build_extracted_document(raw).to_extracted_data()

        table = data.tables[0]
        assert (table.page_number, table.table_index) == (2, 1)
        assert (table.rows, table.columns) == (3, 2)
        assert table.content[1] == ["Rent", "25,000"]
        assert data.key_value_pairs == []

    def test_confidence_zero_without_paragraphs(self):
        document = build_extracted_document(_raw())
        assert document.confidence == 0.0

    def test_to_extracted_data(self):
        raw = _raw(
            paragraphs=[RawParagraph(1, "A paragraph that is long enough.", 1.0)],
            entities=[RawEntity("ORGANIZATION", "Acme Corp", 0.8)],
        )
        data = build_extracted_document(raw).to_extracted_data()
        assert data.pages == 1
        assert data.entities[0].type == "ORGANIZATION"
        assert data.paragraphs[0].page_number == 1
        assert data.confidence == 1.0


@pytest.mark.unit
class TestExtractText:

    async def test_success_returns_full_text(self):
        raw = RawDocument(
            pages=[PageText(1, "Page one text."), PageText(2, ""), PageText(3, "Page three text.")],
            strategy_name="static",
        )
        extractor = TextExtractor(_StaticProvider(raw))

        document = await extractor.extract_text(b"...", "application/pdf")

        assert document.text == "Page one text.\n\nPage three text."
        assert document.pages == 3
        assert document.strategy == "static"

    async def test_blank_text_is_empty_kind(self):
        extractor = TextExtractor(_StaticProvider(_raw(text="   \n ")))

        with pytest.raises(ExtractionError) as exc_info:
            await extractor.extract_text(b"...", "text/plain")

        assert exc_info.value.kind == ExtractionErrorKind.EMPTY

    async def test_timeout_is_unavailable_kind(self):
        extractor = TextExtractor(_StaticProvider(_raw(), delay=1.0), timeout_seconds=0.01)

        with pytest.raises(ExtractionError) as exc_info:
            await extractor.extract_text(b"...", "image/png")

        assert exc_info.value.kind == ExtractionErrorKind.UNAVAILABLE
        assert "timed out" in exc_info.value.message

    async def test_unexpected_exception_is_unavailable_kind(self):
        extractor = TextExtractor(_StaticProvider(error=RuntimeError("socket closed")))

        with pytest.raises(ExtractionError) as exc_info:
            await extractor.extract_text(b"...", "image/png")

        assert exc_info.value.kind == ExtractionErrorKind.UNAVAILABLE
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    async def test_permission_denied_propagates(self):
        extractor = TextExtractor(_StaticProvider(error=PermissionDeniedError("denied")))

        with pytest.raises(PermissionDeniedError) as exc_info:
            await extractor.extract_text(b"...", "image/png")

        assert exc_info.value.kind == ExtractionErrorKind.PERMISSION_DENIED
