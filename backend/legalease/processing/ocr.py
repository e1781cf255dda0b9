"""
OCR Strategy Pattern  —  Text Extraction from uploaded documents
═══════════════════════════════════════════════════════════════

Design: Strategy + Router
─────────────────────────
Every provider answers the same call:

    await provider.process(buffer, mime_type) -> RawDocument

  PlainTextProvider
    - text/plain uploads; no OCR involved
    - UTF-8 with latin-1 fallback, pages split on form feed (\\f)

  PyMuPDFProvider
    - Native PDF text layer via PyMuPDF (fitz), microseconds per page
    - Zero API calls; runs in a thread executor
    - Returns near-empty pages for scanned PDFs

  TextractProvider
    - AWS Textract for images and scanned PDFs; multi-page PDFs go
      through the asynchronous job API via an S3 staging object
    - LINE blocks become paragraphs with a normalised 0–1 confidence
    - TABLE and KEY_VALUE_SET blocks become tables and form fields
    - Optional AWS Comprehend DetectEntities for typed entities

  CascadingOCRProvider
    - Routes by MIME type
    - PDFs: PyMuPDF first; if the text layer averages fewer than
      MIN_CHARS_PER_PAGE_THRESHOLD characters per page the document is
      treated as scanned and sent to the OCR backend (when configured)

Unlike a best-effort cascade, providers RAISE ExtractionError on failure:
the pipeline needs to tell "provider down" apart from "document is empty".
Callers never need to know which backend produced the RawDocument.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from legalease.core.errors import ExtractionError, ExtractionErrorKind, PermissionDeniedError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# If average extracted chars per page is below this threshold,
# the PDF is classified as scanned / image-based.
MIN_CHARS_PER_PAGE_THRESHOLD = 50

# Comprehend DetectEntities accepts at most 100 KB of UTF-8 per call
COMPREHEND_MAX_CHARS = 20_000

# Synchronous Textract calls accept images and single-page PDFs only
SYNC_MAX_PAGES = 1

TEXTRACT_FEATURE_TYPES = ["TABLES", "FORMS"]

_PERMISSION_ERROR_CODES = frozenset(
    {
        "AccessDeniedException",
        "AccessDenied",
        "UnrecognizedClientException",
        "InvalidSignatureException",
    }
)

IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/png"})


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class PageText:
    """
    Text extracted from a single page.

    page_number       : 1-based page index
    text              : raw extracted text (may be empty for image-only pages)
    extraction_method : "plain_text" | "pymupdf" | "textract"
    """
    page_number:       int
    text:              str
    extraction_method: str = "unknown"


@dataclass
class RawParagraph:
    page_number: int
    text:        str
    confidence:  float


@dataclass
class RawEntity:
    type:       str
    text:       str
    confidence: float


@dataclass
class RawTable:
    page_number: int
    table_index: int               # 1-based, per page
    content:     list[list[str]]   # rows of cell text

    @property
    def rows(self) -> int:
        return len(self.content)

    @property
    def columns(self) -> int:
        return max((len(r) for r in self.content), default=0)


@dataclass
class RawKeyValue:
    key:        str
    value:      str
    confidence: float   # min of key and value confidence, 0–1


@dataclass
class RawDocument:
    """
    Unfiltered provider output.

    pages         : list of PageText (one per page)
    paragraphs    : layout paragraphs with per-paragraph confidence
    entities      : typed entities (empty unless the provider detects them)
    tables        : table grids (layout analysis only)
    key_values    : form fields (layout analysis only)
    strategy_name : which provider produced this result
    elapsed_ms    : wall-clock time for the provider (ms)
    used_ocr      : True if image-based OCR was invoked
    """
    pages:         list[PageText]
    paragraphs:    list[RawParagraph] = field(default_factory=list)
    entities:      list[RawEntity]    = field(default_factory=list)
    tables:        list[RawTable]     = field(default_factory=list)
    key_values:    list[RawKeyValue]  = field(default_factory=list)
    strategy_name: str   = "unknown"
    elapsed_ms:    float = 0.0
    used_ocr:      bool  = False

    @property
    def full_text(self) -> str:
        """Concatenate all non-blank pages with blank-line separators."""
        return "\n\n".join(p.text for p in self.pages if p.text.strip())

    @property
    def total_chars(self) -> int:
        return sum(len(p.text) for p in self.pages)

    @property
    def avg_chars_per_page(self) -> float:
        if not self.pages:
            return 0.0
        return self.total_chars / len(self.pages)

    def is_likely_scanned(self) -> bool:
        """Return True if the document appears to be image-based."""
        return self.avg_chars_per_page < MIN_CHARS_PER_PAGE_THRESHOLD


def split_paragraphs(page_number: int, text: str, confidence: float) -> list[RawParagraph]:
    """Blank-line separated blocks of a page, whitespace-trimmed."""
    blocks = (b.strip() for b in text.replace("\r\n", "\n").split("\n\n"))
    return [RawParagraph(page_number, b, confidence) for b in blocks if b]


# ---------------------------------------------------------------------------
# Abstract strategy
# ---------------------------------------------------------------------------

class OCRProvider(ABC):
    """
    Abstract base for text extraction providers.

    All implementations:
      - Accept raw bytes (never a file path)
      - Return RawDocument, or raise ExtractionError
      - Are safe for concurrent use (no shared mutable state)
    """

    @property
    @abstractmethod
    def strategy_name(self) -> str:
        """Unique name for logging."""

    @abstractmethod
    async def process(self, buffer: bytes, mime_type: str) -> RawDocument:
        """Extract text and layout from buffer."""


# ---------------------------------------------------------------------------
# Strategy 1: plain text
# ---------------------------------------------------------------------------

class PlainTextProvider(OCRProvider):

    @property
    def strategy_name(self) -> str:
        return "plain_text"

    async def process(self, buffer: bytes, mime_type: str) -> RawDocument:
        try:
            text = buffer.decode("utf-8")
        except UnicodeDecodeError:
            text = buffer.decode("latin-1")

        pages: list[PageText] = []
        paragraphs: list[RawParagraph] = []
        for page_num, chunk in enumerate(text.split("\f"), start=1):
            pages.append(PageText(page_num, chunk.strip(), self.strategy_name))
            paragraphs.extend(split_paragraphs(page_num, chunk, 1.0))

        return RawDocument(pages=pages, paragraphs=paragraphs, strategy_name=self.strategy_name)


# ---------------------------------------------------------------------------
# Strategy 2: PyMuPDF (fitz)
# ---------------------------------------------------------------------------

class PyMuPDFProvider(OCRProvider):
    """
    Fastest PDF strategy — reads the native PDF text layer.

    Limitations:
      - Cannot OCR image-only pages (returns empty text for those)
      - Encrypted PDFs fail to open

    Text-layer paragraphs are exact, so they carry confidence 1.0.
    fitz.open() returns an independent document object per call.
    """

    @property
    def strategy_name(self) -> str:
        return "pymupdf"

    async def process(self, buffer: bytes, mime_type: str) -> RawDocument:
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()

        try:
            result = await loop.run_in_executor(None, self._extract_sync, buffer)
        except Exception as exc:
            logger.warning("PyMuPDF extraction failed: %s", exc)
            raise ExtractionError(
                f"Could not read PDF text layer: {exc}", ExtractionErrorKind.UNAVAILABLE,
            ) from exc

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "PyMuPDF | pages=%d total_chars=%d avg_chars_per_page=%.0f elapsed_ms=%.0f",
            len(result.pages), result.total_chars,
            result.avg_chars_per_page, result.elapsed_ms,
        )
        return result

    def _extract_sync(self, buffer: bytes) -> RawDocument:
        """Blocking extraction — runs in thread executor."""
        import fitz  # PyMuPDF; imported here to avoid module-level import cost

        pages: list[PageText] = []
        paragraphs: list[RawParagraph] = []

        with fitz.open(stream=buffer, filetype="pdf") as doc:
            for page_num, page in enumerate(doc, start=1):
                raw = page.get_text("text") or ""
                pages.append(PageText(page_num, raw.strip(), self.strategy_name))

                # blocks: (x0, y0, x1, y1, text, block_no, block_type); type 0 = text
                for block in page.get_text("blocks"):
                    if block[6] != 0:
                        continue
                    text = " ".join(block[4].split())
                    if text:
                        paragraphs.append(RawParagraph(page_num, text, 1.0))

        return RawDocument(pages=pages, paragraphs=paragraphs, strategy_name=self.strategy_name)


# ---------------------------------------------------------------------------
# Strategy 3: AWS Textract (+ Comprehend entities)
# ---------------------------------------------------------------------------

class TextractProvider(OCRProvider):
    """
    AWS Textract — managed OCR for images and scanned PDFs.

    Implementation:
      Sync API (analyze_document, or detect_document_text when layout
      analysis is off) for images and single-page PDFs.
      Async API (start_document_analysis / start_document_text_detection)
      for multi-page PDFs: the buffer is staged in S3, the job is polled
      with exponential back-off until JobStatus=SUCCEEDED, result pages are
      followed through NextToken, and the staged object is removed.

    With layout analysis on, TABLE blocks become RawTable grids and
    KEY_VALUE_SET blocks become RawKeyValue pairs (FORMS).
    When detect_entities is enabled, the extracted text is passed to AWS
    Comprehend DetectEntities and every entity is returned with its score.

    IAM permissions required on the task role:
      textract:AnalyzeDocument, textract:DetectDocumentText
      textract:StartDocumentAnalysis, textract:GetDocumentAnalysis
      textract:StartDocumentTextDetection, textract:GetDocumentTextDetection
      s3:PutObject, s3:GetObject, s3:DeleteObject on the staging prefix
      comprehend:DetectEntities   (only with detect_entities=True)
    """

    def __init__(
        self,
        region:              str = "us-east-1",
        detect_entities:     bool = False,
        analyze_layout:      bool = True,
        s3_bucket:           str | None = None,
        s3_prefix:           str = "textract-input",
        job_timeout_seconds: float = 100.0,
        poll_initial_delay:  float = 2.0,
        poll_max_delay:      float = 30.0,
        session:             aioboto3.Session | None = None,
        sleep:               Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._region             = region
        self._detect_entities    = detect_entities
        self._analyze_layout     = analyze_layout
        self._s3_bucket          = s3_bucket or None
        self._s3_prefix          = s3_prefix.strip("/")
        self._job_timeout        = job_timeout_seconds
        self._poll_initial_delay = poll_initial_delay
        self._poll_max_delay     = poll_max_delay
        self._session            = session or aioboto3.Session()
        self._sleep              = sleep

    @property
    def strategy_name(self) -> str:
        return "textract"

    async def process(self, buffer: bytes, mime_type: str) -> RawDocument:
        t0 = time.monotonic()
        try:
            page_count = await self._page_count(buffer, mime_type)
            if page_count > SYNC_MAX_PAGES:
                blocks = await self._run_job(buffer)
            else:
                blocks = await self._run_sync(buffer)
            result = self._parse_blocks(blocks)

            if self._detect_entities and result.full_text:
                async with self._session.client("comprehend", region_name=self._region) as comprehend:
                    entities = await comprehend.detect_entities(
                        Text=result.full_text[:COMPREHEND_MAX_CHARS],
                        LanguageCode="en",
                    )
                result.entities = [
                    RawEntity(
                        type=e.get("Type", "OTHER"),
                        text=e.get("Text", ""),
                        confidence=float(e.get("Score", 0.0)),
                    )
                    for e in entities.get("Entities", [])
                ]
        except ClientError as exc:
            raise _classify_client_error(exc) from exc
        except BotoCoreError as exc:
            logger.error("Textract | connection error: %s", exc)
            raise ExtractionError(
                f"OCR service unreachable: {exc}", ExtractionErrorKind.UNAVAILABLE,
            ) from exc

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Textract | pages=%d paragraphs=%d tables=%d key_values=%d entities=%d elapsed_ms=%.0f",
            len(result.pages), len(result.paragraphs), len(result.tables),
            len(result.key_values), len(result.entities), result.elapsed_ms,
        )
        return result

    async def _page_count(self, buffer: bytes, mime_type: str) -> int:
        if mime_type != "application/pdf":
            return 1
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, _pdf_page_count, buffer)
        except Exception as exc:
            logger.warning("Textract | could not count PDF pages, using the sync API: %s", exc)
            return 1

    async def _run_sync(self, buffer: bytes) -> list[dict]:
        async with self._session.client("textract", region_name=self._region) as textract:
            if self._analyze_layout:
                response = await textract.analyze_document(
                    Document={"Bytes": buffer}, FeatureTypes=TEXTRACT_FEATURE_TYPES,
                )
            else:
                response = await textract.detect_document_text(Document={"Bytes": buffer})
        return response.get("Blocks", [])

    async def _run_job(self, buffer: bytes) -> list[dict]:
        """Stage the PDF in S3, run the async job, always remove the staged object."""
        if self._s3_bucket is None:
            raise ExtractionError(
                "Multi-page scanned PDFs need an S3 staging bucket (TEXTRACT_S3_BUCKET) for OCR.",
                ExtractionErrorKind.UNAVAILABLE,
            )

        key = f"{self._s3_prefix}/{uuid.uuid4().hex}.pdf"
        async with self._session.client("s3", region_name=self._region) as s3:
            await s3.put_object(Bucket=self._s3_bucket, Key=key, Body=buffer, ContentType="application/pdf")
            try:
                async with self._session.client("textract", region_name=self._region) as textract:
                    return await self._poll_job(textract, key)
            finally:
                try:
                    await s3.delete_object(Bucket=self._s3_bucket, Key=key)
                except (ClientError, BotoCoreError) as exc:
                    logger.warning("Textract | staged object s3://%s/%s not removed: %s", self._s3_bucket, key, exc)

    async def _poll_job(self, textract, key: str) -> list[dict]:
        location = {"S3Object": {"Bucket": self._s3_bucket, "Name": key}}
        if self._analyze_layout:
            job = await textract.start_document_analysis(
                DocumentLocation=location, FeatureTypes=TEXTRACT_FEATURE_TYPES,
            )
            fetch = textract.get_document_analysis
        else:
            job = await textract.start_document_text_detection(DocumentLocation=location)
            fetch = textract.get_document_text_detection

        job_id = job["JobId"]
        logger.info("Textract async job started: %s for s3://%s/%s", job_id, self._s3_bucket, key)

        # Poll with exponential back-off (2s → 4s → 8s → max 30s)
        delay    = self._poll_initial_delay
        deadline = time.monotonic() + self._job_timeout

        blocks:     list[dict] = []
        next_token: str | None = None

        while time.monotonic() < deadline:
            kwargs = {"JobId": job_id}
            if next_token:
                kwargs["NextToken"] = next_token

            result = await fetch(**kwargs)
            status = result["JobStatus"]

            if status in ("SUCCEEDED", "PARTIAL_SUCCESS"):
                blocks.extend(result.get("Blocks", []))
                next_token = result.get("NextToken")
                if not next_token:
                    return blocks   # all pages retrieved
            elif status == "FAILED":
                raise ExtractionError(
                    f"OCR job failed: {result.get('StatusMessage') or 'unknown error'}",
                    ExtractionErrorKind.UNAVAILABLE,
                )
            else:
                # IN_PROGRESS
                await self._sleep(min(delay, self._poll_max_delay))
                delay *= 2

        logger.error("Textract | job %s timed out after %.0fs", job_id, self._job_timeout)
        raise ExtractionError(
            f"OCR job did not finish within {self._job_timeout:.0f} seconds.",
            ExtractionErrorKind.UNAVAILABLE,
        )

    def _parse_blocks(self, blocks: list[dict]) -> RawDocument:
        by_id = {b["Id"]: b for b in blocks if "Id" in b}

        pages_dict: dict[int, list[str]] = {}
        paragraphs: list[RawParagraph]   = []
        tables:     list[RawTable]       = []
        key_values: list[RawKeyValue]    = []
        tables_per_page: dict[int, int]  = {}

        for block in blocks:
            block_type = block.get("BlockType")
            page_num   = block.get("Page", 1)

            if block_type == "LINE":
                text = block.get("Text", "")
                pages_dict.setdefault(page_num, []).append(text)
                paragraphs.append(RawParagraph(
                    page_number=page_num,
                    text=text.strip(),
                    confidence=round(block.get("Confidence", 0.0) / 100.0, 4),   # normalize to 0–1
                ))
            elif block_type == "TABLE":
                tables_per_page[page_num] = tables_per_page.get(page_num, 0) + 1
                tables.append(RawTable(
                    page_number=page_num,
                    table_index=tables_per_page[page_num],
                    content=_table_content(block, by_id),
                ))
            elif block_type == "KEY_VALUE_SET" and "KEY" in block.get("EntityTypes", []):
                pair = _key_value(block, by_id)
                if pair is not None:
                    key_values.append(pair)

        pages = [
            PageText(pn, "\n".join(lines), self.strategy_name)
            for pn, lines in sorted(pages_dict.items())
        ]
        return RawDocument(
            pages=pages,
            paragraphs=paragraphs,
            tables=tables,
            key_values=key_values,
            strategy_name=self.strategy_name,
            used_ocr=True,
        )


def _pdf_page_count(buffer: bytes) -> int:
    import fitz  # PyMuPDF

    with fitz.open(stream=buffer, filetype="pdf") as doc:
        return doc.page_count


def _child_ids(block: dict, relationship: str = "CHILD") -> list[str]:
    return [
        child_id
        for rel in block.get("Relationships", [])
        if rel.get("Type") == relationship
        for child_id in rel.get("Ids", [])
    ]


def _block_text(block: dict, by_id: dict[str, dict]) -> str:
    """Words under a CELL or KEY_VALUE_SET block; selected checkboxes read as X."""
    words: list[str] = []
    for child_id in _child_ids(block):
        child = by_id.get(child_id, {})
        if child.get("BlockType") == "WORD":
            words.append(child.get("Text", ""))
        elif child.get("BlockType") == "SELECTION_ELEMENT" and child.get("SelectionStatus") == "SELECTED":
            words.append("X")
    return " ".join(w for w in words if w).strip()


def _table_content(table: dict, by_id: dict[str, dict]) -> list[list[str]]:
    cells = [by_id[c] for c in _child_ids(table) if by_id.get(c, {}).get("BlockType") == "CELL"]
    if not cells:
        return []
    n_rows = max(c.get("RowIndex", 1) for c in cells)
    n_cols = max(c.get("ColumnIndex", 1) for c in cells)
    content = [["" for _ in range(n_cols)] for _ in range(n_rows)]
    for cell in cells:
        content[cell.get("RowIndex", 1) - 1][cell.get("ColumnIndex", 1) - 1] = _block_text(cell, by_id)
    return content


def _key_value(key_block: dict, by_id: dict[str, dict]) -> RawKeyValue | None:
    key = _block_text(key_block, by_id)
    value_blocks = [by_id[v] for v in _child_ids(key_block, "VALUE") if v in by_id]
    value = " ".join(t for t in (_block_text(v, by_id) for v in value_blocks) if t)
    if not key or not value:
        return None
    confidence = min([key_block.get("Confidence", 0.0)] + [v.get("Confidence", 0.0) for v in value_blocks])
    return RawKeyValue(key=key, value=value, confidence=round(confidence / 100.0, 4))


def _classify_client_error(exc: ClientError) -> ExtractionError:
    code = exc.response.get("Error", {}).get("Code", "")
    if code in _PERMISSION_ERROR_CODES:
        logger.error(
            "Textract | permission denied (%s) — check the IAM policy for "
            "textract, the S3 staging prefix and comprehend:DetectEntities", code,
        )
        return PermissionDeniedError(
            "OCR service access denied. Grant the service role the textract analysis permissions "
            "(and comprehend:DetectEntities when entity detection is enabled), then retry the upload."
        )
    logger.error("Textract | client error code=%s: %s", code, exc)
    return ExtractionError(f"OCR service error: {code or exc}", ExtractionErrorKind.UNAVAILABLE)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class CascadingOCRProvider(OCRProvider):
    """
    Route a document to the right provider by MIME type.

    ┌──────────────────────────────────────────────────────────────────┐
    │  text/plain        → PlainTextProvider                           │
    │  application/pdf   → PyMuPDF ──► avg_chars ≥ threshold? ─► done  │
    │                                   NO → OCR backend (if any)      │
    │  image/jpeg|png    → OCR backend (required)                      │
    └──────────────────────────────────────────────────────────────────┘
    """

    def __init__(
        self,
        ocr:  OCRProvider | None = None,
        pdf:  OCRProvider | None = None,
        text: OCRProvider | None = None,
    ) -> None:
        self._ocr  = ocr
        self._pdf  = pdf or PyMuPDFProvider()
        self._text = text or PlainTextProvider()

    @property
    def strategy_name(self) -> str:
        return "cascade"

    @property
    def ocr_backend(self) -> str | None:
        return self._ocr.strategy_name if self._ocr else None

    async def process(self, buffer: bytes, mime_type: str) -> RawDocument:
        if mime_type == "text/plain":
            return await self._text.process(buffer, mime_type)

        if mime_type in IMAGE_MIME_TYPES:
            if self._ocr is None:
                raise ExtractionError(
                    "Image documents require an OCR backend; none is configured.",
                    ExtractionErrorKind.UNAVAILABLE,
                )
            return await self._ocr.process(buffer, mime_type)

        if mime_type == "application/pdf":
            native = await self._pdf.process(buffer, mime_type)
            if not native.is_likely_scanned() or self._ocr is None:
                return native

            logger.info(
                "Document appears scanned (avg %.0f chars/page < %d). Falling back to OCR backend: %s",
                native.avg_chars_per_page, MIN_CHARS_PER_PAGE_THRESHOLD, self._ocr.strategy_name,
            )
            return await self._ocr.process(buffer, mime_type)

        raise ExtractionError(
            f"No extraction strategy for MIME type {mime_type!r}",
            ExtractionErrorKind.UNAVAILABLE,
        )


def build_ocr_provider(settings) -> CascadingOCRProvider:
    """Factory used at startup: ocr_backend=textract enables the cloud OCR leg."""
    ocr: OCRProvider | None = None
    if settings.ocr_backend == "textract":
        ocr = TextractProvider(
            region=settings.aws_region,
            detect_entities=settings.entity_detection_enabled,
            analyze_layout=settings.textract_analyze_layout,
            s3_bucket=settings.textract_s3_bucket,
            s3_prefix=settings.textract_s3_prefix,
            job_timeout_seconds=settings.textract_job_timeout_seconds,
        )
    logger.info("OCR provider | backend=%s", settings.ocr_backend)
    return CascadingOCRProvider(ocr=ocr)
