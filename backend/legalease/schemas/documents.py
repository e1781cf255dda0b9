"""
Document Pipeline — Pydantic Models

Covers the full lifecycle of an uploaded document:
  - DocumentRecord + QAEntry (persisted by the DocumentStore)
  - Generation results (summary, risks, answers, clause explanations)
  - Request bodies and response envelopes for the /api/v1 routes
  - Structured error bodies shared by every 4xx/5xx response

Design decisions:
  - document ids are server-generated (uuid4 hex); never client-supplied.
  - processing_steps flags are monotonic; merge() never clears a flag.
  - status is the pipeline state machine, separate from HTTP status.
  - All timestamps are timezone-aware UTC datetimes, serialised as ISO-8601.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from legalease.core.errors import GenerationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Upload constraints: enforced before touching blob storage
# ---------------------------------------------------------------------------

ALLOWED_CONTENT_TYPES: frozenset[str] = frozenset(
    {
        "application/pdf",
        "image/jpeg",
        "image/png",
        "text/plain",
    }
)

MAX_BATCH_QUESTIONS: int = 5


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class Language(str, Enum):
    """Supported response locales."""
    ENGLISH = "en"
    HINDI   = "hi"


class DocumentStatus(str, Enum):
    """
    Pipeline state machine.
    Transitions: processing → completed | partial | error  (all terminal)
    A retry moves error/partial → completed, or leaves the status as it was.
    """
    PROCESSING = "processing"   # record created, extraction / AI stage running
    COMPLETED  = "completed"    # text extracted, summary and risks generated
    PARTIAL    = "partial"      # text extracted, at least one AI stage failed
    ERROR      = "error"        # extraction failed, needs a re-upload


# ---------------------------------------------------------------------------
# Extraction output
# ---------------------------------------------------------------------------

class Entity(BaseModel):
    type:       str
    text:       str
    confidence: float


class Paragraph(BaseModel):
    page_number: int
    text:        str
    confidence:  float


class Table(BaseModel):
    page_number: int
    table_index: int
    rows:        int
    columns:     int
    content:     list[list[str]] = Field(default_factory=list)


class KeyValuePair(BaseModel):
    key:        str
    value:      str
    confidence: float


class ExtractedData(BaseModel):
    """Structured extraction metadata kept on the DocumentRecord."""
    pages:           int                = 0
    entities:        list[Entity]       = Field(default_factory=list)
    paragraphs:      list[Paragraph]    = Field(default_factory=list)
    tables:          list[Table]        = Field(default_factory=list)
    key_value_pairs: list[KeyValuePair] = Field(default_factory=list)
    confidence:      float              = Field(0.0, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Generation results
# ---------------------------------------------------------------------------

class GenerationResultBase(BaseModel):
    language:     Language
    generated_at: datetime = Field(default_factory=utcnow)
    model:        str
    failure:      str | None = Field(
        None,
        description="Failure kind (permission | configuration | transient | empty) when the text is a fallback",
    )

    @property
    def failed(self) -> bool:
        return self.failure is not None

    def raise_for_failure(self, stage: str | None = None) -> None:
        """Raise GenerationError if this result holds fallback text."""
        if self.failure is not None:
            raise GenerationError(
                f"AI generation failed ({self.failure})",
                kind=self.failure,
                stage=stage,
            )


class SummaryResult(GenerationResultBase):
    summary: str


class RiskResult(GenerationResultBase):
    risks: str


class AnswerResult(GenerationResultBase):
    question:          str
    answer:            str
    relevant_sections: bool = False


class ExplanationResult(GenerationResultBase):
    original_clause: str
    explanation:     str


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

class ProcessingSteps(BaseModel):
    uploaded:       bool = False
    text_extracted: bool = False
    summarized:     bool = False
    risk_analyzed:  bool = False

    def merge(self, changes: dict[str, bool]) -> "ProcessingSteps":
        """Return a copy with the given flags OR-ed in — flags never go back to False."""
        merged = self.model_dump()
        for name, value in changes.items():
            if name not in merged:
                raise KeyError(f"Unknown processing step: {name}")
            merged[name] = merged[name] or bool(value)
        return ProcessingSteps(**merged)

    @property
    def all_done(self) -> bool:
        return self.uploaded and self.text_extracted and self.summarized and self.risk_analyzed


class DocumentRecord(BaseModel):
    """One uploaded file and everything the pipeline derived from it."""
    id:               str
    original_name:    str
    size:             int
    mime_type:        str
    language:         Language = Language.ENGLISH
    storage_ref:      str | None = None
    status:           DocumentStatus = DocumentStatus.PROCESSING
    processing_steps: ProcessingSteps = Field(default_factory=ProcessingSteps)
    extracted_text:   str | None = None
    extracted_data:   ExtractedData | None = None
    summary:          SummaryResult | None = None
    risk_analysis:    RiskResult | None = None
    error:            str | None = None
    created_at:       datetime = Field(default_factory=utcnow)
    updated_at:       datetime = Field(default_factory=utcnow)

    def public_view(self) -> dict[str, Any]:
        """JSON-ready view without internal storage pointers."""
        return self.model_dump(mode="json", exclude={"storage_ref"})

    def list_view(self) -> dict[str, Any]:
        return {
            "id":               self.id,
            "original_name":    self.original_name,
            "size":             self.size,
            "mime_type":        self.mime_type,
            "language":         self.language.value,
            "status":           self.status.value,
            "created_at":       self.created_at.isoformat(),
            "processing_steps": self.processing_steps.model_dump(),
        }


class QAEntry(BaseModel):
    """One answered question — append-only child of a DocumentRecord."""
    id:                str
    document_id:       str
    question:          str
    answer:            str
    language:          Language
    model:             str
    relevant_sections: bool = False
    batch_id:          str | None = None
    timestamp:         datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class LanguageRequest(BaseModel):
    language: Language = Language.ENGLISH


class QuestionRequest(BaseModel):
    # Lengths are validated by the Q&A service so violations answer 400, not 422
    question: str      = Field(..., description="3-500 characters")
    language: Language = Language.ENGLISH


class BatchQuestionRequest(BaseModel):
    # Count is validated by the service so the error carries the documented message
    questions: list[str] = Field(default_factory=list)
    language:  Language  = Language.ENGLISH


class ClauseRequest(BaseModel):
    clause:   str      = Field(..., description="10-2000 characters")
    language: Language = Language.ENGLISH


# ---------------------------------------------------------------------------
# Response bodies
# ---------------------------------------------------------------------------

class FileInfo(BaseModel):
    original_name: str
    size:          int
    mime_type:     str


class ExtractedSummary(BaseModel):
    pages:      int
    entities:   int
    confidence: float


class UploadResponse(BaseModel):
    """Returned by POST /documents once the pipeline has run."""
    document_id:       str
    status:            DocumentStatus
    file_info:         FileInfo
    extracted_summary: ExtractedSummary
    summary:           SummaryResult | None = None
    risk_analysis:     RiskResult | None = None
    warning:           str | None = None


class ProcessingResponse(BaseModel):
    """Returned by retry / regenerate endpoints."""
    document_id:   str
    status:        DocumentStatus
    summary:       SummaryResult | None = None
    risk_analysis: RiskResult | None = None


class BatchItemResult(BaseModel):
    question: str
    success:  bool
    error:    bool = False
    message:  str | None = None
    entry:    QAEntry | None = None


class BatchResponse(BaseModel):
    results:   list[BatchItemResult]
    processed: int
    failed:    int


class HistoryResponse(BaseModel):
    document_id: str
    entries:     list[QAEntry]
    total:       int


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code:  str               = Field(..., description="Stable machine-readable code")
    message:     str               = Field(..., description="Human-readable summary")
    details:     list[ErrorDetail] = Field(default_factory=list)
    request_id:  str | None        = Field(None, description="Trace ID for log correlation")
    document_id: str | None        = Field(None, description="Set when a record was created before the failure")
    retry_after: int | None        = Field(None, description="Seconds until a rate-limited request may be retried")
