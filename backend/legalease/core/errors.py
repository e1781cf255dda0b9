"""
Domain exception hierarchy.

Every error raised by the pipeline, the adapters or the stores derives from
LegalEaseError and carries the HTTP status and the stable machine-readable
error code used in the ErrorResponse envelope. Route handlers never build
error bodies by hand; the exception handler in main.py renders them.

  LegalEaseError
   ├── ValidationError        400  bad input shape / type
   │    └── FileTooLargeError 413
   ├── NotFoundError          404  unknown document id
   ├── TextUnavailableError   400  extraction never completed
   ├── ConflictError          400  operation not valid in the current state
   ├── ExtractionError        500  OCR stage failure (kind: unavailable | empty | permission_denied)
   │    └── PermissionDeniedError
   ├── GenerationError        502  AI stage failure surfaced to the caller
   ├── RateLimitError         429  quota exhausted (carries retry_after)
   └── StoreError             500  durable storage I/O failure
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class LegalEaseError(Exception):
    """Base class — subclasses set status_code and error_code."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    document_id: str | None = None   # set when a record exists for the failed operation

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class ValidationError(LegalEaseError):
    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None, code: str | None = None) -> None:
        if code:
            self.error_code = code
        details = [{"field": field, "message": message, "code": self.error_code}] if field else []
        super().__init__(message, details=details)


class FileTooLargeError(ValidationError):
    status_code = 413
    error_code = "FILE_TOO_LARGE"

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        max_mb = limit_bytes // (1024 * 1024)
        super().__init__(
            f"Uploaded file exceeds the {max_mb} MB limit "
            f"(received {size_bytes:,} bytes; limit is {limit_bytes:,} bytes).",
            field="file",
        )


class NotFoundError(LegalEaseError):
    status_code = 404
    error_code = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' was not found.")


class TextUnavailableError(LegalEaseError):
    status_code = 400
    error_code = "TEXT_UNAVAILABLE"

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(
            "Document text not available. Please ensure the document was processed successfully."
        )


class ConflictError(LegalEaseError):
    status_code = 400
    error_code = "INVALID_STATE"


class ExtractionErrorKind(str, Enum):
    UNAVAILABLE       = "unavailable"         # provider unreachable, timed out or failed
    EMPTY             = "empty"               # provider answered but produced no text
    PERMISSION_DENIED = "permission_denied"   # credentials lack access to the OCR service


class ExtractionError(LegalEaseError):
    status_code = 500
    error_code = "EXTRACTION_FAILED"

    def __init__(
        self,
        message: str,
        kind: ExtractionErrorKind = ExtractionErrorKind.UNAVAILABLE,
    ) -> None:
        self.kind = kind
        super().__init__(message)


class PermissionDeniedError(ExtractionError):
    error_code = "EXTRACTION_PERMISSION_DENIED"

    def __init__(self, message: str) -> None:
        super().__init__(message, ExtractionErrorKind.PERMISSION_DENIED)


class GenerationError(LegalEaseError):
    status_code = 502
    error_code = "GENERATION_FAILED"

    def __init__(self, message: str, kind: str = "transient", stage: str | None = None) -> None:
        self.kind = kind
        self.stage = stage
        super().__init__(message)


class RateLimitError(LegalEaseError):
    status_code = 429
    error_code = "RATE_LIMITED"

    def __init__(self, op_class: str, retry_after: int, limit: int) -> None:
        self.op_class = op_class
        self.retry_after = retry_after
        self.limit = limit
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds.")


class StoreError(LegalEaseError):
    status_code = 500
    error_code = "STORAGE_ERROR"
