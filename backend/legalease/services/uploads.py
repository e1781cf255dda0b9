"""
Upload validation — runs before anything touches blob storage

  1. Read the multipart file into memory with a hard size ceiling (413).
  2. Detect the MIME type from magic bytes; plain text has no signature, so
     .txt uploads (or a declared text/plain) are accepted when the head of
     the file contains no NUL bytes.
  3. Reject anything outside ALLOWED_CONTENT_TYPES (400).
  4. Sanitize the filename (basename only, no control characters).

The client-supplied Content-Type is never trusted for binary formats.
"""

from __future__ import annotations

import logging
import mimetypes
import re
from dataclasses import dataclass

from fastapi import UploadFile

from legalease.core.errors import FileTooLargeError, ValidationError
from legalease.schemas.documents import ALLOWED_CONTENT_TYPES

logger = logging.getLogger(__name__)

# Magic byte signatures, checked against the first bytes of the file
_MAGIC_BYTES: dict[bytes, str] = {
    b"%PDF":              "application/pdf",
    b"\xff\xd8\xff":      "image/jpeg",
    b"\x89PNG\r\n\x1a\n": "image/png",
}

_TEXT_EXTENSIONS = (".txt",)
_TEXT_SNIFF_BYTES = 1024

_UNSAFE_NAME_RE = re.compile(r'[\x00-\x1f<>:"|?*]')


@dataclass(frozen=True)
class ValidatedUpload:
    filename:  str
    data:      bytes
    mime_type: str

    @property
    def size(self) -> int:
        return len(self.data)


def detect_mime_type(filename: str, data: bytes, declared_type: str | None = None) -> str:
    """
    Detect MIME type using magic bytes first, falling back to extension.
    """
    for magic, mime in _MAGIC_BYTES.items():
        if data.startswith(magic):
            return mime

    ext = get_extension(filename)
    looks_textual = b"\x00" not in data[:_TEXT_SNIFF_BYTES]
    if looks_textual and (ext in _TEXT_EXTENSIONS or (declared_type or "").startswith("text/plain")):
        return "text/plain"

    guessed, _ = mimetypes.guess_type(filename)
    if guessed in ALLOWED_CONTENT_TYPES:
        # An accepted type must be proven by content, never by the name alone
        return "application/octet-stream"
    return guessed or "application/octet-stream"


def get_extension(filename: str) -> str:
    """Return lowercased file extension including the dot."""
    parts = filename.rsplit(".", 1)
    return f".{parts[-1].lower()}" if len(parts) == 2 else ""


def sanitize_filename(filename: str) -> str:
    """
    Strip path components and control / reserved characters.
    The original display name is kept otherwise (spaces, unicode).
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = _UNSAFE_NAME_RE.sub("_", basename).strip()
    return safe[:255] or "upload"


def validate_upload(
    filename:      str | None,
    data:          bytes,
    declared_type: str | None,
    max_bytes:     int,
) -> ValidatedUpload:
    if not filename or not data:
        raise ValidationError("No file uploaded.", field="file", code="MISSING_FILE")

    if len(data) > max_bytes:
        raise FileTooLargeError(len(data), max_bytes)

    mime_type = detect_mime_type(filename, data, declared_type)
    if mime_type not in ALLOWED_CONTENT_TYPES:
        logger.warning("Upload rejected | file=%s detected=%s", filename, mime_type)
        raise ValidationError(
            "Invalid file type. Only PDF, JPEG, PNG, and TXT files are allowed.",
            field="file",
            code="UNSUPPORTED_FILE_TYPE",
        )

    return ValidatedUpload(filename=sanitize_filename(filename), data=data, mime_type=mime_type)


async def read_upload(file: UploadFile, max_bytes: int) -> ValidatedUpload:
    """
    Read the upload into memory with a hard size ceiling.
    Reads at most max_bytes + 1 so oversized bodies are never fully buffered.
    """
    data = await file.read(max_bytes + 1)
    return validate_upload(file.filename, data, file.content_type, max_bytes)
