"""
Unit Tests — Upload validation
═══════════════════════════════
Coverage targets:
  ✅ MIME detection: magic bytes override the declared Content-Type
  ✅ Plain text accepted by .txt extension or declared text/plain
  ✅ Binary content named .txt rejected
  ✅ Executables / unknown formats → 400 UNSUPPORTED_FILE_TYPE
  ✅ Oversized files → 413 FILE_TOO_LARGE
  ✅ Missing file → 400 MISSING_FILE
  ✅ Filename sanitisation (path traversal, reserved characters)
  ✅ read_upload() never buffers more than max_bytes + 1
"""

from __future__ import annotations

import io

import pytest
from fastapi import UploadFile
from starlette.datastructures import Headers

from legalease.core.errors import FileTooLargeError, ValidationError
from legalease.services.uploads import (
    detect_mime_type,
    get_extension,
    read_upload,
    sanitize_filename,
    validate_upload,
)

MAX_BYTES = 1024


@pytest.mark.unit
class TestDetectMimeType:

    @pytest.mark.parametrize("data,expected", [
        (b"%PDF-1.7 rest", "application/pdf"),
        (b"\xff\xd8\xff\xe0 jfif", "image/jpeg"),
        (b"\x89PNG\r\n\x1a\n....", "image/png"),
    ])
    def test_magic_bytes(self, data, expected):
        assert detect_mime_type("upload.bin", data, "application/octet-stream") == expected

    def test_magic_bytes_beat_declared_type(self):
        assert detect_mime_type("photo.png", b"%PDF-1.4", "image/png") == "application/pdf"

    def test_text_by_extension(self):
        assert detect_mime_type("notes.TXT", b"Rent is due monthly.", None) == "text/plain"

    def test_text_by_declared_type(self):
        assert detect_mime_type("notes", b"Rent is due monthly.", "text/plain; charset=utf-8") == "text/plain"

    def test_binary_named_txt_is_not_text(self):
        assert detect_mime_type("notes.txt", b"\x00\x01\x02binary", "text/plain") == "application/octet-stream"

    def test_get_extension(self):
        assert get_extension("Lease.Final.PDF") == ".pdf"
        assert get_extension("README") == ""


@pytest.mark.unit
class TestValidateUpload:

    def test_accepts_pdf(self):
        upload = validate_upload("lease.pdf", b"%PDF-1.4 content", "application/pdf", MAX_BYTES)
        assert upload.mime_type == "application/pdf"
        assert upload.size == len(b"%PDF-1.4 content")

    def test_rejects_executable(self, exe_bytes):
        with pytest.raises(ValidationError) as exc_info:
            validate_upload("setup.exe", exe_bytes, "application/octet-stream", MAX_BYTES)

        error = exc_info.value
        assert error.status_code == 400
        assert error.error_code == "UNSUPPORTED_FILE_TYPE"
        assert error.message == "Invalid file type. Only PDF, JPEG, PNG, and TXT files are allowed."

    def test_rejects_exe_disguised_as_pdf(self, exe_bytes):
        with pytest.raises(ValidationError):
            validate_upload("lease.pdf", exe_bytes, "application/pdf", MAX_BYTES)

    def test_too_large(self):
        with pytest.raises(FileTooLargeError) as exc_info:
            validate_upload("lease.pdf", b"%PDF" + b"0" * MAX_BYTES, "application/pdf", MAX_BYTES)

        assert exc_info.value.status_code == 413
        assert exc_info.value.error_code == "FILE_TOO_LARGE"

    def test_exactly_at_limit_is_accepted(self):
        data = b"%PDF" + b"0" * (MAX_BYTES - 4)
        assert validate_upload("lease.pdf", data, "application/pdf", MAX_BYTES).size == MAX_BYTES

    @pytest.mark.parametrize("filename,data", [(None, b"%PDF"), ("lease.pdf", b""), ("", b"%PDF")])
    def test_missing_file(self, filename, data):
        with pytest.raises(ValidationError) as exc_info:
            validate_upload(filename, data, "application/pdf", MAX_BYTES)
        assert exc_info.value.error_code == "MISSING_FILE"

    def test_filename_sanitised(self):
        upload = validate_upload("../../etc/le:ase?.pdf", b"%PDF-1.4", None, MAX_BYTES)
        assert upload.filename == "le_ase_.pdf"


@pytest.mark.unit
class TestSanitizeFilename:

    def test_windows_path(self):
        assert sanitize_filename("C:\\Users\\ravi\\Rental Agreement.pdf") == "Rental Agreement.pdf"

    def test_unicode_kept(self):
        assert sanitize_filename("किराया अनुबंध.txt") == "किराया अनुबंध.txt"

    def test_empty_after_strip(self):
        assert sanitize_filename("dir/") == "upload"


@pytest.mark.unit
class TestReadUpload:

    async def test_reads_and_validates(self, sample_contract_bytes):
        file = UploadFile(
            file=io.BytesIO(sample_contract_bytes),
            filename="contract.txt",
            headers=Headers({"content-type": "text/plain"}),
        )

        upload = await read_upload(file, max_bytes=len(sample_contract_bytes))

        assert upload.mime_type == "text/plain"
        assert upload.data == sample_contract_bytes

    async def test_oversized_stream(self):
        file = UploadFile(file=io.BytesIO(b"%PDF" + b"0" * 5000), filename="big.pdf")

        with pytest.raises(FileTooLargeError) as exc_info:
            await read_upload(file, max_bytes=100)

        assert exc_info.value.size_bytes == 101
