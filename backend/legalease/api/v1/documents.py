"""
Document API Router
POST /api/v1/documents and friends

Request lifecycle for an upload:
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Rate gate (general + upload class, keyed by client IP)│
  │ 2. Size ceiling while reading the multipart body (413)   │
  │ 3. File type detection (magic bytes, .txt fallback)      │
  │ 4. Pipeline: blob → record → extraction → summary ‖ risks│
  │ 5. 201 with summary / risk analysis, or a warning when   │
  │    only part of the AI analysis succeeded                │
  └─────────────────────────────────────────────────────────┘

Extraction failures are rendered by the LegalEaseError handler in main.py
as a 500 envelope that carries the document_id of the errored record.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status

from legalease.api.dependencies import AppServices, Pipeline, rate_limited
from legalease.ratelimit import OperationClass
from legalease.schemas.documents import (
    DocumentRecord,
    ErrorResponse,
    ExtractedSummary,
    FileInfo,
    Language,
    LanguageRequest,
    ProcessingResponse,
    UploadResponse,
)
from legalease.services.uploads import read_upload

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Documents"],
)


def _processing_response(record: DocumentRecord) -> ProcessingResponse:
    return ProcessingResponse(
        document_id=record.id,
        status=record.status,
        summary=record.summary,
        risk_analysis=record.risk_analysis,
    )


# ---------------------------------------------------------------------------
# POST /documents: upload and process
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a document and run the analysis pipeline",
    description=(
        "Accepts PDF, JPEG, PNG or TXT files up to 10 MB. Extracts the text, then "
        "generates a plain-language summary and a risk analysis concurrently. "
        "When one of the AI stages fails the document is still created and the "
        "response carries a `warning`; use POST /documents/{id}/retry later."
    ),
    responses={
        201: {"model": UploadResponse, "description": "Document processed (possibly with a warning)"},
        400: {"model": ErrorResponse, "description": "Missing file or unsupported file type"},
        413: {"model": ErrorResponse, "description": "File exceeds the upload size limit"},
        429: {"model": ErrorResponse, "description": "Upload rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Extraction or storage failure"},
    },
    dependencies=[Depends(rate_limited(OperationClass.UPLOAD))],
)
async def upload_document(
    response: Response,
    services: AppServices,
    file:     UploadFile = File(..., description="Document file (PDF, JPEG, PNG, TXT; max 10 MB)"),
    language: Language   = Form(Language.ENGLISH, description="Response language (en | hi)"),
) -> UploadResponse:
    upload = await read_upload(file, services.settings.max_upload_bytes)
    result = await services.pipeline.process_upload(upload, language)
    document = result.document

    data = document.extracted_data
    response.headers["X-Document-ID"] = document.id
    response.headers["Location"]      = f"/api/v1/documents/{document.id}"
    return UploadResponse(
        document_id=document.id,
        status=document.status,
        file_info=FileInfo(
            original_name=document.original_name,
            size=document.size,
            mime_type=document.mime_type,
        ),
        extracted_summary=ExtractedSummary(
            pages=data.pages if data else 0,
            entities=len(data.entities) if data else 0,
            confidence=data.confidence if data else 0.0,
        ),
        summary=document.summary,
        risk_analysis=document.risk_analysis,
        warning=result.warning,
    )


# ---------------------------------------------------------------------------
# GET /documents: recent documents
# ---------------------------------------------------------------------------

@router.get(
    "",
    summary="List recently uploaded documents",
)
async def list_documents(
    pipeline: Pipeline,
    limit:    int = Query(10, ge=1, le=50),
) -> dict:
    documents = await pipeline.list_documents(limit)
    return {
        "documents": [d.list_view() for d in documents],
        "count":     len(documents),
    }


# ---------------------------------------------------------------------------
# GET /documents/{document_id}
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}",
    summary="Fetch a document with its extracted text and analysis",
    responses={404: {"model": ErrorResponse}},
)
async def get_document(document_id: str, pipeline: Pipeline) -> dict:
    record = await pipeline.get_document(document_id)
    return record.public_view()


# ---------------------------------------------------------------------------
# DELETE /documents/{document_id}
# ---------------------------------------------------------------------------

@router.delete(
    "/{document_id}",
    summary="Delete a document, its stored file and its Q&A history",
    responses={404: {"model": ErrorResponse}},
)
async def delete_document(document_id: str, pipeline: Pipeline) -> dict:
    await pipeline.delete_document(document_id)
    return {"message": "Document deleted successfully.", "document_id": document_id}


# ---------------------------------------------------------------------------
# POST /documents/{document_id}/retry: re-run the AI stages
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/retry",
    response_model=ProcessingResponse,
    summary="Retry summary and risk analysis for an errored or partial document",
    responses={
        400: {"model": ErrorResponse, "description": "Already processed or no extracted text"},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        502: {"model": ErrorResponse, "description": "AI analysis failed again"},
    },
    dependencies=[Depends(rate_limited(OperationClass.AI))],
)
async def retry_processing(
    document_id: str,
    pipeline:    Pipeline,
    body:        LanguageRequest | None = None,
) -> ProcessingResponse:
    language = body.language if body else Language.ENGLISH
    record = await pipeline.retry(document_id, language)
    return _processing_response(record)


# ---------------------------------------------------------------------------
# POST /documents/{document_id}/summary | /risks: regenerate one stage
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/summary",
    response_model=ProcessingResponse,
    summary="Regenerate the summary, e.g. in another language",
    responses={
        400: {"model": ErrorResponse, "description": "Document text not available"},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    dependencies=[Depends(rate_limited(OperationClass.AI))],
)
async def regenerate_summary(
    document_id: str,
    pipeline:    Pipeline,
    body:        LanguageRequest | None = None,
) -> ProcessingResponse:
    language = body.language if body else Language.ENGLISH
    record = await pipeline.regenerate_summary(document_id, language)
    return _processing_response(record)


@router.post(
    "/{document_id}/risks",
    response_model=ProcessingResponse,
    summary="Regenerate the risk analysis, e.g. in another language",
    responses={
        400: {"model": ErrorResponse, "description": "Document text not available"},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    dependencies=[Depends(rate_limited(OperationClass.AI))],
)
async def regenerate_risks(
    document_id: str,
    pipeline:    Pipeline,
    body:        LanguageRequest | None = None,
) -> ProcessingResponse:
    language = body.language if body else Language.ENGLISH
    record = await pipeline.regenerate_risks(document_id, language)
    return _processing_response(record)
