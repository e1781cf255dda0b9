"""
Question Answering API Router

POST /api/v1/documents/{document_id}/questions         single question (qa class)
POST /api/v1/documents/{document_id}/questions/batch   1-5 questions (ai class)
GET  /api/v1/documents/{document_id}/questions         history, newest first
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from legalease.api.dependencies import QA, rate_limited
from legalease.ratelimit import OperationClass
from legalease.schemas.documents import (
    BatchQuestionRequest,
    BatchResponse,
    ErrorResponse,
    HistoryResponse,
    QAEntry,
    QuestionRequest,
)

router = APIRouter(
    prefix="/documents/{document_id}/questions",
    tags=["Questions"],
)


@router.post(
    "",
    response_model=QAEntry,
    status_code=status.HTTP_201_CREATED,
    summary="Ask a question about a document",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid question or document text not available"},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        502: {"model": ErrorResponse, "description": "AI answer generation failed"},
    },
    dependencies=[Depends(rate_limited(OperationClass.QA))],
)
async def ask_question(document_id: str, body: QuestionRequest, qa: QA) -> QAEntry:
    return await qa.ask(document_id, body.question, body.language)


@router.post(
    "/batch",
    response_model=BatchResponse,
    summary="Ask up to five questions at once",
    description=(
        "Questions are started one interval apart and answered concurrently. "
        "A failing question is reported in its own result item; the rest of "
        "the batch still completes."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid question count or document text not available"},
        404: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
    dependencies=[Depends(rate_limited(OperationClass.AI))],
)
async def ask_batch(document_id: str, body: BatchQuestionRequest, qa: QA) -> BatchResponse:
    return await qa.ask_batch(document_id, body.questions, body.language)


@router.get(
    "",
    response_model=HistoryResponse,
    summary="Q&A history, most recent first",
    responses={404: {"model": ErrorResponse}},
)
async def get_history(
    document_id: str,
    qa:          QA,
    limit:       int = Query(20, ge=1, le=100),
) -> HistoryResponse:
    entries, total = await qa.get_history(document_id, limit)
    return HistoryResponse(document_id=document_id, entries=entries, total=total)
