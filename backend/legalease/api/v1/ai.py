"""
AI API Router — document-independent endpoints

POST /api/v1/clauses/explain   plain-language explanation of one clause
GET  /api/v1/ai/status         provider / model / capability report
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from legalease.api.dependencies import QA, AppServices, rate_limited
from legalease.ratelimit import OperationClass
from legalease.schemas.documents import ClauseRequest, ErrorResponse, ExplanationResult, Language

router = APIRouter(tags=["AI"])

FEATURES = [
    "document_summarization",
    "risk_analysis",
    "question_answering",
    "batch_question_answering",
    "clause_explanation",
]

SUPPORTED_FORMATS = ["PDF", "JPEG", "PNG", "TXT"]


@router.post(
    "/clauses/explain",
    response_model=ExplanationResult,
    summary="Explain a legal clause in plain language",
    responses={
        400: {"model": ErrorResponse, "description": "Clause must be 10-2000 characters"},
        429: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    dependencies=[Depends(rate_limited(OperationClass.AI))],
)
async def explain_clause(body: ClauseRequest, qa: QA) -> ExplanationResult:
    return await qa.explain_clause(body.clause, body.language)


@router.get(
    "/ai/status",
    summary="Report the configured AI provider and supported capabilities",
)
async def ai_status(services: AppServices) -> dict:
    generator = services.generation.generator
    configured = generator.is_configured
    return {
        "status":              "operational" if configured else "unconfigured",
        "provider":            generator.provider_name,
        "model":               generator.model_name,
        "configured":          configured,
        "ocr_backend":         services.settings.ocr_backend,
        "features":            FEATURES,
        "supported_languages": [lang.value for lang in Language],
        "supported_formats":   SUPPORTED_FORMATS,
    }
