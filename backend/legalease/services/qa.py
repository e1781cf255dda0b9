"""
Q&A Service — questions, batches, history and clause explanations

  ask()          one question against a document's extracted text; the answer
                 is appended to the document's Q&A history
  ask_batch()    1–5 questions; item i starts after i × batch interval, items
                 run concurrently, per-item failures are reported inline and
                 successes share one batch_id
  get_history()  most-recent-first entries plus the total count
  explain_clause()  stand-alone clause explanation, not tied to a document

A generation failure on ask() raises GenerationError (HTTP 502) and nothing
is appended; the fallback text never reaches the history.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable, Callable

from legalease.core.errors import LegalEaseError, TextUnavailableError, ValidationError
from legalease.llm.generation import GenerationAdapter
from legalease.schemas.documents import (
    MAX_BATCH_QUESTIONS,
    BatchItemResult,
    BatchResponse,
    ExplanationResult,
    Language,
    QAEntry,
)
from legalease.storage.documents import DocumentStore

logger = logging.getLogger(__name__)

QUESTION_MIN_CHARS = 3
QUESTION_MAX_CHARS = 500
CLAUSE_MIN_CHARS   = 10
CLAUSE_MAX_CHARS   = 2000

DEFAULT_HISTORY_LIMIT = 20

Sleep = Callable[[float], Awaitable[None]]


def validate_question(question: str, field: str = "question") -> str:
    text = (question or "").strip()
    if not QUESTION_MIN_CHARS <= len(text) <= QUESTION_MAX_CHARS:
        raise ValidationError(
            f"Question must be between {QUESTION_MIN_CHARS} and {QUESTION_MAX_CHARS} characters.",
            field=field,
        )
    return text


def validate_clause(clause: str) -> str:
    text = (clause or "").strip()
    if not CLAUSE_MIN_CHARS <= len(text) <= CLAUSE_MAX_CHARS:
        raise ValidationError(
            f"Clause must be between {CLAUSE_MIN_CHARS} and {CLAUSE_MAX_CHARS} characters.",
            field="clause",
        )
    return text


class QAService:

    def __init__(
        self,
        store:                  DocumentStore,
        generation:             GenerationAdapter,
        batch_interval_seconds: float = 1.0,
        sleep:                  Sleep = asyncio.sleep,
    ) -> None:
        self._store          = store
        self._generation     = generation
        self._batch_interval = batch_interval_seconds
        self._sleep          = sleep

    async def ask(
        self,
        document_id: str,
        question:    str,
        language:    Language,
        batch_id:    str | None = None,
    ) -> QAEntry:
        question = validate_question(question)
        text = await self._require_text(document_id)

        result = await self._generation.answer_question(question, text, language)
        result.raise_for_failure(stage="answer")

        entry = QAEntry(
            id=uuid.uuid4().hex,
            document_id=document_id,
            question=question,
            answer=result.answer,
            language=language,
            model=result.model,
            relevant_sections=result.relevant_sections,
            batch_id=batch_id,
        )
        await asyncio.shield(self._store.add_qa(entry))
        logger.info(
            "QA | doc=%s entry=%s relevant_sections=%s batch=%s",
            document_id, entry.id, entry.relevant_sections, batch_id or "-",
        )
        return entry

    async def get_history(
        self,
        document_id: str,
        limit:       int = DEFAULT_HISTORY_LIMIT,
    ) -> tuple[list[QAEntry], int]:
        entries = await self._store.list_qa(document_id, limit)
        total   = await self._store.count_qa(document_id)
        return entries, total

    async def ask_batch(
        self,
        document_id: str,
        questions:   list[str],
        language:    Language,
    ) -> BatchResponse:
        if not questions or len(questions) > MAX_BATCH_QUESTIONS:
            raise ValidationError(
                f"Please provide 1-{MAX_BATCH_QUESTIONS} questions in an array.",
                field="questions",
            )
        cleaned = [validate_question(q, field=f"questions[{i}]") for i, q in enumerate(questions)]

        # Fail the whole batch early for unknown documents / missing text
        await self._require_text(document_id)

        batch_id = f"batch_{uuid.uuid4().hex[:16]}"
        logger.info("QA batch | doc=%s batch=%s questions=%d", document_id, batch_id, len(cleaned))

        results = await asyncio.gather(
            *(self._run_batch_item(i, document_id, q, language, batch_id) for i, q in enumerate(cleaned))
        )
        failed = sum(1 for r in results if r.error)
        return BatchResponse(results=list(results), processed=len(results) - failed, failed=failed)

    async def explain_clause(self, clause: str, language: Language) -> ExplanationResult:
        clause = validate_clause(clause)
        result = await self._generation.explain_clause(clause, language)
        result.raise_for_failure(stage="clause")
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_batch_item(
        self,
        index:       int,
        document_id: str,
        question:    str,
        language:    Language,
        batch_id:    str,
    ) -> BatchItemResult:
        if index > 0:
            await self._sleep(self._batch_interval * index)
        try:
            entry = await self.ask(document_id, question, language, batch_id=batch_id)
        except LegalEaseError as exc:
            logger.warning("QA batch | doc=%s batch=%s item=%d failed: %s", document_id, batch_id, index, exc.message)
            return BatchItemResult(question=question, success=False, error=True, message=exc.message)
        except Exception:
            logger.exception("QA batch | doc=%s batch=%s item=%d raised unexpectedly", document_id, batch_id, index)
            return BatchItemResult(
                question=question, success=False, error=True, message="Failed to answer this question.",
            )
        return BatchItemResult(question=question, success=True, entry=entry)

    async def _require_text(self, document_id: str) -> str:
        record = await self._store.get(document_id)
        if not record.extracted_text:
            raise TextUnavailableError(document_id)
        return record.extracted_text
