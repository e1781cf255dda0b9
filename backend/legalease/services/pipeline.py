"""
Document Pipeline Orchestrator

Drives one uploaded document through the processing stages and records
every intermediate state on the DocumentRecord:

  ┌──────────────────────────────────────────────────────────────┐
  │ 1. blob stored → record created   status=processing          │
  │                                   steps.uploaded=true        │
  │ 2. text extraction                                           │
  │      failure → status=error, error=<message>   (terminal)    │
  │      success → extracted_text, extracted_data,               │
  │                steps.text_extracted=true                     │
  │ 3. summary ‖ risk analysis        (concurrent)               │
  │      both ok      → status=completed                         │
  │      either fails → successful half persisted,               │
  │                     status=partial, warning returned         │
  └──────────────────────────────────────────────────────────────┘

retry() re-runs stage 3 for error/partial documents that have text;
regenerate_summary() / regenerate_risks() re-run a single AI stage.

A stage "fails" when the adapter raised or returned a fallback result
(result.failed). Fallback text is never persisted as a summary or risk
analysis.

Store writes are shielded from request cancellation, so a client
disconnect never leaves a half-written transition.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from legalease.core.errors import (
    ConflictError,
    ExtractionError,
    ExtractionErrorKind,
    GenerationError,
    StoreError,
    TextUnavailableError,
)
from legalease.llm.generation import GenerationAdapter
from legalease.processing.extractor import TextExtractor
from legalease.schemas.documents import (
    DocumentRecord,
    DocumentStatus,
    Language,
    ProcessingSteps,
    RiskResult,
    SummaryResult,
)
from legalease.services.uploads import ValidatedUpload
from legalease.storage.blobs import BlobStorage
from legalease.storage.documents import DocumentStore

logger = logging.getLogger(__name__)

PARTIAL_WARNING = "Document processed, but some AI analysis failed. You can retry processing."

PERMISSION_DENIED_MESSAGE = (
    "Text extraction was denied by the OCR service. The service account needs "
    "permission to call the OCR provider; fix the IAM policy and upload the document again."
)


@dataclass
class PipelineResult:
    document: DocumentRecord
    warning:  str | None = None


@dataclass
class AnalysisOutcome:
    summary:  SummaryResult | None
    risks:    RiskResult | None
    failures: list[str]

    @property
    def ok(self) -> bool:
        return not self.failures

    def changes(self) -> dict[str, Any]:
        """Fields to persist for the stages that succeeded."""
        changes: dict[str, Any] = {"processing_steps": {}}
        if self.summary is not None:
            changes["summary"] = self.summary
            changes["processing_steps"]["summarized"] = True
        if self.risks is not None:
            changes["risk_analysis"] = self.risks
            changes["processing_steps"]["risk_analyzed"] = True
        return changes

    def error_message(self) -> str:
        return f"AI analysis failed: {', '.join(self.failures)}"


class DocumentPipeline:
    """
    All dependencies are injected at construction (see api.dependencies).
    One instance serves every request; it holds no per-document state.
    """

    def __init__(
        self,
        store:      DocumentStore,
        blobs:      BlobStorage,
        extractor:  TextExtractor,
        generation: GenerationAdapter,
    ) -> None:
        self._store      = store
        self._blobs      = blobs
        self._extractor  = extractor
        self._generation = generation

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def process_upload(self, upload: ValidatedUpload, language: Language) -> PipelineResult:
        document_id = uuid.uuid4().hex

        # ---- Step 1: store blob, create record -------------------------
        storage_ref = await self._blobs.put(document_id, upload.filename, upload.data, upload.mime_type)
        record = DocumentRecord(
            id=document_id,
            original_name=upload.filename,
            size=upload.size,
            mime_type=upload.mime_type,
            language=language,
            storage_ref=storage_ref,
            processing_steps=ProcessingSteps(uploaded=True),
        )
        try:
            await asyncio.shield(self._store.create(record))
        except StoreError:
            await self._discard_blob(document_id, storage_ref)
            raise

        logger.info(
            "Pipeline start | doc=%s file=%s size=%d mime=%s language=%s",
            document_id, upload.filename, upload.size, upload.mime_type, Language(language).value,
        )

        # ---- Step 2: extraction ---------------------------------------
        try:
            extracted = await self._extractor.extract_text(upload.data, upload.mime_type)
        except ExtractionError as exc:
            message = (
                PERMISSION_DENIED_MESSAGE
                if exc.kind == ExtractionErrorKind.PERMISSION_DENIED
                else exc.message
            )
            await self._persist(document_id, {"status": DocumentStatus.ERROR, "error": message})
            logger.error("Pipeline | doc=%s extraction failed kind=%s: %s", document_id, exc.kind.value, exc.message)
            exc.message = message
            exc.document_id = document_id
            raise

        await self._persist(document_id, {
            "extracted_text":   extracted.text,
            "extracted_data":   extracted.to_extracted_data(),
            "processing_steps": {"text_extracted": True},
        })

        # ---- Step 3: concurrent AI analysis ---------------------------
        analysis = await self._analyze(document_id, extracted.text, language)
        changes  = analysis.changes()
        if analysis.ok:
            changes.update(status=DocumentStatus.COMPLETED, error=None)
            warning = None
        else:
            changes.update(status=DocumentStatus.PARTIAL, error=analysis.error_message())
            warning = PARTIAL_WARNING

        document = await self._persist(document_id, changes)
        logger.info("Pipeline done | doc=%s status=%s", document_id, document.status.value)
        return PipelineResult(document=document, warning=warning)

    # ------------------------------------------------------------------
    # Retry / regenerate
    # ------------------------------------------------------------------

    async def retry(self, document_id: str, language: Language) -> DocumentRecord:
        """
        Re-run both AI stages. Raises GenerationError (502) when either stage
        fails; the successful half is persisted and the status is left as it
        was, unless the document now has both results, in which case it is
        promoted to completed before the error is raised.
        """
        record = await self._store.get(document_id)
        if record.status == DocumentStatus.COMPLETED:
            raise ConflictError("Document is already processed.")
        if record.status == DocumentStatus.PROCESSING:
            raise ConflictError("Document is still being processed.")
        if not record.extracted_text:
            raise ConflictError("No extracted text available for processing.")

        logger.info("Pipeline retry | doc=%s language=%s", document_id, Language(language).value)
        analysis = await self._analyze(document_id, record.extracted_text, language)
        changes  = analysis.changes()

        if analysis.ok:
            changes.update(status=DocumentStatus.COMPLETED, error=None, language=language)
            return await self._persist(document_id, changes)

        changes["error"] = analysis.error_message()
        # a failed half may still complete the document when the other half was already stored
        await self._persist_stage(document_id, changes)
        raise GenerationError(analysis.error_message(), stage="retry")

    async def regenerate_summary(self, document_id: str, language: Language) -> DocumentRecord:
        text = await self._require_text(document_id)
        result = await self._generation.summarize(text, language)
        result.raise_for_failure(stage="summary")
        return await self._persist_stage(
            document_id, {"summary": result, "processing_steps": {"summarized": True}},
        )

    async def regenerate_risks(self, document_id: str, language: Language) -> DocumentRecord:
        text = await self._require_text(document_id)
        result = await self._generation.analyze_risks(text, language)
        result.raise_for_failure(stage="risks")
        return await self._persist_stage(
            document_id, {"risk_analysis": result, "processing_steps": {"risk_analyzed": True}},
        )

    # ------------------------------------------------------------------
    # Read / delete
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str) -> DocumentRecord:
        return await self._store.get(document_id)

    async def list_documents(self, limit: int = 10) -> list[DocumentRecord]:
        return await self._store.list_recent(limit)

    async def delete_document(self, document_id: str) -> None:
        """Delete the stored file, the record and its Q&A history."""
        record = await self._store.get(document_id)
        if record.storage_ref:
            await self._blobs.delete(record.storage_ref)
        await asyncio.shield(self._store.delete(document_id))
        logger.info("Pipeline | doc=%s deleted", document_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _analyze(self, document_id: str, text: str, language: Language) -> AnalysisOutcome:
        summary, risks = await asyncio.gather(
            self._run_stage(document_id, "summary", self._generation.summarize(text, language)),
            self._run_stage(document_id, "risks", self._generation.analyze_risks(text, language)),
        )
        failures = [name for name, res in (("summary", summary), ("risks", risks)) if res is None]
        return AnalysisOutcome(summary=summary, risks=risks, failures=failures)

    @staticmethod
    async def _run_stage(document_id: str, stage: str, call):
        """Await one AI stage; None means the stage failed."""
        try:
            result = await call
        except GenerationError as exc:
            logger.warning("Pipeline | doc=%s stage=%s failed kind=%s", document_id, stage, exc.kind)
            return None
        except Exception:
            logger.exception("Pipeline | doc=%s stage=%s raised unexpectedly", document_id, stage)
            return None

        if result.failed:
            logger.warning("Pipeline | doc=%s stage=%s returned fallback kind=%s", document_id, stage, result.failure)
            return None
        return result

    async def _require_text(self, document_id: str) -> str:
        record = await self._store.get(document_id)
        if not record.extracted_text:
            raise TextUnavailableError(document_id)
        return record.extracted_text

    async def _persist_stage(self, document_id: str, changes: dict[str, Any]) -> DocumentRecord:
        record = await self._persist(document_id, changes)
        if record.processing_steps.all_done and record.status != DocumentStatus.COMPLETED:
            record = await self._persist(document_id, {"status": DocumentStatus.COMPLETED, "error": None})
            logger.info("Pipeline | doc=%s promoted to completed", document_id)
        return record

    async def _persist(self, document_id: str, changes: dict[str, Any]) -> DocumentRecord:
        return await asyncio.shield(self._store.update(document_id, changes))

    async def _discard_blob(self, document_id: str, storage_ref: str) -> None:
        """Remove a blob whose record could not be created."""
        try:
            await self._blobs.delete(storage_ref)
        except StoreError as exc:
            logger.error("Pipeline | doc=%s orphaned blob %s: %s", document_id, storage_ref, exc.message)
