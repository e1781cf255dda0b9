"""
Composed FastAPI Dependencies

build_services() is the single wiring point: it constructs every component
once at startup from Settings and hangs the bundle on app.state.services.
Route handlers receive components through the getters below and never
build stores, adapters or gates themselves.

Rate limiting is a dependency too: rate_limited(OperationClass.X) consumes
one point for the caller's IP and either raises RateLimitError (429) or
annotates the response with X-RateLimit-* headers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Callable

from fastapi import Depends, Request, Response

from legalease.core.config import Settings
from legalease.core.errors import RateLimitError
from legalease.db.session import build_engine, build_session_factory, create_tables
from legalease.llm.generation import GenerationAdapter
from legalease.llm.provider import LangChainTextGenerator, TextGenerator
from legalease.processing.extractor import TextExtractor
from legalease.processing.ocr import OCRProvider, build_ocr_provider
from legalease.ratelimit import Denied, OperationClass, RateGate
from legalease.services.pipeline import DocumentPipeline
from legalease.services.qa import QAService
from legalease.storage.blobs import BlobStorage, build_blob_storage
from legalease.storage.documents import DocumentStore, InMemoryDocumentStore
from legalease.storage.sql import SqlDocumentStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Service bundle
# ---------------------------------------------------------------------------

@dataclass
class Services:
    settings:   Settings
    gate:       RateGate
    store:      DocumentStore
    blobs:      BlobStorage
    extractor:  TextExtractor
    generation: GenerationAdapter
    pipeline:   DocumentPipeline
    qa:         QAService

    async def close(self) -> None:
        await self.store.close()


def assemble_services(
    settings:  Settings,
    *,
    store:     DocumentStore,
    blobs:     BlobStorage,
    ocr:       OCRProvider,
    generator: TextGenerator,
    gate:      RateGate | None = None,
) -> Services:
    """Wire already-built backends together. Tests call this with fakes."""
    extractor  = TextExtractor(ocr, timeout_seconds=settings.ocr_timeout_seconds)
    generation = GenerationAdapter(generator)
    return Services(
        settings=settings,
        gate=gate or RateGate.from_settings(settings),
        store=store,
        blobs=blobs,
        extractor=extractor,
        generation=generation,
        pipeline=DocumentPipeline(store, blobs, extractor, generation),
        qa=QAService(
            store,
            generation,
            batch_interval_seconds=settings.batch_question_interval_seconds,
        ),
    )


async def build_services(settings: Settings) -> Services:
    """Build production backends from settings."""
    store: DocumentStore
    if settings.database_url:
        engine = build_engine(
            settings.database_url,
            echo=settings.db_echo_sql,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
        await create_tables(engine)
        store = SqlDocumentStore(build_session_factory(engine), engine=engine)
        logger.info("Document store: sql")
    else:
        store = InMemoryDocumentStore()
        logger.info("Document store: memory")

    return assemble_services(
        settings,
        store=store,
        blobs=build_blob_storage(settings),
        ocr=build_ocr_provider(settings),
        generator=LangChainTextGenerator(settings),
    )


# ---------------------------------------------------------------------------
# Getters
# ---------------------------------------------------------------------------

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_pipeline(request: Request) -> DocumentPipeline:
    return get_services(request).pipeline


def get_qa_service(request: Request) -> QAService:
    return get_services(request).qa


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

def rate_limited(op_class: OperationClass) -> Callable:
    """Dependency factory: consume one point of op_class for the caller."""

    async def _check(request: Request, response: Response) -> None:
        services = get_services(request)
        key = _extract_client_ip(request) or "unknown"
        admission = await services.gate.admit(op_class, key)

        if isinstance(admission, Denied):
            raise RateLimitError(op_class.value, admission.retry_after_seconds, admission.limit)

        if admission.limit is not None:
            response.headers["X-RateLimit-Limit"]     = str(admission.limit)
            response.headers["X-RateLimit-Remaining"] = str(admission.remaining)
            response.headers["X-RateLimit-Reset"]     = str(admission.reset_after_seconds)

    return _check


def _extract_client_ip(request: Request) -> str | None:
    """Extract real client IP from X-Forwarded-For, falling back to direct connection."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For may be a comma-separated list; take the first (client IP)
        ip = forwarded.split(",")[0].strip()
        return ip if ip else None
    return request.client.host if request.client else None


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

AppServices = Annotated[Services,         Depends(get_services)]
Pipeline    = Annotated[DocumentPipeline, Depends(get_pipeline)]
QA          = Annotated[QAService,        Depends(get_qa_service)]
