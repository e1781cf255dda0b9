"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  function-scoped : test_settings, fake_clock, store, blobs, fake_ocr,
                    generator, services, app, async_client

Environment strategy:
  - No network: the LLM is a ScriptedTextGenerator, image OCR is a FakeOCRProvider.
  - Plain-text uploads go through the real CascadingOCRProvider → PlainTextProvider.
  - The document store and blob storage are the in-memory backends; SQL store
    tests build their own SQLite engine (aiosqlite).
  - The rate gate runs on a FakeClock so window expiry is deterministic.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only (fast, no I/O)
  pytest -m integration           # API tests through the full FastAPI stack
"""

from __future__ import annotations

import os
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("APP_ENV",        "development")
os.environ.setdefault("DATABASE_URL",   "")
os.environ.setdefault("BLOB_BACKEND",   "memory")
os.environ.setdefault("OCR_BACKEND",    "local")
os.environ.setdefault("OPENAI_API_KEY", "")

from legalease.api.dependencies import Services, assemble_services  # noqa: E402
from legalease.core.config import Settings  # noqa: E402
from legalease.llm.provider import (  # noqa: E402
    FailureKind,
    GenerationFailure,
    GenerationOutcome,
    GenerationSuccess,
    TextGenerator,
)
from legalease.processing.ocr import (  # noqa: E402
    CascadingOCRProvider,
    OCRProvider,
    PageText,
    RawDocument,
    RawParagraph,
)
from legalease.ratelimit import RateGate  # noqa: E402
from legalease.storage.blobs import InMemoryBlobStorage  # noqa: E402
from legalease.storage.documents import InMemoryDocumentStore  # noqa: E402
from limits.aio.storage import memory as limits_memory  # noqa: E402


# ─────────────────────────────────────────────────────────────────────────────
# Sample documents
# ─────────────────────────────────────────────────────────────────────────────

CONTRACT_PAGE_1 = (
    "RESIDENTIAL LEASE AGREEMENT\n\n"
    "This agreement is made between Asha Landlord and Ravi Tenant for the premises at 12 Park Street.\n\n"
    "The monthly rent is Rs. 25,000 payable on the fifth day of each month. "
    "A late payment penalty of Rs. 500 per day applies after the due date."
)

CONTRACT_PAGE_2 = (
    "The security deposit of Rs. 75,000 is refundable within 30 days of termination. "
    "Either party may terminate this agreement with two months written notice.\n\n"
    "Any dispute shall be resolved by arbitration in Mumbai."
)

SAMPLE_CONTRACT = f"{CONTRACT_PAGE_1}\f{CONTRACT_PAGE_2}"


@pytest.fixture
def sample_contract_bytes() -> bytes:
    """Two-page plain-text contract (pages separated by a form feed)."""
    return SAMPLE_CONTRACT.encode("utf-8")


@pytest.fixture
def sample_png_bytes() -> bytes:
    """PNG signature followed by filler; only the magic bytes matter."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def exe_bytes() -> bytes:
    """Windows PE executable — should be rejected by MIME type check."""
    return b"MZ\x90\x00" + b"\x00" * 100


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────

class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOCRProvider(OCRProvider):
    """
    Returns a fixed RawDocument, or raises the configured error.
    Records every call as (len(buffer), mime_type).
    """

    def __init__(self, text: str = "Scanned agreement text recognised by OCR with high confidence.") -> None:
        self.text = text
        self.error: Exception | None = None
        self.calls: list[tuple[int, str]] = []

    @property
    def strategy_name(self) -> str:
        return "fake_ocr"

    async def process(self, buffer: bytes, mime_type: str) -> RawDocument:
        self.calls.append((len(buffer), mime_type))
        if self.error is not None:
            raise self.error
        return RawDocument(
            pages=[PageText(1, self.text, self.strategy_name)],
            paragraphs=[RawParagraph(1, self.text, 0.93)],
            strategy_name=self.strategy_name,
            used_ocr=True,
        )


def prompt_task(prompt: str) -> str:
    """Identify which template rendered a prompt."""
    if "User's Question" in prompt:
        return "answer"
    if "Explain this legal clause" in prompt:
        return "clause"
    if "risk analysis" in prompt.lower():
        return "risks"
    return "summary"


class ScriptedTextGenerator(TextGenerator):
    """
    Deterministic TextGenerator.

    By default every task succeeds with "<task> output". Tests switch a task
    to a failure with fail(task, kind), or fail only answers whose prompt
    contains a given question with fail_question(question).
    """

    def __init__(self, model: str = "test-model") -> None:
        self._model = model
        self.failures: dict[str, GenerationOutcome] = {}
        self.failing_questions: set[str] = set()
        self.prompts: list[str] = []

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def provider_name(self) -> str:
        return "scripted"

    def fail(self, task: str, kind: FailureKind = FailureKind.TRANSIENT) -> None:
        self.failures[task] = GenerationFailure(kind, f"{task} failed")

    def fail_question(self, question: str) -> None:
        self.failing_questions.add(question)

    def reset(self) -> None:
        self.failures.clear()
        self.failing_questions.clear()

    def calls_for(self, task: str) -> int:
        return sum(1 for p in self.prompts if prompt_task(p) == task)

    async def generate(self, prompt: str) -> GenerationOutcome:
        self.prompts.append(prompt)
        task = prompt_task(prompt)
        if task == "answer" and any(f'"{q}"' in prompt for q in self.failing_questions):
            return GenerationFailure(FailureKind.TRANSIENT, "answer failed")
        if task in self.failures:
            return self.failures[task]
        return GenerationSuccess(f"{task} output")


# ─────────────────────────────────────────────────────────────────────────────
# Component fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="",
        blob_backend="memory",
        ocr_backend="local",
        ocr_timeout_seconds=5.0,
        openai_api_key="",
        batch_question_interval_seconds=0.0,
        rate_limit_general_points=1000,
        rate_limit_upload_points=3,
        rate_limit_upload_duration=900,
        rate_limit_ai_points=5,
        rate_limit_ai_duration=3600,
        rate_limit_qa_points=4,
        rate_limit_qa_duration=3600,
    )


@pytest.fixture
def fake_clock(monkeypatch) -> FakeClock:
    """FakeClock that also stamps the window expiries of limits' MemoryStorage."""
    clock = FakeClock()
    monkeypatch.setattr(limits_memory, "time", SimpleNamespace(time=clock))
    return clock


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def blobs() -> InMemoryBlobStorage:
    return InMemoryBlobStorage()


@pytest.fixture
def fake_ocr() -> FakeOCRProvider:
    return FakeOCRProvider()


@pytest.fixture
def generator() -> ScriptedTextGenerator:
    return ScriptedTextGenerator()


@pytest.fixture
def services(test_settings, fake_clock, store, blobs, fake_ocr, generator) -> Services:
    """Fully wired service bundle; image OCR goes to fake_ocr."""
    return assemble_services(
        test_settings,
        store=store,
        blobs=blobs,
        ocr=CascadingOCRProvider(ocr=fake_ocr),
        generator=generator,
        gate=RateGate.from_settings(test_settings, clock=fake_clock),
    )


@pytest.fixture
def pipeline(services):
    return services.pipeline


@pytest.fixture
def qa_service(services):
    return services.qa


@pytest.fixture
def make_document(services, sample_contract_bytes):
    """
    Factory fixture: run a real upload through the pipeline.

    Usage:
        record = await make_document()
        record = await make_document(text="other contract")
    """
    from legalease.schemas.documents import Language
    from legalease.services.uploads import validate_upload

    async def _build(text: str | None = None, language: Language = Language.ENGLISH):
        data = text.encode("utf-8") if text is not None else sample_contract_bytes
        upload = validate_upload("contract.txt", data, "text/plain", services.settings.max_upload_bytes)
        result = await services.pipeline.process_upload(upload, language)
        return result.document

    return _build


# ─────────────────────────────────────────────────────────────────────────────
# FastAPI test client
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def app(services):
    """
    FastAPI app with the service bundle injected up front.
    The lifespan hook does not run under ASGITransport, so nothing is built
    from the environment.
    """
    from legalease.main import create_app
    return create_app(services=services)


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client; ASGITransport is required with httpx >= 0.28."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
