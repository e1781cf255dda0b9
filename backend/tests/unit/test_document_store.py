"""
Unit Tests — DocumentStore backends
════════════════════════════════════
Every test runs against both InMemoryDocumentStore and SqlDocumentStore
(SQLite via aiosqlite, one database file per test).

Coverage targets:
  ✅ create → get round trip, NotFoundError for unknown ids
  ✅ update(): processing_steps merged monotonically, updated_at bumped
  ✅ update(): id / created_at immutable, unknown fields rejected
  ✅ list_recent(): newest first, limit honoured
  ✅ Q&A history: most-recent-first, insertion order breaks timestamp ties
  ✅ delete() cascades to the Q&A history
  ✅ Stored records are isolated from caller mutation (memory backend)
"""

from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio

from legalease.core.errors import NotFoundError
from legalease.db.session import build_engine, build_session_factory, create_tables
from legalease.schemas.documents import (
    DocumentRecord,
    DocumentStatus,
    ExtractedData,
    Language,
    QAEntry,
    SummaryResult,
    utcnow,
)
from legalease.storage.documents import InMemoryDocumentStore
from legalease.storage.sql import SqlDocumentStore


@pytest_asyncio.fixture(params=["memory", "sql"])
async def doc_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryDocumentStore()
        return

    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'legalease.db'}")
    await create_tables(engine)
    sql_store = SqlDocumentStore(build_session_factory(engine), engine=engine)
    yield sql_store
    await sql_store.close()


def _record(document_id: str = "doc-1", **overrides) -> DocumentRecord:
    data = dict(
        id=document_id,
        original_name="lease.pdf",
        size=2048,
        mime_type="application/pdf",
        language=Language.ENGLISH,
        storage_ref=f"memory://documents/{document_id}/lease.pdf",
    )
    data.update(overrides)
    return DocumentRecord(**data)


def _entry(entry_id: str, question: str, document_id: str = "doc-1", **overrides) -> QAEntry:
    data = dict(
        id=entry_id,
        document_id=document_id,
        question=question,
        answer=f"answer to {question}",
        language=Language.ENGLISH,
        model="test-model",
    )
    data.update(overrides)
    return QAEntry(**data)


@pytest.mark.unit
class TestRecords:

    async def test_create_and_get(self, doc_store):
        await doc_store.create(_record())

        fetched = await doc_store.get("doc-1")

        assert fetched.id == "doc-1"
        assert fetched.status == DocumentStatus.PROCESSING
        assert fetched.storage_ref == "memory://documents/doc-1/lease.pdf"
        assert fetched.created_at.tzinfo is not None

    async def test_get_unknown(self, doc_store):
        with pytest.raises(NotFoundError) as exc_info:
            await doc_store.get("missing")
        assert exc_info.value.status_code == 404

    async def test_update_unknown(self, doc_store):
        with pytest.raises(NotFoundError):
            await doc_store.update("missing", {"status": DocumentStatus.ERROR})

    async def test_structured_fields_round_trip(self, doc_store):
        await doc_store.create(_record())
        summary = SummaryResult(summary="A lease.", language=Language.HINDI, model="test-model")

        await doc_store.update("doc-1", {
            "extracted_text": "Full text.",
            "extracted_data": ExtractedData(pages=2, confidence=0.9),
            "summary": summary,
        })
        fetched = await doc_store.get("doc-1")

        assert fetched.extracted_text == "Full text."
        assert fetched.extracted_data.pages == 2
        assert fetched.summary.summary == "A lease."
        assert fetched.summary.language == Language.HINDI


@pytest.mark.unit
class TestUpdateSemantics:

    async def test_processing_steps_are_monotonic(self, doc_store):
        await doc_store.create(_record())
        await doc_store.update("doc-1", {"processing_steps": {"uploaded": True, "text_extracted": True}})

        updated = await doc_store.update("doc-1", {"processing_steps": {"uploaded": False, "summarized": True}})

        assert updated.processing_steps.uploaded is True
        assert updated.processing_steps.text_extracted is True
        assert updated.processing_steps.summarized is True
        assert updated.processing_steps.risk_analyzed is False

    async def test_updated_at_bumped(self, doc_store):
        created = await doc_store.create(_record())

        updated = await doc_store.update("doc-1", {"status": DocumentStatus.COMPLETED})

        assert updated.updated_at >= created.updated_at
        assert updated.created_at == created.created_at
        assert updated.status == DocumentStatus.COMPLETED

    @pytest.mark.parametrize("field", ["id", "created_at"])
    async def test_immutable_fields(self, doc_store, field):
        await doc_store.create(_record())
        with pytest.raises(ValueError):
            await doc_store.update("doc-1", {field: "other"})

    async def test_unknown_field(self, doc_store):
        await doc_store.create(_record())
        with pytest.raises(ValueError):
            await doc_store.update("doc-1", {"owner": "someone"})


@pytest.mark.unit
class TestListRecent:

    async def test_newest_first_with_limit(self, doc_store):
        base = utcnow()
        for i in range(3):
            await doc_store.create(_record(f"doc-{i}", created_at=base + timedelta(seconds=i)))

        recent = await doc_store.list_recent(limit=2)

        assert [r.id for r in recent] == ["doc-2", "doc-1"]

    async def test_empty(self, doc_store):
        assert await doc_store.list_recent() == []


@pytest.mark.unit
class TestQAHistory:

    async def test_most_recent_first(self, doc_store):
        await doc_store.create(_record())
        base = utcnow()
        await doc_store.add_qa(_entry("q1", "What is the rent?", timestamp=base))
        await doc_store.add_qa(_entry("q2", "When can I terminate?", timestamp=base + timedelta(seconds=1)))

        history = await doc_store.list_qa("doc-1")

        assert [e.id for e in history] == ["q2", "q1"]
        assert await doc_store.count_qa("doc-1") == 2

    async def test_insertion_order_breaks_timestamp_ties(self, doc_store):
        await doc_store.create(_record())
        stamp = utcnow()
        for i in range(3):
            await doc_store.add_qa(_entry(f"q{i}", f"Question number {i}?", timestamp=stamp, batch_id="batch_1"))

        history = await doc_store.list_qa("doc-1")

        assert [e.id for e in history] == ["q2", "q1", "q0"]
        assert all(e.batch_id == "batch_1" for e in history)

    async def test_limit(self, doc_store):
        await doc_store.create(_record())
        for i in range(5):
            await doc_store.add_qa(_entry(f"q{i}", f"Question number {i}?"))

        assert len(await doc_store.list_qa("doc-1", limit=3)) == 3
        assert await doc_store.count_qa("doc-1") == 5

    async def test_add_to_unknown_document(self, doc_store):
        with pytest.raises(NotFoundError):
            await doc_store.add_qa(_entry("q1", "What is the rent?", document_id="missing"))

    async def test_list_unknown_document(self, doc_store):
        with pytest.raises(NotFoundError):
            await doc_store.list_qa("missing")


@pytest.mark.unit
class TestDelete:

    async def test_delete_cascades_history(self, doc_store):
        await doc_store.create(_record())
        await doc_store.add_qa(_entry("q1", "What is the rent?"))

        await doc_store.delete("doc-1")

        with pytest.raises(NotFoundError):
            await doc_store.get("doc-1")
        with pytest.raises(NotFoundError):
            await doc_store.list_qa("doc-1")

    async def test_recreate_after_delete_has_empty_history(self, doc_store):
        await doc_store.create(_record())
        await doc_store.add_qa(_entry("q1", "What is the rent?"))
        await doc_store.delete("doc-1")

        await doc_store.create(_record())

        assert await doc_store.count_qa("doc-1") == 0

    async def test_delete_unknown(self, doc_store):
        with pytest.raises(NotFoundError):
            await doc_store.delete("missing")


@pytest.mark.unit
class TestMemoryIsolation:

    async def test_returned_records_are_copies(self, store):
        created = await store.create(_record())
        created.extracted_text = "tampered"

        assert (await store.get("doc-1")).extracted_text is None

    async def test_duplicate_id_rejected(self, store):
        await store.create(_record())
        with pytest.raises(ValueError):
            await store.create(_record())
