"""
Document Store — keyed persistence for DocumentRecords and their Q&A history

Contract shared by every backend:
  - create/get/update/delete/list_recent for DocumentRecord
  - add_qa/list_qa/count_qa for the append-only QAEntry child collection
  - get/update/delete/add_qa/list_qa raise NotFoundError for unknown ids
  - update() merges processing_steps monotonically and always bumps updated_at
  - id and created_at are immutable once a record exists
  - list_qa() returns most-recent-first (insertion order breaks timestamp ties)
  - backend I/O failures surface as StoreError

Backends:
  InMemoryDocumentStore  — default for local development and tests
  SqlDocumentStore       — SQLAlchemy async ORM (see storage/sql.py)
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from legalease.core.errors import NotFoundError
from legalease.schemas.documents import DocumentRecord, QAEntry, utcnow

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


def apply_changes(record: DocumentRecord, changes: dict[str, Any]) -> DocumentRecord:
    """
    Return a new record with changes applied.

    processing_steps in changes is a partial dict of flags merged with OR;
    every other key replaces the field value. updated_at is always refreshed.
    """
    illegal = IMMUTABLE_FIELDS.intersection(changes)
    if illegal:
        raise ValueError(f"Cannot modify immutable field(s): {', '.join(sorted(illegal))}")

    unknown = set(changes) - set(DocumentRecord.model_fields)
    if unknown:
        raise ValueError(f"Unknown DocumentRecord field(s): {', '.join(sorted(unknown))}")

    updates = dict(changes)
    if "processing_steps" in updates:
        steps = updates["processing_steps"]
        if not isinstance(steps, dict):
            steps = steps.model_dump()
        updates["processing_steps"] = record.processing_steps.merge(steps)

    data = record.model_dump()
    data.update(updates)
    data["updated_at"] = utcnow()
    return DocumentRecord.model_validate(data)


class DocumentStore(ABC):
    """Abstract document store; one instance is shared by all requests."""

    @abstractmethod
    async def create(self, record: DocumentRecord) -> DocumentRecord: ...

    @abstractmethod
    async def get(self, document_id: str) -> DocumentRecord: ...

    @abstractmethod
    async def update(self, document_id: str, changes: dict[str, Any]) -> DocumentRecord: ...

    @abstractmethod
    async def delete(self, document_id: str) -> None:
        """Remove the record and its whole Q&A history."""

    @abstractmethod
    async def list_recent(self, limit: int = 10) -> list[DocumentRecord]: ...

    @abstractmethod
    async def add_qa(self, entry: QAEntry) -> QAEntry: ...

    @abstractmethod
    async def list_qa(self, document_id: str, limit: int = 20) -> list[QAEntry]: ...

    @abstractmethod
    async def count_qa(self, document_id: str) -> int: ...

    async def check_health(self) -> dict:
        return {"status": "ok"}

    async def close(self) -> None:
        """Release backend resources on shutdown."""


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local store.

    Records are deep-copied on the way in and out so callers can never
    mutate stored state by holding a reference.
    """

    def __init__(self) -> None:
        self._documents: dict[str, DocumentRecord] = {}
        self._qa: dict[str, list[QAEntry]] = {}
        self._lock = asyncio.Lock()

    async def create(self, record: DocumentRecord) -> DocumentRecord:
        async with self._lock:
            if record.id in self._documents:
                raise ValueError(f"Document '{record.id}' already exists")
            self._documents[record.id] = record.model_copy(deep=True)
            self._qa[record.id] = []
        logger.debug("MemoryStore | created doc=%s", record.id)
        return record.model_copy(deep=True)

    async def get(self, document_id: str) -> DocumentRecord:
        async with self._lock:
            return self._require(document_id).model_copy(deep=True)

    async def update(self, document_id: str, changes: dict[str, Any]) -> DocumentRecord:
        async with self._lock:
            updated = apply_changes(self._require(document_id), changes)
            self._documents[document_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, document_id: str) -> None:
        async with self._lock:
            self._require(document_id)
            del self._documents[document_id]
            self._qa.pop(document_id, None)
        logger.debug("MemoryStore | deleted doc=%s", document_id)

    async def list_recent(self, limit: int = 10) -> list[DocumentRecord]:
        async with self._lock:
            records = sorted(self._documents.values(), key=lambda r: r.created_at, reverse=True)
            return [r.model_copy(deep=True) for r in records[:limit]]

    async def add_qa(self, entry: QAEntry) -> QAEntry:
        async with self._lock:
            self._require(entry.document_id)
            self._qa[entry.document_id].append(entry.model_copy(deep=True))
        return entry.model_copy(deep=True)

    async def list_qa(self, document_id: str, limit: int = 20) -> list[QAEntry]:
        async with self._lock:
            self._require(document_id)
            entries = self._qa.get(document_id, [])
            return [e.model_copy(deep=True) for e in reversed(entries)][:limit]

    async def count_qa(self, document_id: str) -> int:
        async with self._lock:
            self._require(document_id)
            return len(self._qa.get(document_id, []))

    def _require(self, document_id: str) -> DocumentRecord:
        record = self._documents.get(document_id)
        if record is None:
            raise NotFoundError(document_id)
        return record
