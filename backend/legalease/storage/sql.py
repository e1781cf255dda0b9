"""
SqlDocumentStore — SQLAlchemy 2.x async implementation of DocumentStore

One short transaction per operation; no session outlives a call. Every
SQLAlchemyError is logged and re-raised as StoreError so the HTTP layer
answers 500 with the uniform error envelope.

Works against PostgreSQL (asyncpg) in production and SQLite (aiosqlite) in
tests. Q&A rows are deleted explicitly before their document so the cascade
holds even where the database does not enforce foreign keys.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from legalease.core.errors import NotFoundError, StoreError
from legalease.db.session import check_db_health
from legalease.models.documents import DocumentRow, QAEntryRow
from legalease.schemas.documents import DocumentRecord, QAEntry
from legalease.storage.documents import DocumentStore, apply_changes

logger = logging.getLogger(__name__)

_JSON_FIELDS = ("processing_steps", "extracted_data", "summary", "risk_analysis")


def _as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes even for timezone-aware columns
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _record_to_columns(record: DocumentRecord) -> dict[str, Any]:
    data = record.model_dump(mode="json")
    columns: dict[str, Any] = {
        "id":             record.id,
        "original_name":  record.original_name,
        "size":           record.size,
        "mime_type":      record.mime_type,
        "language":       record.language.value,
        "storage_ref":    record.storage_ref,
        "status":         record.status.value,
        "extracted_text": record.extracted_text,
        "error":          record.error,
        "created_at":     record.created_at,
        "updated_at":     record.updated_at,
    }
    for name in _JSON_FIELDS:
        columns[name] = data[name]
    return columns


def _row_to_record(row: DocumentRow) -> DocumentRecord:
    return DocumentRecord.model_validate(
        {
            "id":               row.id,
            "original_name":    row.original_name,
            "size":             row.size,
            "mime_type":        row.mime_type,
            "language":         row.language,
            "storage_ref":      row.storage_ref,
            "status":           row.status,
            "processing_steps": row.processing_steps or {},
            "extracted_text":   row.extracted_text,
            "extracted_data":   row.extracted_data,
            "summary":          row.summary,
            "risk_analysis":    row.risk_analysis,
            "error":            row.error,
            "created_at":       _as_utc(row.created_at),
            "updated_at":       _as_utc(row.updated_at),
        }
    )


def _row_to_entry(row: QAEntryRow) -> QAEntry:
    return QAEntry(
        id=row.id,
        document_id=row.document_id,
        question=row.question,
        answer=row.answer,
        language=row.language,
        model=row.model,
        relevant_sections=row.relevant_sections,
        batch_id=row.batch_id,
        timestamp=_as_utc(row.timestamp),
    )


class SqlDocumentStore(DocumentStore):

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine:          AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine          = engine

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def create(self, record: DocumentRecord) -> DocumentRecord:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add(DocumentRow(**_record_to_columns(record)))
        except SQLAlchemyError as exc:
            raise self._store_error("create", record.id, exc) from exc
        logger.debug("SqlStore | created doc=%s", record.id)
        return record

    async def get(self, document_id: str) -> DocumentRecord:
        try:
            async with self._session_factory() as session:
                row = await session.get(DocumentRow, document_id)
                if row is None:
                    raise NotFoundError(document_id)
                return _row_to_record(row)
        except SQLAlchemyError as exc:
            raise self._store_error("get", document_id, exc) from exc

    async def update(self, document_id: str, changes: dict[str, Any]) -> DocumentRecord:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(DocumentRow, document_id, with_for_update=True)
                    if row is None:
                        raise NotFoundError(document_id)
                    updated = apply_changes(_row_to_record(row), changes)
                    for column, value in _record_to_columns(updated).items():
                        if column != "id":
                            setattr(row, column, value)
        except SQLAlchemyError as exc:
            raise self._store_error("update", document_id, exc) from exc
        return updated

    async def delete(self, document_id: str) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(DocumentRow, document_id)
                    if row is None:
                        raise NotFoundError(document_id)
                    await session.execute(
                        delete(QAEntryRow).where(QAEntryRow.document_id == document_id)
                    )
                    await session.execute(
                        delete(DocumentRow).where(DocumentRow.id == document_id)
                    )
        except SQLAlchemyError as exc:
            raise self._store_error("delete", document_id, exc) from exc
        logger.debug("SqlStore | deleted doc=%s", document_id)

    async def list_recent(self, limit: int = 10) -> list[DocumentRecord]:
        stmt = select(DocumentRow).order_by(DocumentRow.created_at.desc()).limit(limit)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [_row_to_record(r) for r in rows]
        except SQLAlchemyError as exc:
            raise self._store_error("list_recent", None, exc) from exc

    # ------------------------------------------------------------------
    # Q&A history
    # ------------------------------------------------------------------

    async def add_qa(self, entry: QAEntry) -> QAEntry:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._require(session, entry.document_id)
                    session.add(QAEntryRow(
                        id=entry.id,
                        document_id=entry.document_id,
                        question=entry.question,
                        answer=entry.answer,
                        language=entry.language.value,
                        model=entry.model,
                        relevant_sections=entry.relevant_sections,
                        batch_id=entry.batch_id,
                        timestamp=entry.timestamp,
                    ))
        except SQLAlchemyError as exc:
            raise self._store_error("add_qa", entry.document_id, exc) from exc
        return entry

    async def list_qa(self, document_id: str, limit: int = 20) -> list[QAEntry]:
        stmt = (
            select(QAEntryRow)
            .where(QAEntryRow.document_id == document_id)
            .order_by(QAEntryRow.timestamp.desc(), QAEntryRow.seq.desc())
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                await self._require(session, document_id)
                rows = (await session.execute(stmt)).scalars().all()
                return [_row_to_entry(r) for r in rows]
        except SQLAlchemyError as exc:
            raise self._store_error("list_qa", document_id, exc) from exc

    async def count_qa(self, document_id: str) -> int:
        stmt = select(func.count()).select_from(QAEntryRow).where(QAEntryRow.document_id == document_id)
        try:
            async with self._session_factory() as session:
                await self._require(session, document_id)
                return int((await session.execute(stmt)).scalar_one())
        except SQLAlchemyError as exc:
            raise self._store_error("count_qa", document_id, exc) from exc

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def check_health(self) -> dict:
        if self._engine is None:
            return {"status": "ok"}
        return await check_db_health(self._engine)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    @staticmethod
    async def _require(session: AsyncSession, document_id: str) -> None:
        exists = await session.scalar(select(DocumentRow.id).where(DocumentRow.id == document_id))
        if exists is None:
            raise NotFoundError(document_id)

    @staticmethod
    def _store_error(op: str, document_id: str | None, exc: SQLAlchemyError) -> StoreError:
        logger.error("SqlStore | %s failed doc=%s: %s", op, document_id, exc)
        return StoreError(f"Document store {op} failed.")
