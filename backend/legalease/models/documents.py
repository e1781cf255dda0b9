"""
SQLAlchemy ORM Models — Documents & Q&A history

2.x-style mapped classes for full async support. Structured fields
(processing steps, extraction metadata, generation results) live in JSON
columns, stored as JSONB on PostgreSQL.

Tables:
  documents   — one row per uploaded file (DocumentRecord)
  qa_entries  — append-only answered questions, cascade-deleted with
                their document. `seq` is a monotonically increasing
                surrogate key used to order entries that share a timestamp.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSON everywhere, JSONB on PostgreSQL
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    """
    State machine (status column):
        processing — record created, extraction / AI stage running
        completed  — text extracted, summary and risks generated
        partial    — text extracted, at least one AI stage failed
        error      — extraction failed (see error)
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('processing', 'completed', 'partial', 'error')",
            name="documents_status_check",
        ),
        CheckConstraint("language IN ('en', 'hi')", name="documents_language_check"),
        Index("idx_documents_created_at", "created_at"),
    )

    id: Mapped[str]            = mapped_column(String(64), primary_key=True)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int]          = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str]     = mapped_column(String(100), nullable=False)
    language: Mapped[str]      = mapped_column(String(8), nullable=False, default="en")
    storage_ref: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Blob reference (s3://bucket/key or memory://...); never exposed over HTTP",
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="processing")

    processing_steps: Mapped[dict[str, Any]]          = mapped_column(JSONType, nullable=False, default=dict)
    extracted_text: Mapped[Optional[str]]             = mapped_column(Text, nullable=True)
    extracted_data: Mapped[Optional[dict[str, Any]]]  = mapped_column(JSONType, nullable=True)
    summary: Mapped[Optional[dict[str, Any]]]         = mapped_column(JSONType, nullable=True)
    risk_analysis: Mapped[Optional[dict[str, Any]]]   = mapped_column(JSONType, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Populated only when status is 'error' or 'partial'",
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    qa_entries: Mapped[list["QAEntryRow"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<DocumentRow id={self.id} status={self.status} file={self.original_name!r}>"


class QAEntryRow(Base):

    __tablename__ = "qa_entries"
    __table_args__ = (
        Index("idx_qa_entries_document", "document_id", "timestamp"),
    )

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str]  = mapped_column(String(64), nullable=False, unique=True)
    document_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    question: Mapped[str]            = mapped_column(Text, nullable=False)
    answer: Mapped[str]              = mapped_column(Text, nullable=False)
    language: Mapped[str]            = mapped_column(String(8), nullable=False)
    model: Mapped[str]               = mapped_column(String(100), nullable=False)
    relevant_sections: Mapped[bool]  = mapped_column(Boolean, nullable=False, default=False)
    batch_id: Mapped[Optional[str]]  = mapped_column(String(64), nullable=True)
    timestamp: Mapped[datetime]      = mapped_column(DateTime(timezone=True), nullable=False)

    document: Mapped[DocumentRow] = relationship(back_populates="qa_entries")
