from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------
# Reference: ls_ingestion_jobs
# ---------------------------


class IngestionJob(Base):
    __tablename__ = "ls_ingestion_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    job_type: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'spreadsheet'")
    )
    status: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'processing'"))
    # A job with zero transactions is a valid terminal state: creation and the
    # subsequent inserts are not wrapped in one database transaction.
    original_filename: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# Core: ls_transactions
# ---------------------------


class LedgerTransaction(Base):
    __tablename__ = "ls_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String, nullable=False)
    job_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("ls_ingestion_jobs.id", ondelete="SET NULL"), nullable=True
    )
    original_description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    # Set by the categorization collaborator; never decided here.
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    subcategory: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence_score: Mapped[Decimal | None] = mapped_column(Numeric(3, 2), nullable=True)
    user_confirmed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    # sha256(lower(trim(description)) | amount(2dp) | YYYY-MM-DD); see
    # ``ledger_sync.fingerprint``. Not unique: a skip-duplicate-check upload
    # may legitimately store the same triple twice.
    fingerprint: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    source_type: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'upload'"))
    source_identifier: Mapped[str | None] = mapped_column(Text, nullable=True)
    reconciliation_status: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'unreconciled'")
    )
    matched_document_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reconciled_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_version: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    sync_status: Mapped[str | None] = mapped_column(String, nullable=True)
    sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_ls_tx_owner_fingerprint", "owner_id", "fingerprint"),
        Index("ix_ls_tx_owner_status", "owner_id", "reconciliation_status"),
        CheckConstraint(
            "source_type in ('upload','external_sync','manual','api')",
            name="ck_ls_tx_source_type",
        ),
        CheckConstraint(
            "reconciliation_status in ('unreconciled','matched')",
            name="ck_ls_tx_reconciliation_status",
        ),
        CheckConstraint(
            "sync_status IS NULL OR sync_status in ('synced','failed')",
            name="ck_ls_tx_sync_status",
        ),
        CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_ls_tx_confidence_score",
        ),
    )


# ---------------------------
# Core: ls_documents
# ---------------------------


class FinancialDocument(Base):
    __tablename__ = "ls_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String, nullable=False)
    vendor_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_filename: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_type: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'receipt'"))
    # Unsigned totals; transaction amounts are compared by magnitude.
    total_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    document_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)
    reconciliation_status: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'unreconciled'")
    )
    matched_transaction_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    reconciled_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_ls_doc_owner_status", "owner_id", "reconciliation_status"),
        CheckConstraint(
            "reconciliation_status in ('unreconciled','matched')",
            name="ck_ls_doc_reconciliation_status",
        ),
        CheckConstraint(
            "file_type in ('receipt','invoice')",
            name="ck_ls_doc_file_type",
        ),
    )


__all__ = [
    "Base",
    "IngestionJob",
    "LedgerTransaction",
    "FinancialDocument",
]
