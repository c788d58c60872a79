# ruff: noqa: I001
"""Ingestion jobs, transactions and documents.

Revision ID: 0001_ls_core
Revises: None
Create Date: 2026-10-17
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_ls_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "ls_ingestion_jobs",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(), nullable=False, server_default=sa.text("'spreadsheet'")),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'processing'")),
        sa.Column("original_filename", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_ls_ingestion_jobs_owner_id", "ls_ingestion_jobs", ["owner_id"])

    op.create_table(
        "ls_transactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.String(36), nullable=True),
        sa.Column("original_description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("subcategory", sa.String(), nullable=True),
        sa.Column("confidence_score", sa.Numeric(3, 2), nullable=True),
        sa.Column(
            "user_confirmed", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column("fingerprint", sa.CHAR(64), nullable=False),
        sa.Column("source_type", sa.String(), nullable=False, server_default=sa.text("'upload'")),
        sa.Column("source_identifier", sa.Text(), nullable=True),
        sa.Column(
            "reconciliation_status",
            sa.String(),
            nullable=False,
            server_default=sa.text("'unreconciled'"),
        ),
        sa.Column("matched_document_id", sa.String(36), nullable=True),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sync_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("sync_status", sa.String(), nullable=True),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.ForeignKeyConstraint(["job_id"], ["ls_ingestion_jobs.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "source_type in ('upload','external_sync','manual','api')",
            name="ck_ls_tx_source_type",
        ),
        sa.CheckConstraint(
            "reconciliation_status in ('unreconciled','matched')",
            name="ck_ls_tx_reconciliation_status",
        ),
        sa.CheckConstraint(
            "sync_status IS NULL OR sync_status in ('synced','failed')",
            name="ck_ls_tx_sync_status",
        ),
        sa.CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_ls_tx_confidence_score",
        ),
    )
    op.create_index("ix_ls_tx_owner_fingerprint", "ls_transactions", ["owner_id", "fingerprint"])
    op.create_index(
        "ix_ls_tx_owner_status", "ls_transactions", ["owner_id", "reconciliation_status"]
    )

    op.create_table(
        "ls_documents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("vendor_name", sa.Text(), nullable=True),
        sa.Column("original_filename", sa.Text(), nullable=True),
        sa.Column("file_type", sa.String(), nullable=False, server_default=sa.text("'receipt'")),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=True),
        sa.Column("document_date", sa.Date(), nullable=True),
        sa.Column(
            "reconciliation_status",
            sa.String(),
            nullable=False,
            server_default=sa.text("'unreconciled'"),
        ),
        sa.Column("matched_transaction_id", sa.String(36), nullable=True),
        sa.Column("reconciled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint(
            "reconciliation_status in ('unreconciled','matched')",
            name="ck_ls_doc_reconciliation_status",
        ),
        sa.CheckConstraint("file_type in ('receipt','invoice')", name="ck_ls_doc_file_type"),
    )
    op.create_index(
        "ix_ls_doc_owner_status", "ls_documents", ["owner_id", "reconciliation_status"]
    )


def downgrade() -> None:
    op.drop_index("ix_ls_doc_owner_status", table_name="ls_documents")
    op.drop_table("ls_documents")
    op.drop_index("ix_ls_tx_owner_status", table_name="ls_transactions")
    op.drop_index("ix_ls_tx_owner_fingerprint", table_name="ls_transactions")
    op.drop_table("ls_transactions")
    op.drop_index("ix_ls_ingestion_jobs_owner_id", table_name="ls_ingestion_jobs")
    op.drop_table("ls_ingestion_jobs")
