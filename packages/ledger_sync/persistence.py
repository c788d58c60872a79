"""SQLAlchemy-backed storage for ``ledger_sync``.

``SqlLedgerRepository`` implements the three narrow protocols from
:mod:`ledger_sync.repository` on top of the shared ``db`` library
(``db.models.finance`` tables, ``db.client.session_scope`` sessions).

Scope:
- read stored fingerprints and write transaction batches;
- create ingestion jobs;
- list, link and unlink reconciliation parties;
- sync bookkeeping and sheet-edit write-back.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import session_scope
from db.models.finance import FinancialDocument, IngestionJob, LedgerTransaction

from .errors import JobCreationFailure, MatchConflict
from .logging_setup import get_logger
from .models import MatchParty, SheetEdit, SheetRow, StoredFingerprint
from .repository import InsertOutcome
from .sync import status_label

_logger = get_logger("ledger_sync.persistence")

_UNRECONCILED = "unreconciled"
_MATCHED = "matched"


def _to_confidence(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    return Decimal(str(raw)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _tx_party(row: LedgerTransaction) -> MatchParty:
    return MatchParty(
        id=row.id,
        kind="transaction",
        amount=row.amount,
        date=row.date,
        description=row.original_description or "",
        matched_id=row.matched_document_id,
    )


def _doc_party(row: FinancialDocument) -> MatchParty:
    return MatchParty(
        id=row.id,
        kind="document",
        amount=row.total_amount,
        date=row.document_date,
        description=row.vendor_name or row.original_filename or "",
        matched_id=row.matched_transaction_id,
    )


def _sheet_row(row: LedgerTransaction) -> SheetRow:
    return SheetRow(
        date=row.date.isoformat(),
        description=row.original_description,
        amount=float(row.amount),
        category=row.category or "",
        subcategory=row.subcategory or "",
        confidence=float(row.confidence_score) if row.confidence_score is not None else 0.0,
        status=status_label(bool(row.user_confirmed)),
        fingerprint=row.fingerprint,
        transaction_id=row.id,
    )


class SqlLedgerRepository:
    """Transaction, reconciliation and sync storage in one relational database."""

    def __init__(self, database_url: str | None = None) -> None:
        self._database_url = database_url

    def _session(self):
        return session_scope(database_url=self._database_url)

    # ---- TransactionRepository ---------------------------------------------

    def find_by_fingerprints(self, owner_id: str) -> list[StoredFingerprint]:
        stmt = select(
            LedgerTransaction.fingerprint, LedgerTransaction.job_id, LedgerTransaction.id
        ).where(LedgerTransaction.owner_id == owner_id)
        with self._session() as s:
            return [
                StoredFingerprint(fingerprint=fp, job_id=job_id, transaction_id=tx_id)
                for fp, job_id, tx_id in s.execute(stmt)
            ]

    def insert_batch(self, rows: Sequence[Mapping[str, Any]]) -> InsertOutcome:
        if not rows:
            return InsertOutcome(inserted_count=0)
        payload = []
        for row in rows:
            values = dict(row)
            values["confidence_score"] = _to_confidence(values.get("confidence_score"))
            payload.append(values)
        try:
            with self._session() as s:
                s.execute(insert(LedgerTransaction), payload)
        except SQLAlchemyError as e:
            _logger.error("persistence:insert_failed rows=%d error=%s", len(payload), e)
            return InsertOutcome(inserted_count=0, error=f"{e.__class__.__name__}: {e}")
        return InsertOutcome(inserted_count=len(payload))

    def create_job(self, meta: Mapping[str, Any]) -> str:
        job = IngestionJob(
            owner_id=meta["owner_id"],
            job_type=meta.get("job_type", "spreadsheet"),
            status=meta.get("status", "processing"),
            original_filename=meta.get("original_filename"),
        )
        try:
            with self._session() as s:
                s.add(job)
                s.flush()
                job_id = job.id
        except SQLAlchemyError as e:
            raise JobCreationFailure(f"could not create ingestion job: {e}") from e
        return job_id

    # ---- ReconciliationRepository ------------------------------------------

    def list_unreconciled_transactions(self, owner_id: str) -> list[MatchParty]:
        stmt = (
            select(LedgerTransaction)
            .where(
                LedgerTransaction.owner_id == owner_id,
                LedgerTransaction.reconciliation_status == _UNRECONCILED,
            )
            .order_by(LedgerTransaction.date.desc(), LedgerTransaction.id)
        )
        with self._session() as s:
            return [_tx_party(r) for r in s.scalars(stmt)]

    def list_unreconciled_documents(self, owner_id: str) -> list[MatchParty]:
        stmt = (
            select(FinancialDocument)
            .where(
                FinancialDocument.owner_id == owner_id,
                FinancialDocument.reconciliation_status == _UNRECONCILED,
            )
            .order_by(FinancialDocument.document_date.desc(), FinancialDocument.id)
        )
        with self._session() as s:
            return [_doc_party(r) for r in s.scalars(stmt)]

    def get_transaction(self, transaction_id: str, owner_id: str) -> MatchParty | None:
        with self._session() as s:
            row = s.get(LedgerTransaction, transaction_id)
            return _tx_party(row) if row is not None and row.owner_id == owner_id else None

    def get_document(self, document_id: str, owner_id: str) -> MatchParty | None:
        with self._session() as s:
            row = s.get(FinancialDocument, document_id)
            return _doc_party(row) if row is not None and row.owner_id == owner_id else None

    def link(self, transaction_id: str, document_id: str, owner_id: str) -> None:
        with self._session() as s:
            tx = self._locked(s, LedgerTransaction, transaction_id, owner_id)
            if tx is None:
                raise MatchConflict(f"Transaction {transaction_id} not found")
            doc = self._locked(s, FinancialDocument, document_id, owner_id)
            if doc is None:
                raise MatchConflict(f"Document {document_id} not found")
            if tx.reconciliation_status == _MATCHED:
                raise MatchConflict(f"Transaction {transaction_id} is already matched")
            if doc.reconciliation_status == _MATCHED:
                raise MatchConflict(f"Document {document_id} is already matched")

            now = datetime.now(UTC)
            tx.reconciliation_status = _MATCHED
            tx.matched_document_id = doc.id
            tx.reconciled_at = now
            tx.updated_at = now
            doc.reconciliation_status = _MATCHED
            doc.matched_transaction_id = tx.id
            doc.reconciled_at = now

    def unlink(self, transaction_id: str, owner_id: str) -> str:
        with self._session() as s:
            tx = self._locked(s, LedgerTransaction, transaction_id, owner_id)
            if tx is None:
                raise MatchConflict(f"Transaction {transaction_id} not found")
            if tx.reconciliation_status != _MATCHED or tx.matched_document_id is None:
                raise MatchConflict(f"Transaction {transaction_id} is not matched")

            document_id = tx.matched_document_id
            doc = s.get(FinancialDocument, document_id, with_for_update=True)
            tx.reconciliation_status = _UNRECONCILED
            tx.matched_document_id = None
            tx.reconciled_at = None
            tx.updated_at = datetime.now(UTC)
            if doc is not None:
                doc.reconciliation_status = _UNRECONCILED
                doc.matched_transaction_id = None
                doc.reconciled_at = None
            return document_id

    @staticmethod
    def _locked(
        s: Session,
        model: type[LedgerTransaction] | type[FinancialDocument],
        row_id: str,
        owner_id: str,
    ) -> Any:
        # Rows owned by someone else read as missing.
        return s.scalars(
            select(model)
            .where(model.id == row_id, model.owner_id == owner_id)
            .with_for_update()
        ).one_or_none()

    # ---- SyncRepository ----------------------------------------------------

    def list_sheet_rows(self, owner_id: str) -> list[SheetRow]:
        stmt = (
            select(LedgerTransaction)
            .where(LedgerTransaction.owner_id == owner_id)
            .order_by(LedgerTransaction.date, LedgerTransaction.created_at, LedgerTransaction.id)
        )
        with self._session() as s:
            return [_sheet_row(r) for r in s.scalars(stmt)]

    def mark_synced(self, transaction_ids: Sequence[str], at: datetime) -> None:
        if not transaction_ids:
            return
        with self._session() as s:
            s.execute(
                update(LedgerTransaction)
                .where(LedgerTransaction.id.in_(list(transaction_ids)))
                .values(sync_status="synced", last_synced_at=at, sync_error=None)
            )

    def mark_sync_failed(self, transaction_ids: Sequence[str], error: str) -> None:
        if not transaction_ids:
            return
        with self._session() as s:
            s.execute(
                update(LedgerTransaction)
                .where(LedgerTransaction.id.in_(list(transaction_ids)))
                .values(sync_status="failed", sync_error=error)
            )

    def apply_sheet_edits(self, edits: Sequence[SheetEdit]) -> int:
        changed = 0
        now = datetime.now(UTC)
        with self._session() as s:
            for edit in edits:
                tx = s.get(LedgerTransaction, edit.transaction_id)
                if tx is None or tx.fingerprint != edit.fingerprint:
                    continue
                if (
                    tx.category == edit.category
                    and tx.subcategory == edit.subcategory
                    and bool(tx.user_confirmed) == edit.user_confirmed
                ):
                    continue
                tx.category = edit.category
                tx.subcategory = edit.subcategory
                tx.user_confirmed = edit.user_confirmed
                tx.sync_version = (tx.sync_version or 1) + 1
                tx.updated_at = now
                changed += 1
        _logger.info("persistence:sheet_edits_applied edits=%d changed=%d", len(edits), changed)
        return changed


__all__ = ["SqlLedgerRepository"]
