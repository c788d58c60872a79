"""Narrow storage interfaces consumed by the engines.

The engines never see a database handle. Each concern gets the handful of
operations it needs, so any backend (relational, document, key-value) can
serve them. :mod:`ledger_sync.persistence` implements all three protocols on
top of SQLAlchemy.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from .models import MatchParty, SheetEdit, SheetRow, StoredFingerprint


@dataclass(frozen=True, slots=True)
class InsertOutcome:
    """Result of writing one batch of transaction rows."""

    inserted_count: int
    error: str | None = None


class TransactionRepository(Protocol):
    """Storage used by duplicate detection and the merge service."""

    def find_by_fingerprints(self, owner_id: str) -> list[StoredFingerprint]:
        """Return every stored fingerprint for ``owner_id`` (no row limit)."""
        ...

    def insert_batch(self, rows: Sequence[Mapping[str, Any]]) -> InsertOutcome:
        """Insert ``rows``; report failure in the outcome instead of raising."""
        ...

    def create_job(self, meta: Mapping[str, Any]) -> str:
        """Create an ingestion job and return its id.

        Raises :class:`~ledger_sync.errors.JobCreationFailure` on failure.
        """
        ...


class ReconciliationRepository(Protocol):
    """Storage used by the match engine and reconciliation service."""

    def list_unreconciled_transactions(self, owner_id: str) -> list[MatchParty]: ...

    def list_unreconciled_documents(self, owner_id: str) -> list[MatchParty]: ...

    def get_transaction(self, transaction_id: str, owner_id: str) -> MatchParty | None:
        """Return the transaction when it exists and belongs to ``owner_id``."""
        ...

    def get_document(self, document_id: str, owner_id: str) -> MatchParty | None: ...

    def link(self, transaction_id: str, document_id: str, owner_id: str) -> None:
        """Atomically mark both sides ``matched`` with cross references.

        Raises :class:`~ledger_sync.errors.MatchConflict` when either side is
        missing, not owned by ``owner_id``, or already matched.
        """
        ...

    def unlink(self, transaction_id: str, owner_id: str) -> str:
        """Revert a match on both sides; returns the released document id."""
        ...


class SyncRepository(Protocol):
    """Storage used around sheet synchronization."""

    def list_sheet_rows(self, owner_id: str) -> list[SheetRow]: ...

    def mark_synced(self, transaction_ids: Sequence[str], at: datetime) -> None: ...

    def mark_sync_failed(self, transaction_ids: Sequence[str], error: str) -> None: ...

    def apply_sheet_edits(self, edits: Sequence[SheetEdit]) -> int:
        """Apply edits that differ from stored values; return how many changed."""
        ...


__all__ = [
    "InsertOutcome",
    "TransactionRepository",
    "ReconciliationRepository",
    "SyncRepository",
]
