"""Dict-backed repositories for engine tests that do not need a database."""

from __future__ import annotations

import itertools
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

from ledger_sync.errors import JobCreationFailure, MatchConflict
from ledger_sync.models import MatchParty, StoredFingerprint
from ledger_sync.repository import InsertOutcome


class InMemoryTransactions:
    """``TransactionRepository`` keeping rows in a list.

    ``fail_batches`` holds 1-based batch numbers whose insert reports an error;
    ``fail_job_creation`` makes ``create_job`` raise.
    """

    def __init__(self) -> None:
        self.rows: list[dict[str, Any]] = []
        self.jobs: list[dict[str, Any]] = []
        self.batches: list[int] = []
        self.fingerprint_reads = 0
        self.fail_batches: set[int] = set()
        self.fail_job_creation = False
        self._ids = itertools.count(1)

    def seed(self, owner_id: str, fp: str, job_id: str | None) -> None:
        self.rows.append(
            {
                "id": f"seed-{next(self._ids)}",
                "owner_id": owner_id,
                "fingerprint": fp,
                "job_id": job_id,
            }
        )

    def find_by_fingerprints(self, owner_id: str) -> list[StoredFingerprint]:
        self.fingerprint_reads += 1
        return [
            StoredFingerprint(
                fingerprint=r["fingerprint"], job_id=r["job_id"], transaction_id=r["id"]
            )
            for r in self.rows
            if r["owner_id"] == owner_id
        ]

    def insert_batch(self, rows: Sequence[Mapping[str, Any]]) -> InsertOutcome:
        self.batches.append(len(rows))
        if len(self.batches) in self.fail_batches:
            return InsertOutcome(inserted_count=0, error="IntegrityError: simulated")
        for row in rows:
            self.rows.append({"id": f"tx-{next(self._ids)}", **row})
        return InsertOutcome(inserted_count=len(rows))

    def create_job(self, meta: Mapping[str, Any]) -> str:
        if self.fail_job_creation:
            raise JobCreationFailure("database unavailable")
        job_id = f"job-{len(self.jobs) + 1}"
        self.jobs.append({"id": job_id, **meta})
        return job_id


class InMemoryReconciliation:
    """``ReconciliationRepository`` over two dicts of ``MatchParty`` records."""

    def __init__(
        self,
        transactions: Sequence[MatchParty] = (),
        documents: Sequence[MatchParty] = (),
        *,
        owners: Mapping[str, str] | None = None,
    ) -> None:
        self.transactions = {t.id: t for t in transactions}
        self.documents = {d.id: d for d in documents}
        self.owners = dict(owners or {})
        self.links: list[tuple[str, str]] = []

    def _owner(self, party_id: str) -> str:
        return self.owners.get(party_id, "owner-1")

    def list_unreconciled_transactions(self, owner_id: str) -> list[MatchParty]:
        rows = [
            t
            for t in self.transactions.values()
            if t.matched_id is None and self._owner(t.id) == owner_id
        ]
        return sorted(rows, key=lambda t: t.date.toordinal() if t.date else 0, reverse=True)

    def list_unreconciled_documents(self, owner_id: str) -> list[MatchParty]:
        return [
            d
            for d in self.documents.values()
            if d.matched_id is None and self._owner(d.id) == owner_id
        ]

    def _owned(self, table: Mapping[str, MatchParty], party_id: str, owner_id: str):
        party = table.get(party_id)
        return party if party is not None and self._owner(party_id) == owner_id else None

    def get_transaction(self, transaction_id: str, owner_id: str) -> MatchParty | None:
        return self._owned(self.transactions, transaction_id, owner_id)

    def get_document(self, document_id: str, owner_id: str) -> MatchParty | None:
        return self._owned(self.documents, document_id, owner_id)

    def link(self, transaction_id: str, document_id: str, owner_id: str) -> None:
        tx = self._owned(self.transactions, transaction_id, owner_id)
        doc = self._owned(self.documents, document_id, owner_id)
        if tx is None or doc is None:
            raise MatchConflict("not found")
        if tx.matched_id is not None or doc.matched_id is not None:
            raise MatchConflict("already matched")
        self.transactions[tx.id] = replace(tx, matched_id=doc.id)
        self.documents[doc.id] = replace(doc, matched_id=tx.id)
        self.links.append((tx.id, doc.id))

    def unlink(self, transaction_id: str, owner_id: str) -> str:
        tx = self._owned(self.transactions, transaction_id, owner_id)
        if tx is None:
            raise MatchConflict("not found")
        if tx.matched_id is None:
            raise MatchConflict("not matched")
        doc_id = tx.matched_id
        self.transactions[tx.id] = replace(tx, matched_id=None)
        self.documents[doc_id] = replace(self.documents[doc_id], matched_id=None)
        return doc_id
