from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from db.client import session_scope
from db.models.finance import FinancialDocument, IngestionJob, LedgerTransaction
from ledger_sync import api
from ledger_sync.config import EngineSettings
from ledger_sync.errors import JobCreationFailure, MatchConflict
from ledger_sync.merge import MergeOptions
from ledger_sync.models import IncomingTransaction
from ledger_sync.persistence import SqlLedgerRepository
from tests.helpers.db import seed_document, seed_job, seed_transaction
from tests.helpers.fake_sheets import FakeSheet, rate_limited

OWNER = "owner-1"


def _settings(db_url: str, **kw) -> EngineSettings:
    return EngineSettings(database_url=db_url, retry_base_delay_ms=0, retry_max_jitter_ms=0, **kw)


def _incoming(*rows: tuple[str, str, str]) -> list[IncomingTransaction]:
    return [
        IncomingTransaction(original_description=d, amount=a, date=w, category="Food")
        for d, a, w in rows
    ]


def _transactions(db_url: str) -> list[LedgerTransaction]:
    with session_scope(database_url=db_url) as s:
        return list(s.scalars(select(LedgerTransaction).order_by(LedgerTransaction.date)))


# ---- upload ------------------------------------------------------------------


def test_upload_then_partial_reupload(db_url: str):
    cfg = _settings(db_url)
    first = api.process_upload(
        _incoming(("F1", "-10.00", "2025-03-01"), ("F2", "-20.00", "2025-03-02")),
        OWNER,
        options=MergeOptions(original_filename="march.csv"),
        settings=cfg,
    )
    second = api.process_upload(
        _incoming(("F1", "-10.00", "2025-03-01"), ("F3", "-30.00", "2025-03-03")),
        OWNER,
        settings=cfg,
    )

    assert first.mode == "insert" and first.inserted == 2
    assert second.mode == "merge"
    assert (second.inserted, second.skipped) == (1, 1)
    assert second.matched_job_id == first.job_id

    stored = _transactions(db_url)
    assert [t.original_description for t in stored] == ["F1", "F2", "F3"]
    assert stored[0].amount == Decimal("-10.00")
    assert stored[0].confidence_score == Decimal("0.50")
    assert stored[0].reconciliation_status == "unreconciled"
    assert stored[0].sync_version == 1
    with session_scope(database_url=db_url) as s:
        jobs = list(s.scalars(select(IngestionJob)))
    assert len(jobs) == 2
    assert {j.original_filename for j in jobs} == {"march.csv", "Merged upload"}


def test_insert_batch_reports_database_errors(db_url: str):
    repo = SqlLedgerRepository(db_url)
    outcome = repo.insert_batch(
        [
            {
                "owner_id": OWNER,
                "original_description": "bad source",
                "amount": Decimal("1.00"),
                "date": date(2025, 3, 1),
                "fingerprint": "0" * 64,
                "source_type": "carrier-pigeon",
            }
        ]
    )
    assert outcome.inserted_count == 0
    assert outcome.error is not None and "IntegrityError" in outcome.error


def test_create_job_wraps_database_errors(db_url: str):
    repo = SqlLedgerRepository(db_url)
    with pytest.raises(JobCreationFailure):
        repo.create_job({"owner_id": None})


# ---- reconciliation ------------------------------------------------------------


def test_candidates_auto_match_and_unmatch(db_url: str):
    cfg = _settings(db_url)
    tx_id = seed_transaction(
        db_url, OWNER, description="TESCO STORES 3297", amount="-45.30", when=date(2025, 3, 10)
    )
    tesco = seed_document(db_url, OWNER, vendor="Tesco", total="45.30", when=date(2025, 3, 9))
    seed_document(db_url, OWNER, vendor="Boots", total="12.00", when=date(2025, 3, 9))
    seed_document(db_url, "owner-2", vendor="Tesco", total="45.30", when=date(2025, 3, 9))

    ranked = api.suggest_matches(tx_id, OWNER, settings=cfg)
    assert ranked[0].other_party_id == tesco
    assert ranked[0].confidence == "high"
    assert len(ranked) == 2

    from_doc = api.suggest_transactions_for_document(tesco, OWNER, settings=cfg)
    assert [c.other_party_id for c in from_doc] == [tx_id]

    result = api.run_auto_match(OWNER, settings=cfg)
    assert result.matched_count == 1

    with session_scope(database_url=db_url) as s:
        tx = s.get(LedgerTransaction, tx_id)
        doc = s.get(FinancialDocument, tesco)
        assert tx.reconciliation_status == "matched"
        assert tx.matched_document_id == tesco
        assert tx.reconciled_at is not None
        assert doc.reconciliation_status == "matched"
        assert doc.matched_transaction_id == tx_id

    assert api.unmatch(tx_id, OWNER, settings=cfg) == tesco
    with session_scope(database_url=db_url) as s:
        tx = s.get(LedgerTransaction, tx_id)
        doc = s.get(FinancialDocument, tesco)
        assert (tx.reconciliation_status, tx.matched_document_id) == ("unreconciled", None)
        assert (doc.reconciliation_status, doc.matched_transaction_id) == ("unreconciled", None)


def test_link_preconditions(db_url: str):
    repo = SqlLedgerRepository(db_url)
    tx_id = seed_transaction(db_url, OWNER, description="Cafe", amount="-5", when=date(2025, 3, 1))
    other_tx = seed_transaction(db_url, OWNER, description="Bar", amount="-6", when=date(2025, 3, 1))
    doc = seed_document(db_url, OWNER, vendor="Cafe", total="5", when=date(2025, 3, 1))
    foreign = seed_document(db_url, "owner-2", vendor="Cafe", total="5", when=date(2025, 3, 1))

    with pytest.raises(MatchConflict, match=f"Document {foreign} not found"):
        repo.link(tx_id, foreign, OWNER)
    with pytest.raises(MatchConflict, match="not found"):
        repo.link(tx_id, "missing", OWNER)
    with pytest.raises(MatchConflict, match="not matched"):
        repo.unlink(tx_id, OWNER)

    repo.link(tx_id, doc, OWNER)
    with pytest.raises(MatchConflict, match="already matched"):
        repo.link(other_tx, doc, OWNER)
    assert repo.get_document(doc, OWNER).matched_id == tx_id
    assert repo.get_document(doc, "owner-2") is None


def test_other_owner_cannot_read_or_change_matches(db_url: str):
    cfg = _settings(db_url)
    tx_id = seed_transaction(db_url, OWNER, description="Cafe", amount="-5", when=date(2025, 3, 1))
    doc_id = seed_document(db_url, OWNER, vendor="Cafe", total="5", when=date(2025, 3, 1))

    with pytest.raises(MatchConflict, match="not found"):
        api.suggest_matches(tx_id, "owner-2", settings=cfg)
    with pytest.raises(MatchConflict, match="not found"):
        api.suggest_transactions_for_document(doc_id, "owner-2", settings=cfg)
    with pytest.raises(MatchConflict, match="not found"):
        api.match(tx_id, doc_id, "owner-2", settings=cfg)
    with session_scope(database_url=db_url) as s:
        assert s.get(LedgerTransaction, tx_id).reconciliation_status == "unreconciled"

    api.match(tx_id, doc_id, OWNER, settings=cfg)
    with pytest.raises(MatchConflict, match="not found"):
        api.unmatch(tx_id, "owner-2", settings=cfg)
    with session_scope(database_url=db_url) as s:
        assert s.get(LedgerTransaction, tx_id).matched_document_id == doc_id
        assert s.get(FinancialDocument, doc_id).reconciliation_status == "matched"


def test_tesco_statement_line_is_auto_matched_to_its_receipt(db_url: str):
    cfg = _settings(db_url)
    tx_id = seed_transaction(
        db_url,
        OWNER,
        description="TESCO STORES 1234 - LONDON",
        amount="-45.30",
        when=date(2025, 3, 10),
    )
    doc_id = seed_document(db_url, OWNER, vendor="Tesco", total="45.30", when=date(2025, 3, 11))

    result = api.run_auto_match(OWNER, settings=cfg)

    assert result.matched_count == 1
    (pair,) = result.matches
    assert (pair.transaction_id, pair.document_id) == (tx_id, doc_id)
    assert pair.score == pytest.approx(99.4)
    with session_scope(database_url=db_url) as s:
        assert s.get(LedgerTransaction, tx_id).matched_document_id == doc_id
        assert s.get(FinancialDocument, doc_id).matched_transaction_id == tx_id


# ---- sheet sync ----------------------------------------------------------------


def test_sync_marks_rows_and_is_incremental(db_url: str):
    cfg = _settings(db_url)
    job = seed_job(db_url, OWNER)
    ids = [
        seed_transaction(
            db_url,
            OWNER,
            description=f"Row {i}",
            amount=f"-{i + 1}.00",
            when=date(2025, 3, i + 1),
            job_id=job,
            confidence_score=Decimal("0.85"),
        )
        for i in range(3)
    ]
    store = FakeSheet()

    first = api.sync_owner_to_sheet(OWNER, store, "Transactions", settings=cfg)
    second = api.sync_owner_to_sheet(OWNER, store, "Transactions", settings=cfg)

    assert first.transactions_appended == 3
    assert second.transactions_updated == 3
    assert second.transactions_appended == 0
    assert len(store.rows()) == 3
    assert store.rows()[0][5] == "85%"
    assert store.rows()[0][6] == "Pending"
    for tx in _transactions(db_url):
        assert tx.sync_status == "synced"
        assert tx.last_synced_at is not None
        assert tx.id in ids


def test_sync_failure_is_recorded_per_transaction(db_url: str):
    cfg = _settings(db_url)
    seed_transaction(db_url, OWNER, description="A", amount="-1", when=date(2025, 3, 1))
    store = FakeSheet()
    store.fail_next("append", *(rate_limited() for _ in range(4)))

    result = api.sync_owner_to_sheet(OWNER, store, "Transactions", settings=cfg)

    assert not result.success
    (tx,) = _transactions(db_url)
    assert tx.sync_status == "failed"
    assert tx.sync_error is not None and "Failed to append 1 transaction(s)" in tx.sync_error


def test_pull_sheet_edits_updates_changed_rows(db_url: str):
    cfg = _settings(db_url)
    keep = seed_transaction(db_url, OWNER, description="A", amount="-1", when=date(2025, 3, 1))
    edit = seed_transaction(
        db_url, OWNER, description="B", amount="-2", when=date(2025, 3, 2), category="Food"
    )
    store = FakeSheet()
    api.sync_owner_to_sheet(OWNER, store, "Transactions", settings=cfg)

    rows = store.rows()
    rows[1][3] = "Groceries"
    rows[1][4] = "Supermarket"
    rows[1][6] = "Confirmed"
    rows.append(["2025-04-01", "Typed by hand", "-3", "", "", "", "", "not-a-known-fp"])
    store.tabs["Transactions"] = [store.tabs["Transactions"][0], *rows]

    result = api.pull_owner_sheet_edits(OWNER, store, "Transactions", settings=cfg)

    assert (result.rows_processed, result.rows_updated, result.rows_skipped) == (3, 1, 1)
    with session_scope(database_url=db_url) as s:
        changed = s.get(LedgerTransaction, edit)
        untouched = s.get(LedgerTransaction, keep)
        assert (changed.category, changed.subcategory) == ("Groceries", "Supermarket")
        assert changed.user_confirmed is True
        assert changed.sync_version == 2
        assert untouched.sync_version == 1
