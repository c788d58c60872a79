from __future__ import annotations

import threading

import pytest

from ledger_sync.models import SheetRow
from ledger_sync.retry import RetryPolicy
from ledger_sync.sync import (
    IncrementalSyncEngine,
    build_sheet_index,
    decode_row,
    encode_row,
    format_confidence,
    parse_confidence,
    parse_status,
)
from tests.helpers.fake_sheets import FakeSheet, rate_limited, server_error

TAB = "Transactions"


def _row(i: int, **kw) -> SheetRow:
    values = {
        "date": "2025-03-01",
        "description": f"Row {i}",
        "amount": -10.0 - i,
        "category": "Food",
        "subcategory": "",
        "confidence": 0.9,
        "status": "Pending",
        "fingerprint": f"fp{i:04d}",
    }
    values.update(kw)
    return SheetRow(**values)


def _engine(store: FakeSheet, sleeps: list[float] | None = None, **kw) -> IncrementalSyncEngine:
    sink = sleeps if sleeps is not None else []
    policy = RetryPolicy(sleep=sink.append, max_jitter=0.0)
    return IncrementalSyncEngine(store, retry_policy=policy, **kw)


# ---- codecs ------------------------------------------------------------------


def test_encode_row_layout():
    row = _row(1, subcategory=None, confidence=0.855, status="Confirmed")
    assert encode_row(row) == [
        "2025-03-01",
        "Row 1",
        -11.0,
        "Food",
        "",
        "86%",
        "Confirmed",
        "fp0001",
    ]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("85%", 0.85), ("0.85", 0.85), (85, 0.85), ("100%", 1.0), ("", None), ("n/a", None)],
)
def test_parse_confidence(raw, expected):
    got = parse_confidence(raw)
    assert got == (pytest.approx(expected) if expected is not None else None)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("Confirmed", True), ("yes", True), (" Y ", True), ("TRUE", True), (True, True),
     ("Pending", False), ("", False), (None, False)],
)
def test_parse_status(raw, expected):
    assert parse_status(raw) is expected


def test_format_confidence_half_up():
    assert format_confidence(0.125) == "13%"
    assert format_confidence(None) == "0%"


def test_decode_row_pads_short_rows():
    row = decode_row(["2025-03-01", "Coffee", "-4.50", "Food"])
    assert row.amount == -4.5
    assert row.subcategory == ""
    assert row.status == "Pending"
    assert row.fingerprint == ""


def test_build_sheet_index():
    col_a = [["Date"], ["2025-03-01"], ["2025-03-02"], ["2025-03-03"]]
    col_h = [["fpA"], [], ["fpC"]]
    index = build_sheet_index(col_a, col_h)
    assert index.rows_by_fingerprint == {"fpA": 2, "fpC": 4}
    assert index.next_row == 5
    assert build_sheet_index([], []).next_row == 2


# ---- push --------------------------------------------------------------------


def test_first_sync_appends_everything_in_chunks_of_200():
    store = FakeSheet()
    rows = [_row(i) for i in range(250)]

    result = _engine(store).sync_transactions_to_sheet(rows, TAB)

    assert result.success
    appends = store.calls_of("append")
    assert [len(grid) for _, grid in appends] == [200, 50]
    assert all(rng == "'Transactions'!A1" for rng, _ in appends)
    assert store.calls_of("batch_update") == []
    assert store.calls_of("batch_get") == [["'Transactions'!A:A", "'Transactions'!H2:H"]]
    assert result.transactions_appended == 250
    assert len(store.rows()) == 250


def test_second_sync_updates_in_place_and_appends_new():
    store = FakeSheet()
    engine = _engine(store)
    engine.sync_transactions_to_sheet([_row(i) for i in range(3)], TAB)
    store.calls.clear()

    changed = [_row(0), _row(1, category="Travel"), _row(2), _row(3)]
    result = engine.sync_transactions_to_sheet(changed, TAB)

    assert result.success
    assert result.transactions_updated == 3
    assert result.transactions_appended == 1
    (update,) = store.calls_of("batch_update")
    assert [rng for rng, _ in update] == [
        "'Transactions'!A2:H2",
        "'Transactions'!A3:H3",
        "'Transactions'!A4:H4",
    ]
    assert store.rows()[1][3] == "Travel"
    assert [r[7] for r in store.rows()] == ["fp0000", "fp0001", "fp0002", "fp0003"]


def test_unchanged_sheet_is_rewritten_without_duplicates():
    store = FakeSheet()
    engine = _engine(store)
    rows = [_row(i) for i in range(5)]
    engine.sync_transactions_to_sheet(rows, TAB)
    engine.sync_transactions_to_sheet(rows, TAB)
    assert len(store.rows()) == 5


def test_duplicate_fingerprints_in_input_collapse_to_last():
    store = FakeSheet()
    rows = [_row(1, category="Old"), _row(2), _row(1, category="New"), _row(3, fingerprint="")]

    result = _engine(store).sync_transactions_to_sheet(rows, TAB)

    assert result.transactions_appended == 2
    assert result.transactions_skipped == 2
    assert [r[3] for r in store.rows()] == ["New", "Food"]


def test_empty_input_makes_no_remote_calls():
    store = FakeSheet()
    result = _engine(store).sync_transactions_to_sheet([], TAB)
    assert result.success
    assert store.calls == []


def test_quota_errors_are_retried_until_success():
    store = FakeSheet()
    store.fail_next("append", rate_limited(), rate_limited(), rate_limited())
    sleeps: list[float] = []

    result = _engine(store, sleeps).sync_transactions_to_sheet([_row(1)], TAB)

    assert result.success
    assert result.errors == []
    assert sleeps == [0.5, 1.0, 2.0]


def test_exhausted_retries_fail_only_that_chunk():
    store = FakeSheet()
    store.fail_next("append", *(rate_limited() for _ in range(4)))
    rows = [_row(i) for i in range(250)]

    result = _engine(store).sync_transactions_to_sheet(rows, TAB)

    assert not result.success
    assert len(result.failed_fingerprints) == 200
    assert len(result.synced_fingerprints) == 50
    assert result.transactions_appended == 50
    assert result.first_error is not None
    assert result.first_error.startswith("Failed to append 200 transaction(s)")


def test_non_quota_errors_are_not_retried():
    store = FakeSheet()
    engine = _engine(store)
    engine.sync_transactions_to_sheet([_row(1)], TAB)
    store.fail_next("batch_update", server_error())
    store.calls.clear()

    result = engine.sync_transactions_to_sheet([_row(1, category="X")], TAB)

    assert not result.success
    assert result.failed_fingerprints == ["fp0001"]
    assert len(store.calls_of("batch_update")) == 1


def test_index_read_failure_fails_every_row():
    store = FakeSheet()
    store.fail_next("batch_get", server_error())

    result = _engine(store).sync_transactions_to_sheet([_row(1), _row(2)], TAB)

    assert not result.success
    assert result.failed_fingerprints == ["fp0001", "fp0002"]
    assert store.calls_of("append") == []


def test_cancel_between_chunks_reports_remaining_as_failed():
    store = FakeSheet()
    cancel = threading.Event()
    original_append = store.append

    def append_then_cancel(range_, rows):
        original_append(range_, rows)
        cancel.set()

    store.append = append_then_cancel  # type: ignore[method-assign]
    rows = [_row(i) for i in range(5)]

    result = _engine(store, chunk_size=2).sync_transactions_to_sheet(
        rows, TAB, cancel_event=cancel
    )

    assert not result.success
    assert result.synced_fingerprints == ["fp0000", "fp0001"]
    assert result.failed_fingerprints == ["fp0002", "fp0003", "fp0004"]
    assert "cancelled" in result.errors[0]


def test_tab_names_are_quoted():
    store = FakeSheet(tab="Bob's Ledger")
    _engine(store).sync_transactions_to_sheet([_row(1)], "Bob's Ledger")
    (ranges,) = store.calls_of("batch_get")
    assert ranges[0] == "'Bob''s Ledger'!A:A"


# ---- pull --------------------------------------------------------------------


def test_read_sheet_rows_decodes_and_drops_blank_rows():
    store = FakeSheet()
    _engine(store).sync_transactions_to_sheet([_row(1), _row(2)], TAB)
    store.tabs[TAB].append(["", "", "", "", "", "", "", ""])

    rows = _engine(store).read_sheet_rows(TAB)

    assert [r.fingerprint for r in rows] == ["fp0001", "fp0002"]
    assert rows[0].confidence == pytest.approx(0.9)


def test_transport_error_fails_only_that_chunk():
    store = FakeSheet()
    store.fail_next("append", ConnectionError("connection reset by peer"))
    rows = [_row(i) for i in range(250)]

    result = _engine(store).sync_transactions_to_sheet(rows, TAB)

    assert not result.success
    assert len(result.failed_fingerprints) == 200
    assert result.transactions_appended == 50
    assert len(store.rows()) == 50
    assert "connection reset by peer" in result.errors[0]
    assert result.model_dump(mode="json")["first_error"] == result.errors[0]


def test_transport_error_on_index_read_fails_every_row():
    store = FakeSheet()
    store.fail_next("batch_get", TimeoutError("read timed out"))

    result = _engine(store).sync_transactions_to_sheet([_row(1)], TAB)

    assert not result.success
    assert result.failed_fingerprints == ["fp0001"]
    assert result.first_error is not None and "read timed out" in result.first_error
