"""Incremental push of transactions to a sheet tab, and pull of user edits.

Sheet layout (fixed, columns A..H)::

    A date | B description | C amount | D category | E subcategory |
    F confidence "NN%" | G status "Confirmed"/"Pending" | H fingerprint

Row 1 is a header. Each sync reads column A (to find the next free row) and
column H (to map fingerprints to rows) in a single call, then overwrites the
rows that already exist and appends the rest, in chunks.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .errors import BatchFailure, LedgerSyncError
from .fingerprint import parse_amount
from .logging_setup import get_logger
from .models import PullResult, SheetEdit, SheetRow, SyncResult
from .repository import SyncRepository
from .retry import RetryPolicy
from .sheets import Grid, TabularStore, a1

_logger = get_logger("ledger_sync.sync")

DEFAULT_CHUNK_SIZE: int = 200
N_COLUMNS: int = 8
CONFIRMED_LABEL = "Confirmed"
PENDING_LABEL = "Pending"
_CONFIRMED_WORDS = frozenset({"confirmed", "true", "yes", "y"})

_locks_guard = threading.Lock()
_destination_locks: dict[tuple[str, str], threading.Lock] = {}


def _destination_lock(destination_id: str, tab: str) -> threading.Lock:
    with _locks_guard:
        lock = _destination_locks.get((destination_id, tab))
        if lock is None:
            lock = threading.Lock()
            _destination_locks[(destination_id, tab)] = lock
        return lock


# ---------------------------------------------------------------------------
# Cell codecs
# ---------------------------------------------------------------------------


def status_label(user_confirmed: bool) -> str:
    return CONFIRMED_LABEL if user_confirmed else PENDING_LABEL


def format_confidence(confidence: float | None) -> str:
    """``0.855`` -> ``"86%"`` (half-up on the whole percent)."""

    pct = Decimal(str(confidence or 0)) * 100
    return f"{int(pct.quantize(Decimal(1), rounding=ROUND_HALF_UP))}%"


def parse_confidence(raw: Any) -> float | None:
    """Read a confidence cell back as a 0..1 fraction.

    Accepts ``"85%"``, ``"0.85"`` and ``85``; values above 1 are taken as
    percentages. Blank or unparseable cells yield ``None``.
    """

    if raw is None or isinstance(raw, bool):
        return None
    s = str(raw).strip()
    pct = s.endswith("%")
    if pct:
        s = s[:-1].strip()
    if not s:
        return None
    try:
        value = Decimal(s)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    if pct or value > 1:
        value = value / 100
    return float(min(max(value, Decimal(0)), Decimal(1)))


def parse_status(raw: Any) -> bool:
    """True when a status cell reads as confirmed (``Confirmed``, ``true``, ``yes``, ``y``)."""

    if isinstance(raw, bool):
        return raw
    return str(raw or "").strip().lower() in _CONFIRMED_WORDS


def encode_row(row: SheetRow) -> list[Any]:
    return [
        row.date,
        row.description,
        row.amount,
        row.category,
        row.subcategory or "",
        format_confidence(row.confidence),
        row.status,
        row.fingerprint,
    ]


def decode_row(cells: Sequence[Any]) -> SheetRow:
    """Decode one A..H row read from the sheet; short rows are padded."""

    padded = list(cells) + [""] * (N_COLUMNS - len(cells))
    amount = parse_amount(padded[2])
    return SheetRow(
        date=str(padded[0]).strip(),
        description=str(padded[1]),
        amount=float(amount) if amount is not None else 0.0,
        category=str(padded[3]).strip(),
        subcategory=str(padded[4]).strip(),
        confidence=parse_confidence(padded[5]) or 0.0,
        status=CONFIRMED_LABEL if parse_status(padded[6]) else PENDING_LABEL,
        fingerprint=str(padded[7]).strip(),
    )


# ---------------------------------------------------------------------------
# Index
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SheetIndex:
    """Where each fingerprint lives in a tab, and the first free row."""

    rows_by_fingerprint: dict[str, int] = field(default_factory=dict)
    next_row: int = 2

    def row_for(self, fp: str) -> int | None:
        return self.rows_by_fingerprint.get(fp)


def build_sheet_index(col_a: Grid, col_h: Grid) -> SheetIndex:
    """Build the index from column A (whole) and column H (from row 2).

    ``col_h[i]`` is sheet row ``i + 2``. ``next_row`` is one past the last
    row column A reports, so a sheet holding only a header gives 2.
    """

    index = SheetIndex(next_row=max(len(col_a) + 1, 2))
    for i, cells in enumerate(col_h):
        fp = str(cells[0]).strip() if cells else ""
        if fp:
            index.rows_by_fingerprint[fp] = i + 2
    return index


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class _Chunk:
    kind: str
    fingerprints: list[str]
    send: Callable[[], None]


class IncrementalSyncEngine:
    """Push rows to one store, touching only rows that changed."""

    def __init__(
        self,
        store: TabularStore,
        *,
        retry_policy: RetryPolicy | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be a positive integer")
        self._store = store
        self._retry = retry_policy or RetryPolicy()
        self._chunk_size = chunk_size

    def load_index(
        self,
        tab: str,
        *,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
    ) -> SheetIndex:
        col_a, col_h = self._retry.call(
            lambda: self._store.batch_get([a1(tab, "A:A"), a1(tab, "H2:H")]),
            label="sync:index",
            deadline=deadline,
            cancel_event=cancel_event,
        )
        return build_sheet_index(col_a, col_h)

    def sync_transactions_to_sheet(
        self,
        rows: Sequence[SheetRow],
        tab: str,
        *,
        cancel_event: threading.Event | None = None,
        deadline: float | None = None,
    ) -> SyncResult:
        """Update rows already in ``tab`` and append new ones.

        Rows sharing a fingerprint are collapsed (the last one wins). A failed
        or cancelled chunk puts its fingerprints in ``failed_fingerprints``;
        later chunks still run unless the sync was cancelled.
        """

        result = SyncResult()
        unique: dict[str, SheetRow] = {}
        for row in rows:
            if not row.fingerprint:
                result.transactions_skipped += 1
                continue
            if row.fingerprint in unique:
                result.transactions_skipped += 1
            unique[row.fingerprint] = row
        if not unique:
            return result

        with _destination_lock(self._store.destination_id, tab):
            try:
                index = self.load_index(tab, cancel_event=cancel_event, deadline=deadline)
            except Exception as e:
                _logger.error(
                    "sync:index_failed tab=%s rows=%d error=%s",
                    tab,
                    len(unique),
                    e,
                    exc_info=not isinstance(e, LedgerSyncError),
                )
                result.success = False
                result.errors.append(f"Failed to read sheet index: {e}")
                result.failed_fingerprints.extend(unique)
                return result

            chunks = self._plan(list(unique.values()), tab, index)
            _logger.info(
                "sync:start tab=%s rows=%d next_row=%d chunks=%d",
                tab,
                len(unique),
                index.next_row,
                len(chunks),
            )
            self._run(chunks, result, cancel_event=cancel_event, deadline=deadline)

        result.success = not result.failed_fingerprints
        _logger.info(
            "sync:done tab=%s updated=%d appended=%d skipped=%d failed=%d",
            tab,
            result.transactions_updated,
            result.transactions_appended,
            result.transactions_skipped,
            len(result.failed_fingerprints),
        )
        return result

    def _plan(self, rows: list[SheetRow], tab: str, index: SheetIndex) -> list[_Chunk]:
        updates: list[tuple[int, SheetRow]] = []
        appends: list[SheetRow] = []
        for row in rows:
            at = index.row_for(row.fingerprint)
            if at is None:
                appends.append(row)
            else:
                updates.append((at, row))

        size = self._chunk_size
        chunks: list[_Chunk] = []
        for base in range(0, len(updates), size):
            part = updates[base : base + size]
            data = [(a1(tab, f"A{n}:H{n}"), [encode_row(r)]) for n, r in part]
            chunks.append(
                _Chunk(
                    kind="update",
                    fingerprints=[r.fingerprint for _, r in part],
                    send=lambda data=data: self._store.batch_update(data),
                )
            )
        for base in range(0, len(appends), size):
            part = appends[base : base + size]
            grid = [encode_row(r) for r in part]
            chunks.append(
                _Chunk(
                    kind="append",
                    fingerprints=[r.fingerprint for r in part],
                    send=lambda grid=grid: self._store.append(a1(tab, "A1"), grid),
                )
            )
        return chunks

    def _run(
        self,
        chunks: list[_Chunk],
        result: SyncResult,
        *,
        cancel_event: threading.Event | None,
        deadline: float | None,
    ) -> None:
        for pos, chunk in enumerate(chunks):
            if self._stopped(cancel_event, deadline):
                remaining = chunks[pos:]
                n = sum(len(c.fingerprints) for c in remaining)
                _logger.warning("sync:cancelled remaining_chunks=%d rows=%d", len(remaining), n)
                result.errors.append(f"Sync cancelled; {n} transaction(s) not written")
                for c in remaining:
                    result.failed_fingerprints.extend(c.fingerprints)
                return
            try:
                self._retry.call(
                    chunk.send,
                    label=f"sync:{chunk.kind}",
                    deadline=deadline,
                    cancel_event=cancel_event,
                )
            except Exception as e:
                # Store implementations may leak transport errors; they fail the chunk too.
                bf = BatchFailure(chunk.kind, chunk.fingerprints, e)
                _logger.error(
                    "sync:chunk_failed kind=%s size=%d error=%s",
                    bf.kind,
                    len(bf.fingerprints),
                    bf.cause,
                    exc_info=not isinstance(e, LedgerSyncError),
                )
                result.errors.append(str(bf))
                result.failed_fingerprints.extend(bf.fingerprints)
                continue
            result.synced_fingerprints.extend(chunk.fingerprints)
            if chunk.kind == "update":
                result.transactions_updated += len(chunk.fingerprints)
            else:
                result.transactions_appended += len(chunk.fingerprints)

    def _stopped(self, cancel_event: threading.Event | None, deadline: float | None) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            return True
        return deadline is not None and self._retry.clock() >= deadline

    # ---- pull ---------------------------------------------------------------

    def read_sheet_rows(
        self, tab: str, *, cancel_event: threading.Event | None = None
    ) -> list[SheetRow]:
        """Read and decode every data row (A2:H) of ``tab``; blank rows are dropped."""

        (grid,) = self._retry.call(
            lambda: self._store.batch_get([a1(tab, "A2:H")]),
            label="sync:read_rows",
            cancel_event=cancel_event,
        )
        return [decode_row(cells) for cells in grid if any(str(c).strip() for c in cells)]

    def pull_sheet_edits(
        self, repository: SyncRepository, owner_id: str, tab: str
    ) -> PullResult:
        """Copy category, subcategory and status edits from ``tab`` into storage."""

        result = PullResult()
        known = {r.fingerprint: r.transaction_id for r in repository.list_sheet_rows(owner_id)}
        try:
            sheet_rows = self.read_sheet_rows(tab)
        except LedgerSyncError as e:
            _logger.error("sync:pull_failed tab=%s error=%s", tab, e)
            result.errors.append(f"Failed to read sheet: {e}")
            return result

        edits: list[SheetEdit] = []
        for row in sheet_rows:
            result.rows_processed += 1
            tx_id = known.get(row.fingerprint) if row.fingerprint else None
            if tx_id is None:
                result.rows_skipped += 1
                continue
            edits.append(
                SheetEdit(
                    transaction_id=tx_id,
                    fingerprint=row.fingerprint,
                    category=row.category or None,
                    subcategory=row.subcategory or None,
                    user_confirmed=row.status == CONFIRMED_LABEL,
                )
            )
        if edits:
            result.rows_updated = repository.apply_sheet_edits(edits)
        _logger.info(
            "sync:pull_done owner=%s tab=%s processed=%d updated=%d skipped=%d",
            owner_id,
            tab,
            result.rows_processed,
            result.rows_updated,
            result.rows_skipped,
        )
        return result


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "CONFIRMED_LABEL",
    "PENDING_LABEL",
    "status_label",
    "format_confidence",
    "parse_confidence",
    "parse_status",
    "encode_row",
    "decode_row",
    "SheetIndex",
    "build_sheet_index",
    "IncrementalSyncEngine",
]
