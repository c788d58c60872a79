"""Public API and orchestration for the ``ledger_sync`` package.

Each function wires one engine to its storage and settings. Callers that
already hold a repository (tests, other services) pass it in; otherwise a
:class:`~ledger_sync.persistence.SqlLedgerRepository` is built from
``settings.database_url``.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Sequence
from datetime import UTC, datetime

from .config import EngineSettings
from .logging_setup import get_logger
from .matching import ReconciliationService
from .merge import MergeOptions, MergeService
from .models import (
    AutoMatchResult,
    IncomingTransaction,
    MatchCandidate,
    MergeResult,
    PullResult,
    SyncResult,
)
from .persistence import SqlLedgerRepository
from .retry import RetryPolicy
from .sheets import TabularStore
from .sync import IncrementalSyncEngine

_logger = get_logger("ledger_sync.api")


def _settings(settings: EngineSettings | None) -> EngineSettings:
    return settings if settings is not None else EngineSettings.from_env()


def _repository(
    repository: SqlLedgerRepository | None, settings: EngineSettings
) -> SqlLedgerRepository:
    if repository is not None:
        return repository
    return SqlLedgerRepository(settings.database_url)


def _reconciliation(
    owner_id: str,
    settings: EngineSettings | None,
    repository: SqlLedgerRepository | None,
    limit: int | None = None,
) -> ReconciliationService:
    cfg = _settings(settings)
    return ReconciliationService(
        _repository(repository, cfg),
        owner_id,
        candidate_limit=limit or cfg.candidate_limit,
    )


def process_upload(
    transactions: Sequence[IncomingTransaction],
    owner_id: str,
    *,
    options: MergeOptions | None = None,
    settings: EngineSettings | None = None,
    repository: SqlLedgerRepository | None = None,
) -> MergeResult:
    """Store an upload for ``owner_id`` without duplicating existing rows."""

    cfg = _settings(settings)
    service = MergeService(
        _repository(repository, cfg), owner_id, batch_size=cfg.insert_batch_size
    )
    return service.process_upload(transactions, options or MergeOptions())


def suggest_matches(
    transaction_id: str,
    owner_id: str,
    *,
    limit: int | None = None,
    settings: EngineSettings | None = None,
    repository: SqlLedgerRepository | None = None,
) -> list[MatchCandidate]:
    """Rank unreconciled documents for one transaction."""

    service = _reconciliation(owner_id, settings, repository, limit)
    return service.candidates_for_transaction(transaction_id)


def suggest_transactions_for_document(
    document_id: str,
    owner_id: str,
    *,
    limit: int | None = None,
    settings: EngineSettings | None = None,
    repository: SqlLedgerRepository | None = None,
) -> list[MatchCandidate]:
    """Rank unreconciled transactions for one document."""

    service = _reconciliation(owner_id, settings, repository, limit)
    return service.candidates_for_document(document_id)


def run_auto_match(
    owner_id: str,
    *,
    settings: EngineSettings | None = None,
    repository: SqlLedgerRepository | None = None,
) -> AutoMatchResult:
    return _reconciliation(owner_id, settings, repository).auto_match()


def match(
    transaction_id: str,
    document_id: str,
    owner_id: str,
    *,
    settings: EngineSettings | None = None,
    repository: SqlLedgerRepository | None = None,
) -> None:
    _reconciliation(owner_id, settings, repository).match(transaction_id, document_id)


def unmatch(
    transaction_id: str,
    owner_id: str,
    *,
    settings: EngineSettings | None = None,
    repository: SqlLedgerRepository | None = None,
) -> str:
    """Revert a match; returns the id of the released document."""

    return _reconciliation(owner_id, settings, repository).unmatch(transaction_id)


def _engine(store: TabularStore, cfg: EngineSettings) -> IncrementalSyncEngine:
    return IncrementalSyncEngine(
        store,
        retry_policy=RetryPolicy.from_settings(cfg),
        chunk_size=cfg.sheet_chunk_size,
    )


def sync_owner_to_sheet(
    owner_id: str,
    store: TabularStore,
    tab: str,
    *,
    settings: EngineSettings | None = None,
    repository: SqlLedgerRepository | None = None,
    cancel_event: threading.Event | None = None,
    deadline: float | None = None,
) -> SyncResult:
    """Push every stored transaction of ``owner_id`` to ``tab`` and record the outcome.

    Transactions written successfully are marked ``synced``; those in failed
    chunks are marked ``failed`` with the sync's error text.
    """

    cfg = _settings(settings)
    repo = _repository(repository, cfg)
    rows = repo.list_sheet_rows(owner_id)
    result = _engine(store, cfg).sync_transactions_to_sheet(
        rows, tab, cancel_event=cancel_event, deadline=deadline
    )

    ids_by_fp: dict[str, list[str]] = defaultdict(list)
    for row in rows:
        if row.transaction_id is not None:
            ids_by_fp[row.fingerprint].append(row.transaction_id)
    synced = [i for fp in result.synced_fingerprints for i in ids_by_fp.get(fp, [])]
    failed = [i for fp in result.failed_fingerprints for i in ids_by_fp.get(fp, [])]

    repo.mark_synced(synced, datetime.now(UTC))
    if failed:
        repo.mark_sync_failed(failed, "; ".join(result.errors) or "sync failed")
    _logger.info(
        "api:sync_recorded owner=%s tab=%s synced=%d failed=%d",
        owner_id,
        tab,
        len(synced),
        len(failed),
    )
    return result


def pull_owner_sheet_edits(
    owner_id: str,
    store: TabularStore,
    tab: str,
    *,
    settings: EngineSettings | None = None,
    repository: SqlLedgerRepository | None = None,
) -> PullResult:
    """Apply category, subcategory and status edits made in ``tab`` to storage."""

    cfg = _settings(settings)
    repo = _repository(repository, cfg)
    return _engine(store, cfg).pull_sheet_edits(repo, owner_id, tab)


__all__ = [
    "process_upload",
    "suggest_matches",
    "suggest_transactions_for_document",
    "run_auto_match",
    "match",
    "unmatch",
    "sync_owner_to_sheet",
    "pull_owner_sheet_edits",
]
