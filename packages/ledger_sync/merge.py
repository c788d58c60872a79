"""Insert-or-merge decisions for uploaded transaction batches.

Policy
------
- ``skip_duplicate_check``: insert every valid row.
- otherwise run duplicate detection; any duplicate puts the upload in
  ``merge`` mode and only the non-duplicate rows are inserted. There is no
  similarity threshold below which everything is inserted anyway: a partial
  re-upload must never double-insert its overlapping rows.
- zero duplicates: ``insert`` mode.
- a job is created up front when none was supplied; if that fails the upload
  is rejected and nothing is written.

Rows are written in batches of ``batch_size``. A failed batch is counted and
the next batch still runs; the result reports partial success.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .duplicates import (
    DuplicateDetector,
    InvalidTransaction,
    PreparedTransaction,
    prepare_transactions,
)
from .errors import JobCreationFailure
from .fingerprint import parse_amount, parse_date
from .logging_setup import get_logger
from .models import SOURCE_TYPES, IncomingTransaction, MergeResult, SourceType
from .repository import TransactionRepository

_logger = get_logger("ledger_sync.merge")

_DEFAULT_CONFIDENCE: float = 0.5


@dataclass(frozen=True, slots=True)
class MergeOptions:
    source_type: SourceType = "upload"
    source_identifier: str | None = None
    job_id: str | None = None
    create_job: bool = True
    original_filename: str | None = None
    skip_duplicate_check: bool = False

    def __post_init__(self) -> None:
        if self.source_type not in SOURCE_TYPES:
            raise ValueError(
                f"Unsupported source_type: {self.source_type!r}. Allowed: {list(SOURCE_TYPES)}"
            )


@dataclass(frozen=True, slots=True)
class _InsertTotals:
    inserted: int
    errors: int
    first_error: str | None


class MergeService:
    """Write an owner's uploads without duplicating rows already stored."""

    def __init__(
        self,
        repository: TransactionRepository,
        owner_id: str,
        *,
        detector: DuplicateDetector | None = None,
        batch_size: int = 100,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        self._repository = repository
        self._owner_id = owner_id
        self._detector = detector or DuplicateDetector(repository)
        self._batch_size = batch_size

    def process_upload(
        self, transactions: Sequence[IncomingTransaction], options: MergeOptions
    ) -> MergeResult:
        if options.skip_duplicate_check:
            prepared, invalid = prepare_transactions(transactions)
            return self._insert_all(prepared, invalid, options)

        similarity = self._detector.detect_similarity(transactions, self._owner_id)
        invalid = similarity.invalid_transactions

        if similarity.matching_count == 0:
            return self._insert_all(similarity.new_transactions, invalid, options)

        if not similarity.new_transactions:
            _logger.info(
                "merge:all_duplicates owner=%s skipped=%d",
                self._owner_id,
                similarity.matching_count,
            )
            return MergeResult(
                mode="merge",
                skipped=similarity.matching_count,
                invalid=len(invalid),
                similarity_score=similarity.similarity_score,
                matched_job_id=similarity.existing_job_id,
                matched_job_ids=similarity.matching_job_ids,
                message=(
                    f"All {similarity.matching_count} transactions already exist. "
                    "No new data added."
                ),
            )

        job_id = self._resolve_job(options)
        if job_id is None:
            return self._reject(len(invalid))

        totals = self._insert(similarity.new_transactions, job_id, options)
        return MergeResult(
            mode="merge",
            inserted=totals.inserted,
            skipped=similarity.matching_count,
            errors=totals.errors,
            invalid=len(invalid),
            similarity_score=similarity.similarity_score,
            job_id=job_id,
            matched_job_id=similarity.existing_job_id,
            matched_job_ids=similarity.matching_job_ids,
            message=_summary(
                f"Merged: {totals.inserted} new, {similarity.matching_count} skipped (duplicates)",
                totals,
            ),
            first_error=totals.first_error,
        )

    # ---- internals ----------------------------------------------------------

    def _insert_all(
        self,
        prepared: list[PreparedTransaction],
        invalid: list[InvalidTransaction],
        options: MergeOptions,
    ) -> MergeResult:
        job_id = self._resolve_job(options)
        if job_id is None:
            return self._reject(len(invalid))

        totals = self._insert(prepared, job_id, options)
        return MergeResult(
            mode="insert",
            inserted=totals.inserted,
            errors=totals.errors,
            invalid=len(invalid),
            job_id=job_id,
            message=_summary(f"Inserted {totals.inserted} transaction(s)", totals),
            first_error=totals.first_error,
        )

    def _resolve_job(self, options: MergeOptions) -> str | None:
        if options.job_id:
            return options.job_id
        if not options.create_job:
            _logger.error("merge:no_job owner=%s create_job=False", self._owner_id)
            return None
        try:
            job_id = self._repository.create_job(
                {
                    "owner_id": self._owner_id,
                    "job_type": "spreadsheet",
                    "status": "processing",
                    "original_filename": options.original_filename or "Merged upload",
                }
            )
        except JobCreationFailure as e:
            _logger.error("merge:job_creation_failed owner=%s error=%s", self._owner_id, e)
            return None
        _logger.info("merge:job_created owner=%s job_id=%s", self._owner_id, job_id)
        return job_id

    def _reject(self, invalid: int) -> MergeResult:
        return MergeResult(
            mode="reject",
            invalid=invalid,
            message="Failed to create ingestion job",
        )

    def _insert(
        self, items: Sequence[PreparedTransaction], job_id: str, options: MergeOptions
    ) -> _InsertTotals:
        rows = [self._to_row(item, job_id, options) for item in items]
        inserted = 0
        errors = 0
        first_error: str | None = None
        n_batches = (len(rows) + self._batch_size - 1) // self._batch_size
        for batch_no, base in enumerate(range(0, len(rows), self._batch_size), start=1):
            batch = rows[base : base + self._batch_size]
            outcome = self._repository.insert_batch(batch)
            if outcome.error is not None:
                errors += len(batch)
                first_error = first_error or outcome.error
                _logger.error(
                    "merge:batch_failed job_id=%s batch=%d/%d size=%d error=%s",
                    job_id,
                    batch_no,
                    n_batches,
                    len(batch),
                    outcome.error,
                )
                continue
            inserted += outcome.inserted_count
        _logger.info(
            "merge:insert_done job_id=%s inserted=%d errors=%d batches=%d",
            job_id,
            inserted,
            errors,
            n_batches,
        )
        return _InsertTotals(inserted=inserted, errors=errors, first_error=first_error)

    def _to_row(
        self, item: PreparedTransaction, job_id: str, options: MergeOptions
    ) -> Mapping[str, Any]:
        tx = item.tx
        confidence = tx.confidence_score if tx.confidence_score is not None else _DEFAULT_CONFIDENCE
        return {
            "owner_id": self._owner_id,
            "job_id": job_id,
            "original_description": tx.original_description,
            # Validated by fingerprinting: neither can be None here.
            "amount": parse_amount(tx.amount),
            "date": parse_date(tx.date),
            "category": tx.category,
            "subcategory": tx.subcategory,
            "confidence_score": confidence,
            "user_confirmed": False,
            "fingerprint": item.fingerprint,
            "source_type": options.source_type,
            "source_identifier": tx.source_identifier or options.source_identifier,
            "sync_version": 1,
        }


def _summary(base: str, totals: _InsertTotals) -> str:
    if totals.errors:
        return f"{base}; {totals.errors} failed: {totals.first_error}"
    return base


__all__ = ["MergeOptions", "MergeService"]
