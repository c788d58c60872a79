"""Exact-fingerprint duplicate detection for uploads.

Public surface:
- ``PreparedTransaction``: an incoming transaction paired with its fingerprint.
- ``SimilarityResult``: how an upload overlaps with what the owner already has.
- ``DuplicateDetector.detect_similarity``: one repository read, then a dict
  lookup per incoming row.

Only exact fingerprint equality counts. Fuzzy comparison is reserved for the
match engine, which pairs records of different types.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .errors import ValidationGap
from .fingerprint import fingerprint as compute_fingerprint
from .logging_setup import get_logger
from .models import IncomingTransaction, StoredFingerprint
from .repository import TransactionRepository

_logger = get_logger("ledger_sync.duplicates")


@dataclass(frozen=True, slots=True)
class PreparedTransaction:
    """Incoming row with the identifiers used for lookups and persistence."""

    pos: int
    tx: IncomingTransaction
    fingerprint: str


@dataclass(frozen=True, slots=True)
class InvalidTransaction:
    pos: int
    tx: IncomingTransaction
    reason: str


@dataclass(slots=True)
class SimilarityResult:
    similarity_score: int
    new_transactions: list[PreparedTransaction] = field(default_factory=list)
    duplicate_transactions: list[PreparedTransaction] = field(default_factory=list)
    invalid_transactions: list[InvalidTransaction] = field(default_factory=list)
    matching_job_ids: list[str] = field(default_factory=list)
    existing_job_id: str | None = None

    @property
    def total(self) -> int:
        return len(self.new_transactions) + len(self.duplicate_transactions)

    @property
    def matching_count(self) -> int:
        return len(self.duplicate_transactions)


def prepare_transactions(
    transactions: Iterable[IncomingTransaction],
) -> tuple[list[PreparedTransaction], list[InvalidTransaction]]:
    """Fingerprint each row; rows that cannot be fingerprinted are set aside."""

    prepared: list[PreparedTransaction] = []
    invalid: list[InvalidTransaction] = []
    for pos, tx in enumerate(transactions):
        try:
            fp = compute_fingerprint(tx.original_description, tx.amount, tx.date)
        except ValidationGap as e:
            invalid.append(InvalidTransaction(pos=pos, tx=tx, reason=str(e)))
            continue
        prepared.append(PreparedTransaction(pos=pos, tx=tx, fingerprint=fp))
    if invalid:
        _logger.warning(
            "duplicates:validation_gaps count=%d first_pos=%d reason=%s",
            len(invalid),
            invalid[0].pos,
            invalid[0].reason,
        )
    return prepared, invalid


def _similarity_score(matching: int, total: int) -> int:
    if total <= 0:
        return 0
    # Round half up on the integer percentage.
    return (200 * matching + total) // (2 * total)


class DuplicateDetector:
    """Compare an upload against every fingerprint already stored for an owner."""

    def __init__(self, repository: TransactionRepository) -> None:
        self._repository = repository

    def detect_similarity(
        self, new_transactions: Sequence[IncomingTransaction], owner_id: str
    ) -> SimilarityResult:
        prepared, invalid = prepare_transactions(new_transactions)
        if not prepared:
            return SimilarityResult(similarity_score=0, invalid_transactions=invalid)

        existing = self._repository.find_by_fingerprints(owner_id)
        by_fp: dict[str, list[StoredFingerprint]] = defaultdict(list)
        for row in existing:
            if row.fingerprint:
                by_fp[row.fingerprint].append(row)

        result = SimilarityResult(similarity_score=0, invalid_transactions=invalid)
        job_counts: Counter[str] = Counter()
        for item in prepared:
            matches = by_fp.get(item.fingerprint)
            if matches:
                result.duplicate_transactions.append(item)
                job_counts.update(m.job_id for m in matches if m.job_id)
            else:
                result.new_transactions.append(item)

        result.similarity_score = _similarity_score(result.matching_count, result.total)
        result.matching_job_ids = sorted(job_counts)
        if job_counts:
            result.existing_job_id = job_counts.most_common(1)[0][0]

        _logger.info(
            "duplicates:detected owner=%s incoming=%d duplicates=%d new=%d score=%d",
            owner_id,
            result.total,
            result.matching_count,
            len(result.new_transactions),
            result.similarity_score,
        )
        return result


__all__ = [
    "PreparedTransaction",
    "InvalidTransaction",
    "SimilarityResult",
    "prepare_transactions",
    "DuplicateDetector",
]
