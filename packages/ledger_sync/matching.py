"""Confidence-scored matching between transactions and documents.

Scoring for an ``item`` against a ``candidate`` of the opposite type:

- ``amount_diff = | |item.amount| - |candidate.amount| |`` (magnitudes, since
  transactions are signed and document totals are not);
- ``days_diff`` in whole days, ``999`` when either date is missing;
- candidates with ``amount_diff >= 100`` or ``days_diff > 60`` are dropped
  before any scoring;
- ``total = 0.5*amount_score + 0.3*date_score + 0.2*description_score``.

Tiers: ``high`` needs ``amount_diff < 0.01``, ``days_diff <= 7`` and
``total >= 80``; ``medium`` needs ``amount_diff < 1.00``, ``days_diff <= 30``
and ``total >= 60``; everything else is ``low``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from decimal import Decimal

from .logging_setup import get_logger
from .models import AutoMatchResult, Confidence, MatchCandidate, MatchedPair, MatchParty
from .errors import MatchConflict
from .repository import ReconciliationRepository

_logger = get_logger("ledger_sync.matching")

MISSING_DATE_DAYS: int = 999
MAX_AMOUNT_DIFF: Decimal = Decimal("100")
MAX_DAYS_DIFF: int = 60
DEFAULT_CANDIDATE_LIMIT: int = 5

_HIGH_AMOUNT = Decimal("0.01")
_HIGH_DAYS = 7
_HIGH_SCORE = 80.0
_MEDIUM_AMOUNT = Decimal("1.00")
_MEDIUM_DAYS = 30
_MEDIUM_SCORE = 60.0

_WS = re.compile(r"\s+")


def amount_difference(a: Decimal | None, b: Decimal | None) -> Decimal:
    return abs(abs(a or Decimal(0)) - abs(b or Decimal(0)))


def days_difference(item: MatchParty, candidate: MatchParty) -> int:
    if item.date is None or candidate.date is None:
        return MISSING_DATE_DAYS
    return abs((item.date - candidate.date).days)


def description_score(a: str | None, b: str | None) -> float:
    """Return 0..100 describing how much two descriptions overlap.

    Whole-string containment scores 100. Otherwise words longer than three
    characters are compared pairwise; a pair counts when either word contains
    the other, and the count is taken over the larger word list.
    """

    left = (a or "").lower().strip()
    right = (b or "").lower().strip()
    if not left or not right:
        return 0.0
    if left in right or right in left:
        return 100.0

    left_words = [w for w in _WS.split(left) if len(w) > 3]
    right_words = [w for w in _WS.split(right) if len(w) > 3]
    denom = max(len(left_words), len(right_words))
    if denom == 0:
        return 0.0
    hits = sum(1 for lw in left_words for rw in right_words if lw in rw or rw in lw)
    return min(100.0, hits / denom * 100.0)


def classify(amount_diff: Decimal, days_diff: int, score: float) -> Confidence:
    if amount_diff < _HIGH_AMOUNT and days_diff <= _HIGH_DAYS and score >= _HIGH_SCORE:
        return "high"
    if amount_diff < _MEDIUM_AMOUNT and days_diff <= _MEDIUM_DAYS and score >= _MEDIUM_SCORE:
        return "medium"
    return "low"


def score_candidate(item: MatchParty, candidate: MatchParty) -> MatchCandidate | None:
    """Score one pairing, or return ``None`` when it falls outside the search bounds."""

    amount_diff = amount_difference(item.amount, candidate.amount)
    days_diff = days_difference(item, candidate)
    if amount_diff >= MAX_AMOUNT_DIFF or days_diff > MAX_DAYS_DIFF:
        return None

    amount_score = max(0.0, 100.0 - float(amount_diff) * 10.0)
    date_score = max(0.0, 100.0 - days_diff * 2.0)
    desc_score = description_score(item.description, candidate.description)
    total = amount_score * 0.5 + date_score * 0.3 + desc_score * 0.2

    return MatchCandidate(
        other_party_id=candidate.id,
        score=round(total, 2),
        confidence=classify(amount_diff, days_diff, total),
        amount_diff=float(amount_diff),
        days_diff=days_diff,
    )


def find_candidates(
    item: MatchParty,
    pool: Iterable[MatchParty],
    *,
    limit: int | None = DEFAULT_CANDIDATE_LIMIT,
) -> list[MatchCandidate]:
    """Return the best-scoring candidates for ``item`` from ``pool``.

    ``pool`` should hold records of the opposite type; records of the same
    kind as ``item`` and records already linked elsewhere are ignored. The
    result is ordered by score (ties: smaller amount gap, then fewer days).
    """

    scored: list[MatchCandidate] = []
    for candidate in pool:
        if candidate.kind == item.kind or candidate.matched_id is not None:
            continue
        match = score_candidate(item, candidate)
        if match is not None:
            scored.append(match)
    scored.sort(key=lambda m: (-m.score, m.amount_diff, m.days_diff))
    return scored if limit is None else scored[:limit]


def auto_match(repository: ReconciliationRepository, owner_id: str) -> AutoMatchResult:
    """Link every unreconciled transaction to its best high-confidence document.

    Allocation is greedy in transaction order (most recent first): once a
    document is linked it is consumed for the rest of the run. Only
    ``high``-tier candidates are ever committed. A link that fails its
    preconditions is recorded and the run moves on.
    """

    transactions = repository.list_unreconciled_transactions(owner_id)
    documents = repository.list_unreconciled_documents(owner_id)
    available: dict[str, MatchParty] = {d.id: d for d in documents if d.matched_id is None}

    result = AutoMatchResult()
    for tx in transactions:
        if tx.matched_id is not None or not available:
            continue
        best = next(
            (
                c
                for c in find_candidates(tx, available.values(), limit=None)
                if c.confidence == "high"
            ),
            None,
        )
        if best is None:
            continue
        try:
            repository.link(tx.id, best.other_party_id, owner_id)
        except MatchConflict as e:
            _logger.warning(
                "auto_match:link_conflict transaction_id=%s document_id=%s error=%s",
                tx.id,
                best.other_party_id,
                e,
            )
            result.errors.append(f"{tx.id}: {e}")
            # The document may have been claimed elsewhere; do not offer it again.
            available.pop(best.other_party_id, None)
            continue
        available.pop(best.other_party_id, None)
        result.matches.append(
            MatchedPair(transaction_id=tx.id, document_id=best.other_party_id, score=best.score)
        )

    result.matched_count = len(result.matches)
    result.message = f"Successfully auto-matched {result.matched_count} transaction(s)"
    _logger.info(
        "auto_match:done owner=%s transactions=%d documents=%d matched=%d conflicts=%d",
        owner_id,
        len(transactions),
        len(documents),
        result.matched_count,
        len(result.errors),
    )
    return result


class ReconciliationService:
    """Interactive reconciliation for one owner.

    Every lookup, link and unlink is scoped to ``owner_id``; records owned by
    anyone else are reported as not found.
    """

    def __init__(
        self,
        repository: ReconciliationRepository,
        owner_id: str,
        *,
        candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> None:
        self._repository = repository
        self._owner_id = owner_id
        self._limit = candidate_limit

    def candidates_for_transaction(self, transaction_id: str) -> list[MatchCandidate]:
        item = self._repository.get_transaction(transaction_id, self._owner_id)
        if item is None:
            raise MatchConflict(f"Transaction {transaction_id} not found")
        if item.matched_id is not None:
            return []
        pool = self._repository.list_unreconciled_documents(self._owner_id)
        return find_candidates(item, pool, limit=self._limit)

    def candidates_for_document(self, document_id: str) -> list[MatchCandidate]:
        item = self._repository.get_document(document_id, self._owner_id)
        if item is None:
            raise MatchConflict(f"Document {document_id} not found")
        if item.matched_id is not None:
            return []
        pool = self._repository.list_unreconciled_transactions(self._owner_id)
        return find_candidates(item, pool, limit=self._limit)

    def match(self, transaction_id: str, document_id: str) -> None:
        self._repository.link(transaction_id, document_id, self._owner_id)
        _logger.info(
            "reconcile:matched transaction_id=%s document_id=%s", transaction_id, document_id
        )

    def unmatch(self, transaction_id: str) -> str:
        document_id = self._repository.unlink(transaction_id, self._owner_id)
        _logger.info(
            "reconcile:unmatched transaction_id=%s document_id=%s", transaction_id, document_id
        )
        return document_id

    def auto_match(self) -> AutoMatchResult:
        return auto_match(self._repository, self._owner_id)


__all__ = [
    "amount_difference",
    "days_difference",
    "description_score",
    "classify",
    "score_candidate",
    "find_candidates",
    "auto_match",
    "ReconciliationService",
]
