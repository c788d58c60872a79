"""Data models for ``ledger_sync``.

Two families live here:

- frozen dataclasses for in-process records flowing between components
  (:class:`IncomingTransaction`, :class:`StoredFingerprint`,
  :class:`MatchParty`, :class:`SheetRow`);
- pydantic models for the outcome objects handed back to callers
  (:class:`MergeResult`, :class:`SyncResult`, :class:`MatchCandidate`, ...).
  They serialize to stable JSON with ``model_dump(mode="json")``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

SourceType = Literal["upload", "external_sync", "manual", "api"]
MergeMode = Literal["insert", "merge", "reject"]
Confidence = Literal["high", "medium", "low"]
PartyKind = Literal["transaction", "document"]

SOURCE_TYPES: tuple[str, ...] = ("upload", "external_sync", "manual", "api")


# ---------------------------------------------------------------------------
# In-process records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class IncomingTransaction:
    """A normalized transaction handed over by the parsing/categorization collaborator.

    ``amount`` and ``date`` are kept as supplied (number/string/``date``);
    they are parsed during fingerprinting, where a bad value makes the row a
    validation gap instead of failing the whole batch.
    """

    original_description: str
    amount: Any
    date: Any
    category: str | None = None
    subcategory: str | None = None
    confidence_score: float | None = None
    source_identifier: str | None = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> IncomingTransaction:
        """Build from a dict-like row; ``description`` is accepted as an alias."""

        desc = row.get("original_description")
        if desc is None:
            desc = row.get("description")
        confidence = row.get("confidence_score")
        return cls(
            original_description="" if desc is None else str(desc),
            amount=row.get("amount"),
            date=row.get("date"),
            category=(str(row["category"]).strip() or None) if row.get("category") else None,
            subcategory=(
                (str(row["subcategory"]).strip() or None) if row.get("subcategory") else None
            ),
            confidence_score=float(confidence) if confidence not in (None, "") else None,
            source_identifier=row.get("source_identifier") or None,
        )


@dataclass(frozen=True, slots=True)
class StoredFingerprint:
    """One stored transaction as seen by duplicate detection."""

    fingerprint: str
    job_id: str | None
    transaction_id: str | None = None


@dataclass(frozen=True, slots=True)
class MatchParty:
    """Either side of a reconciliation pairing, reduced to what scoring needs.

    Transactions carry signed amounts and documents unsigned totals; scoring
    compares magnitudes. ``matched_id`` is the id on the other side when the
    record is already linked.
    """

    id: str
    kind: PartyKind
    amount: Decimal | None
    date: date | None
    description: str
    matched_id: str | None = None


@dataclass(frozen=True, slots=True)
class SheetRow:
    """A transaction rendered for the fixed 8-column sheet layout (A..H)."""

    date: str
    description: str
    amount: float
    category: str
    subcategory: str
    confidence: float
    status: str
    fingerprint: str
    transaction_id: str | None = None


# ---------------------------------------------------------------------------
# Outcome objects
# ---------------------------------------------------------------------------


class MatchCandidate(BaseModel):
    """A scored pairing between one item and one record of the opposite type."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    other_party_id: str
    score: float = Field(ge=0, le=100)
    confidence: Confidence
    amount_diff: float
    days_diff: int


class MergeResult(BaseModel):
    """Summary of one upload processed by the merge service."""

    model_config = ConfigDict(extra="forbid")

    mode: MergeMode
    inserted: int = 0
    skipped: int = 0
    updated: int = 0
    errors: int = 0
    invalid: int = 0
    similarity_score: int = 0
    job_id: str | None = None
    matched_job_id: str | None = None
    matched_job_ids: list[str] = Field(default_factory=list)
    message: str = ""
    first_error: str | None = None


class SyncResult(BaseModel):
    """Summary of one push of transaction rows to a sheet tab."""

    model_config = ConfigDict(extra="forbid")

    success: bool = True
    transactions_updated: int = 0
    transactions_appended: int = 0
    transactions_skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    synced_fingerprints: list[str] = Field(default_factory=list)
    failed_fingerprints: list[str] = Field(default_factory=list)

    @computed_field
    @property
    def first_error(self) -> str | None:
        return self.errors[0] if self.errors else None


class SheetEdit(BaseModel):
    """A user edit read back from the sheet for one stored transaction."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    transaction_id: str
    fingerprint: str
    category: str | None
    subcategory: str | None
    user_confirmed: bool


class PullResult(BaseModel):
    """Summary of reading sheet edits back into storage."""

    model_config = ConfigDict(extra="forbid")

    rows_processed: int = 0
    rows_updated: int = 0
    rows_skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class MatchedPair(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    transaction_id: str
    document_id: str
    score: float


class AutoMatchResult(BaseModel):
    """Summary of one auto-match batch run."""

    model_config = ConfigDict(extra="forbid")

    matched_count: int = 0
    matches: list[MatchedPair] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    message: str = ""


__all__ = [
    "SOURCE_TYPES",
    "SourceType",
    "MergeMode",
    "Confidence",
    "PartyKind",
    "IncomingTransaction",
    "StoredFingerprint",
    "MatchParty",
    "SheetRow",
    "MatchCandidate",
    "MergeResult",
    "SyncResult",
    "SheetEdit",
    "PullResult",
    "MatchedPair",
    "AutoMatchResult",
]
