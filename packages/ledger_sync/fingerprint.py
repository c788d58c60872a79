"""Transaction fingerprinting for deduplication and sheet indexing.

A fingerprint is ``sha256("<description>|<amount>|<date>")`` where:

- description is lower-cased, then stripped of surrounding whitespace;
- amount is a fixed-point string with exactly two decimals
  (``Decimal`` + ``ROUND_HALF_UP``; ``-45.3`` becomes ``"-45.30"``);
- date is the ISO calendar day ``YYYY-MM-DD`` (time components dropped).

The same normalized triple must always yield the same hex digest, across
processes and across implementations: stored fingerprints and the fingerprint
column of the external sheet are both keyed by it.
"""

from __future__ import annotations

import hashlib
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .errors import ValidationGap

_CENTS = Decimal("0.01")


def parse_amount(raw: Any) -> Decimal | None:
    """Return ``raw`` as a ``Decimal`` or ``None`` when it is not numeric.

    Floats go through ``str()`` first so ``-45.3`` becomes ``Decimal("-45.3")``
    rather than its binary expansion. Currency symbols and thousands
    separators are tolerated for string input.
    """

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, Decimal):
        return raw if raw.is_finite() else None
    if isinstance(raw, str):
        raw = raw.strip().replace(",", "")
        for sym in ("$", "€", "£", "¥"):
            raw = raw.replace(sym, "")
        if not raw:
            return None
    try:
        d = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def parse_date(raw: Any) -> date | None:
    """Return the calendar day of ``raw`` (``date``, ``datetime`` or ISO string)."""

    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    s = str(raw).strip()
    if not s:
        return None
    # Keep only the date portion of an ISO timestamp ("2025-03-10T12:00:00Z").
    s = s[:10]
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def canonical_amount(raw: Any) -> str:
    """Return the two-decimal string used inside fingerprints."""

    amount = parse_amount(raw)
    if amount is None:
        raise ValidationGap("amount")
    return f"{amount.quantize(_CENTS, rounding=ROUND_HALF_UP):.2f}"


def normalize_description(raw: Any) -> str:
    return str(raw or "").lower().strip()


def fingerprint(description: Any, amount: Any, when: Any) -> str:
    """Return the SHA-256 hex fingerprint of a transaction.

    Raises :class:`~ledger_sync.errors.ValidationGap` when the description is
    blank or the amount/date cannot be parsed.
    """

    desc = normalize_description(description)
    if not desc:
        raise ValidationGap("description")
    day = parse_date(when)
    if day is None:
        raise ValidationGap("date")
    payload = f"{desc}|{canonical_amount(amount)}|{day.isoformat()}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def try_fingerprint(description: Any, amount: Any, when: Any) -> str | None:
    """Like :func:`fingerprint` but returns ``None`` instead of raising."""

    try:
        return fingerprint(description, amount, when)
    except ValidationGap:
        return None


__all__ = [
    "fingerprint",
    "try_fingerprint",
    "canonical_amount",
    "normalize_description",
    "parse_amount",
    "parse_date",
]
