"""Exception types raised and handled across ``ledger_sync``.

Hierarchy::

    LedgerSyncError
    ├── ValidationGap            (also a ValueError)
    ├── JobCreationFailure
    ├── MatchConflict
    ├── SyncCancelled
    ├── BatchFailure
    └── RemoteStoreError
        ├── TransientRemoteError (rate limited; retried)
        └── PersistentRemoteError (not retried)

Only whole-operation preconditions escape public operations. Per-row and
per-chunk problems are caught and reported in result objects.
"""

from __future__ import annotations

from collections.abc import Sequence


class LedgerSyncError(Exception):
    """Base class for every error raised by this package."""


class ValidationGap(LedgerSyncError, ValueError):
    """A record lacks a field required for fingerprinting (date, description, amount)."""

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"missing or invalid {field}")


class JobCreationFailure(LedgerSyncError):
    """The ingestion job could not be created; nothing may be inserted."""


class MatchConflict(LedgerSyncError):
    """A link/unlink precondition does not hold (already matched, wrong owner, ...)."""


class SyncCancelled(LedgerSyncError):
    """The caller cancelled the sync or its deadline passed."""


class RemoteStoreError(LedgerSyncError):
    """An error reported by the remote tabular store."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransientRemoteError(RemoteStoreError):
    """The remote store signalled rate limiting (HTTP 429)."""


class PersistentRemoteError(RemoteStoreError):
    """Any other remote store error; retrying would not help."""


class BatchFailure(LedgerSyncError):
    """A write chunk failed; carries the fingerprints that were not written."""

    def __init__(self, kind: str, fingerprints: Sequence[str], cause: BaseException) -> None:
        self.kind = kind
        self.fingerprints = tuple(fingerprints)
        self.cause = cause
        super().__init__(
            f"Failed to {kind} {len(self.fingerprints)} transaction(s): {cause}"
        )


__all__ = [
    "LedgerSyncError",
    "ValidationGap",
    "JobCreationFailure",
    "MatchConflict",
    "SyncCancelled",
    "RemoteStoreError",
    "TransientRemoteError",
    "PersistentRemoteError",
    "BatchFailure",
]
