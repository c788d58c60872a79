"""Public interface for the ``ledger_sync`` package.

This module exposes the package's API functions, engines and public models as
the stable import surface. There is no runtime logic here, only re-exports.
"""

from .api import (
    match,
    process_upload,
    pull_owner_sheet_edits,
    run_auto_match,
    suggest_matches,
    suggest_transactions_for_document,
    sync_owner_to_sheet,
    unmatch,
)
from .duplicates import DuplicateDetector, SimilarityResult
from .fingerprint import fingerprint
from .matching import ReconciliationService, auto_match, find_candidates
from .merge import MergeOptions, MergeService
from .models import (
    AutoMatchResult,
    IncomingTransaction,
    MatchCandidate,
    MatchParty,
    MergeResult,
    PullResult,
    SheetRow,
    SyncResult,
)
from .retry import RetryPolicy
from .sync import IncrementalSyncEngine

__all__ = [
    # API
    "process_upload",
    "suggest_matches",
    "suggest_transactions_for_document",
    "run_auto_match",
    "match",
    "unmatch",
    "sync_owner_to_sheet",
    "pull_owner_sheet_edits",
    # Engines
    "fingerprint",
    "DuplicateDetector",
    "MergeService",
    "MergeOptions",
    "find_candidates",
    "auto_match",
    "ReconciliationService",
    "RetryPolicy",
    "IncrementalSyncEngine",
    # Models
    "IncomingTransaction",
    "SimilarityResult",
    "MergeResult",
    "MatchParty",
    "MatchCandidate",
    "AutoMatchResult",
    "SheetRow",
    "SyncResult",
    "PullResult",
]
