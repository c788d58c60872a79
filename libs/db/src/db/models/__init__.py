"""Shared SQLAlchemy models registry for the workspace database.

Includes the ingestion, transaction and document models used by ``ledger_sync``.
"""

from .finance import Base, FinancialDocument, IngestionJob, LedgerTransaction

__all__ = [
    "Base",
    "IngestionJob",
    "LedgerTransaction",
    "FinancialDocument",
]
