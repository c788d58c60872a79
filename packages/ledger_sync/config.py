"""Runtime settings resolved from environment variables.

The CLI loads a local ``.env`` (``python-dotenv``) before calling
:meth:`EngineSettings.from_env`. Library code receives an explicit
``EngineSettings`` instance and never reads the environment itself.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from .logging_setup import get_logger

_logger = get_logger("ledger_sync.config")


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    """Read a positive integer env var; invalid or too-small values fall back."""

    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        _logger.warning("config:invalid_int name=%s value=%r default=%d", name, raw, default)
        return default
    if value < minimum:
        _logger.warning("config:out_of_range name=%s value=%d default=%d", name, value, default)
        return default
    return value


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """Tunables for the merge, match and sync engines."""

    database_url: str | None = None
    insert_batch_size: int = 100
    sheet_chunk_size: int = 200
    retry_max_attempts: int = 4
    retry_base_delay_ms: int = 500
    retry_max_jitter_ms: int = 250
    candidate_limit: int = 5
    google_service_account_json: str | None = None

    @classmethod
    def from_env(cls) -> EngineSettings:
        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            insert_batch_size=_env_int("LEDGER_SYNC_INSERT_BATCH_SIZE", 100),
            sheet_chunk_size=_env_int("LEDGER_SYNC_SHEET_CHUNK_SIZE", 200),
            retry_max_attempts=_env_int("LEDGER_SYNC_RETRY_MAX_ATTEMPTS", 4),
            retry_base_delay_ms=_env_int("LEDGER_SYNC_RETRY_BASE_DELAY_MS", 500, minimum=0),
            retry_max_jitter_ms=_env_int("LEDGER_SYNC_RETRY_MAX_JITTER_MS", 250, minimum=0),
            candidate_limit=_env_int("LEDGER_SYNC_CANDIDATE_LIMIT", 5),
            google_service_account_json=os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON") or None,
        )


__all__ = ["EngineSettings"]
