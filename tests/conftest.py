"""Pytest configuration for test isolation.

The ``db`` library keeps one engine per process and refuses to switch URLs
without an explicit ``dispose_engine()``. Every test gets its own SQLite file,
so the shared engine is dropped after each test.

The engine settings are read from the environment, and a developer's shell or
``.env`` may carry ``DATABASE_URL`` or ``LEDGER_SYNC_*`` values. Those are
cleared for each test so defaults apply unless a test sets them.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

from db.client import dispose_engine  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("LEDGER_SYNC_") or name in (
            "DATABASE_URL",
            "GOOGLE_SERVICE_ACCOUNT_JSON",
        ):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _dispose_shared_engine() -> Iterator[None]:
    yield
    dispose_engine()


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    from tests.helpers.db import bootstrap_sqlite_db

    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite")
