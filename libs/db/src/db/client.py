"""Process-wide engine and session scope for the ledger database.

``SqlLedgerRepository`` opens one ``session_scope()`` per storage call; each
scope commits on success and rolls back on any exception. The URL comes from
the caller (``EngineSettings.database_url``) or ``$DATABASE_URL``.

One engine is kept per process and is bound to the first URL it sees. Tests
point each case at a fresh SQLite file, so they call ``dispose_engine()``
between cases.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

_engine: Engine | None = None
_sessions: sessionmaker[Session] | None = None
_bound_url: str | None = None


def _resolve_url(database_url: str | None) -> str:
    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("no database configured: pass database_url or set DATABASE_URL")
    return url


def _sqlite_foreign_keys(dbapi_conn, _record) -> None:  # pragma: no cover - driver hook
    # SQLite leaves FK enforcement off per connection; the ledger relies on it.
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.close()


def get_engine(*, database_url: str | None = None) -> Engine:
    """Return the process engine, creating it for ``database_url`` on first use.

    Asking for a different URL while an engine is live raises ``RuntimeError``.
    """

    global _engine, _sessions, _bound_url
    url = _resolve_url(database_url)
    if _engine is not None:
        if url != _bound_url:
            raise RuntimeError(
                f"database engine is bound to another URL; dispose_engine() before "
                f"switching to {url!r}"
            )
        return _engine

    engine = create_engine(url, pool_pre_ping=True)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _sqlite_foreign_keys)
    _engine = engine
    _sessions = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
    _bound_url = url
    return engine


def dispose_engine() -> None:
    global _engine, _sessions, _bound_url
    if _engine is not None:
        _engine.dispose()
    _engine, _sessions, _bound_url = None, None, None


@contextmanager
def session_scope(*, database_url: str | None = None) -> Iterator[Session]:
    """Yield a session that commits when the block exits cleanly."""

    get_engine(database_url=database_url)
    assert _sessions is not None
    session = _sessions()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = ["get_engine", "session_scope", "dispose_engine"]
