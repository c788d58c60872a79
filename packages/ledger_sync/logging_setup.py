"""Logging for ``ledger_sync``.

Modules log through ``get_logger("ledger_sync.<module>")`` and never attach
handlers. The ``ledger-sync`` CLI calls :func:`configure_logging` once at
startup; until then (or when the engine is embedded in another service) the
package logger only carries a ``NullHandler`` and the host decides.

Log lines use ``event:name key=value`` messages, e.g.
``sync:chunk_failed kind=append size=200 error=...``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

ROOT_LOGGER = "ledger_sync"
LEVEL_ENV = "LEDGER_SYNC_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured = False


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or ``$LEDGER_SYNC_LOG_LEVEL`` when ``None``) into a level number.

    Names (``"debug"``) and numeric strings (``"10"``) are accepted; anything
    unrecognised means ``INFO``.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV)
    if isinstance(level, int):
        return level
    name = (level or "").strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelNamesMapping().get(name)
    return value if value is not None else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Send ``ledger_sync.*`` records to ``stream``. Later calls are no-ops."""

    global _configured
    if _configured:
        return

    resolved = resolve_level(level)
    root = logging.getLogger(ROOT_LOGGER)
    for h in [h for h in root.handlers if isinstance(h, logging.NullHandler)]:
        root.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    root.addHandler(handler)
    root.setLevel(resolved)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not _configured and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["DEFAULT_FORMAT", "resolve_level", "configure_logging", "get_logger"]
