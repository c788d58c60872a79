"""Remote tabular store interface and its Google Sheets implementation.

The sync engine talks to :class:`TabularStore` only. ``GoogleSheetsStore``
maps the three calls onto the Sheets ``values`` endpoints through
``gspread`` and folds failures into the ``RemoteStoreError`` hierarchy: HTTP
429 is transient; other API errors, transport errors (``requests``) and
credential errors (``google-auth``) are persistent.
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Protocol

import gspread
import requests
from google.auth.exceptions import GoogleAuthError
from google.oauth2.service_account import Credentials

from .errors import PersistentRemoteError, RemoteStoreError, TransientRemoteError
from .logging_setup import get_logger

_logger = get_logger("ledger_sync.sheets")

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

type Cell = Any
type Grid = list[list[Cell]]


def quote_tab(tab: str) -> str:
    """Quote a tab name for A1 notation (``My Tab`` -> ``'My Tab'``)."""

    return "'" + tab.replace("'", "''") + "'"


def a1(tab: str, cells: str) -> str:
    return f"{quote_tab(tab)}!{cells}"


class TabularStore(Protocol):
    """Minimal surface of a spreadsheet-like remote store."""

    @property
    def destination_id(self) -> str: ...

    def batch_get(self, ranges: Sequence[str]) -> list[Grid]:
        """Read several ranges in one call; one grid per range, in order."""
        ...

    def batch_update(self, data: Sequence[tuple[str, Grid]]) -> None:
        """Overwrite each ``(range, rows)`` pair in one call (values stored raw)."""
        ...

    def append(self, range_: str, rows: Grid) -> None:
        """Append ``rows`` after the last non-empty row of ``range_``."""
        ...


def _translate(e: gspread.exceptions.APIError, op: str) -> RemoteStoreError:
    status = getattr(e.response, "status_code", None)
    msg = f"Sheets {op} failed: {e}"
    if status == 429:
        return TransientRemoteError(msg, status_code=status)
    return PersistentRemoteError(msg, status_code=status)


@contextmanager
def _remote_call(op: str) -> Iterator[None]:
    try:
        yield
    except gspread.exceptions.APIError as e:
        raise _translate(e, op) from e
    except requests.exceptions.RequestException as e:
        raise PersistentRemoteError(f"Sheets {op} transport error: {e}") from e
    except GoogleAuthError as e:
        raise PersistentRemoteError(f"Sheets {op} credentials error: {e}") from e


class GoogleSheetsStore:
    """``TabularStore`` backed by one Google spreadsheet."""

    def __init__(self, spreadsheet: gspread.Spreadsheet) -> None:
        self._spreadsheet = spreadsheet

    @classmethod
    def from_service_account_info(
        cls, info: dict[str, Any] | str, spreadsheet_id: str
    ) -> GoogleSheetsStore:
        if isinstance(info, str):
            info = json.loads(info)
        creds = Credentials.from_service_account_info(info, scopes=SCOPES)
        client = gspread.authorize(creds)
        return cls(client.open_by_key(spreadsheet_id))

    @property
    def destination_id(self) -> str:
        return self._spreadsheet.id

    def batch_get(self, ranges: Sequence[str]) -> list[Grid]:
        with _remote_call("batch_get"):
            resp = self._spreadsheet.values_batch_get(list(ranges))
        value_ranges = resp.get("valueRanges", [])
        grids: list[Grid] = [vr.get("values", []) for vr in value_ranges]
        # Ranges with no data may be omitted from the response tail.
        grids.extend([] for _ in range(len(ranges) - len(grids)))
        return grids

    def batch_update(self, data: Sequence[tuple[str, Grid]]) -> None:
        if not data:
            return
        body = {
            "valueInputOption": "RAW",
            "data": [{"range": rng, "values": rows} for rng, rows in data],
        }
        with _remote_call("batch_update"):
            self._spreadsheet.values_batch_update(body)
        _logger.debug("sheets:batch_update ranges=%d", len(data))

    def append(self, range_: str, rows: Grid) -> None:
        if not rows:
            return
        with _remote_call("append"):
            self._spreadsheet.values_append(
                range_,
                {"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                {"values": rows},
            )
        _logger.debug("sheets:append range=%s rows=%d", range_, len(rows))


__all__ = ["SCOPES", "quote_tab", "a1", "TabularStore", "GoogleSheetsStore"]
