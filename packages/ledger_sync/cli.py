"""CLI for the ``ledger_sync`` package.

A Typer console interface over :mod:`ledger_sync.api`. Environment variables
(``DATABASE_URL``, ``GOOGLE_SERVICE_ACCOUNT_JSON`` and the ``LEDGER_SYNC_*``
tunables) are loaded from a local ``.env`` using ``python-dotenv`` before any
command runs. Every command prints its result as JSON on stdout.
"""

from __future__ import annotations

import csv
import dataclasses
import json
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv
from pydantic import BaseModel
from typer.models import OptionInfo

from .config import EngineSettings
from .errors import LedgerSyncError
from .logging_setup import configure_logging
from .merge import MergeOptions
from .models import IncomingTransaction
from .sheets import GoogleSheetsStore, TabularStore

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Store uploaded transactions without duplicates, reconcile them against "
        "receipts/invoices, and keep a Google Sheets tab in sync."
    ),
)

# Module-level option objects (no calls in parameter defaults).
OWNER_OPTION: OptionInfo = typer.Option(..., "--owner", help="Owner (user) id.")
SPREADSHEET_OPTION: OptionInfo = typer.Option(
    ..., "--spreadsheet-id", help="Target Google spreadsheet id."
)
TAB_OPTION: OptionInfo = typer.Option("Transactions", "--tab", help="Sheet tab name.")


# ---- helpers -----------------------------------------------------------------


def _settings(ctx: typer.Context) -> EngineSettings:
    settings = ctx.obj if isinstance(ctx.obj, EngineSettings) else EngineSettings.from_env()
    if not settings.database_url:
        typer.echo("Error: DATABASE_URL is not set (use --database-url or .env).", err=True)
        raise typer.Exit(1)
    return settings


def _emit(payload: Any) -> None:
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    elif isinstance(payload, list):
        payload = [p.model_dump(mode="json") if isinstance(p, BaseModel) else p for p in payload]
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))


def load_transactions(path: Path) -> list[IncomingTransaction]:
    """Read normalized transactions from a ``.json`` array or a CSV with a header row."""

    if path.suffix.lower() == ".json":
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, list):
            raise ValueError("JSON input must be an array of transaction objects")
        return [IncomingTransaction.from_mapping(item) for item in data]
    with path.open(encoding="utf-8", newline="") as f:
        return [IncomingTransaction.from_mapping(row) for row in csv.DictReader(f)]


def _open_store(settings: EngineSettings, spreadsheet_id: str) -> TabularStore:
    if not settings.google_service_account_json:
        typer.echo("Error: GOOGLE_SERVICE_ACCOUNT_JSON is not set.", err=True)
        raise typer.Exit(1)
    return GoogleSheetsStore.from_service_account_info(
        settings.google_service_account_json, spreadsheet_id
    )


# ---- commands ----------------------------------------------------------------


@app.command("upload")
def upload_cmd(
    ctx: typer.Context,
    path: Annotated[Path, typer.Argument(help="Normalized transactions (.csv or .json).")],
    owner: str = OWNER_OPTION,
    source_type: str = typer.Option("upload", help="upload | external_sync | manual | api"),
    job_id: str | None = typer.Option(None, help="Attach rows to an existing job."),
    skip_duplicate_check: bool = typer.Option(
        False, help="Insert every row without consulting stored fingerprints."
    ),
) -> None:
    """Store an upload, skipping transactions the owner already has."""

    from .api import process_upload

    settings = _settings(ctx)
    try:
        transactions = load_transactions(path)
        options = MergeOptions(
            source_type=source_type,  # type: ignore[arg-type]
            job_id=job_id,
            original_filename=path.name,
            skip_duplicate_check=skip_duplicate_check,
        )
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    result = process_upload(transactions, owner, options=options, settings=settings)
    _emit(result)
    if result.mode == "reject":
        raise typer.Exit(1)


@app.command("candidates")
def candidates_cmd(
    ctx: typer.Context,
    transaction_id: str,
    owner: str = OWNER_OPTION,
    limit: int | None = typer.Option(None, min=1, help="Maximum candidates to list."),
) -> None:
    """List ranked document candidates for one transaction."""

    from .api import suggest_matches

    settings = _settings(ctx)
    try:
        found = suggest_matches(transaction_id, owner, limit=limit, settings=settings)
    except LedgerSyncError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    _emit(found)


@app.command("auto-match")
def auto_match_cmd(ctx: typer.Context, owner: str = OWNER_OPTION) -> None:
    """Link every transaction that has a high-confidence document."""

    from .api import run_auto_match

    _emit(run_auto_match(owner, settings=_settings(ctx)))


@app.command("match")
def match_cmd(
    ctx: typer.Context,
    transaction_id: str,
    document_id: str,
    owner: str = OWNER_OPTION,
) -> None:
    """Link one transaction to one document."""

    from .api import match

    try:
        match(transaction_id, document_id, owner, settings=_settings(ctx))
    except LedgerSyncError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    _emit({"transaction_id": transaction_id, "document_id": document_id, "status": "matched"})


@app.command("unmatch")
def unmatch_cmd(
    ctx: typer.Context,
    transaction_id: str,
    owner: str = OWNER_OPTION,
) -> None:
    """Revert a match on both sides."""

    from .api import unmatch

    try:
        document_id = unmatch(transaction_id, owner, settings=_settings(ctx))
    except LedgerSyncError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e
    _emit({"transaction_id": transaction_id, "document_id": document_id, "status": "unreconciled"})


@app.command("sync-sheet")
def sync_sheet_cmd(
    ctx: typer.Context,
    owner: str = OWNER_OPTION,
    spreadsheet_id: str = SPREADSHEET_OPTION,
    tab: str = TAB_OPTION,
) -> None:
    """Push the owner's transactions to a sheet tab (update in place, append new)."""

    from .api import sync_owner_to_sheet

    settings = _settings(ctx)
    store = _open_store(settings, spreadsheet_id)
    result = sync_owner_to_sheet(owner, store, tab, settings=settings)
    _emit(result)
    if not result.success:
        raise typer.Exit(1)


@app.command("pull-sheet")
def pull_sheet_cmd(
    ctx: typer.Context,
    owner: str = OWNER_OPTION,
    spreadsheet_id: str = SPREADSHEET_OPTION,
    tab: str = TAB_OPTION,
) -> None:
    """Copy category and status edits made in the sheet back into storage."""

    from .api import pull_owner_sheet_edits

    settings = _settings(ctx)
    store = _open_store(settings, spreadsheet_id)
    result = pull_owner_sheet_edits(owner, store, tab, settings=settings)
    _emit(result)
    if result.errors:
        raise typer.Exit(1)


@app.callback()
def _root(
    ctx: typer.Context,
    *,
    database_url: str | None = typer.Option(
        None, help="Override DATABASE_URL (falls back to env var)."
    ),
    log_level: str | None = typer.Option(
        None, help="Log level (falls back to LEDGER_SYNC_LOG_LEVEL, then INFO)."
    ),
) -> None:
    """Load ``.env`` from the current directory and configure logging once."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging(log_level)

    settings = EngineSettings.from_env()
    if database_url:
        settings = dataclasses.replace(settings, database_url=database_url)
    ctx.obj = settings


if __name__ == "__main__":  # pragma: no cover
    app()
