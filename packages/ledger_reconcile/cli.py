"""CLI for the ``ledger_reconcile`` package.

Command handlers (``cmd_*``) return a process exit code; the Typer commands at
the bottom wrap them. A local ``.env`` is loaded with ``python-dotenv`` (never
overriding variables already set) before any command runs, so the AI
credential can live in ``LEDGER_RECONCILE_API_KEY`` or ``DEEPSEEK_API_KEY``.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import ArgumentInfo, OptionInfo

from .ai_client import create_client, validate_credential
from .amounts import fmt_amount
from .api import inspect_file
from .errors import InputMissing, ReconcileError
from .logging_setup import configure_logging
from .models import EntrySource
from .settings import Settings
from .workflow import ReconcileWorkflow, Stage, WorkflowSnapshot

_CREDENTIAL_ENV_VARS: tuple[str, ...] = ("LEDGER_RECONCILE_API_KEY", "DEEPSEEK_API_KEY")


def _resolve_credential(api_key: str | None) -> str | None:
    if api_key:
        return api_key.strip()
    for name in _CREDENTIAL_ENV_VARS:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


def _print_categories(snap: WorkflowSnapshot) -> None:
    print("category\tstatus\tstandard\tcheck\tdifference")
    for name, cat in snap.categories.items():
        print(
            f"{name}\t{cat.status}\t{fmt_amount(cat.total_standard)}\t"
            f"{fmt_amount(cat.total_check)}\t{fmt_amount(cat.difference)}"
        )


# ---- Command handlers ----------------------------------------------------------


def cmd_inspect(path: str, *, source: EntrySource, api_key: str | None, use_ai: bool) -> int:
    """Print the header decision, column roles and entries of one file."""

    settings = Settings.from_env()
    client = create_client(_resolve_credential(api_key), settings=settings) if use_ai else None
    try:
        report = inspect_file(path, source, client=client, settings=settings)
    except ReconcileError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    header, roles = report.header, report.resolution.roles
    print(
        f"header: row={header.row_index + 1 if header.row_index >= 0 else 'none'} "
        f"source={header.source} confidence={header.confidence:.2f}"
    )
    print("columns: " + " | ".join(header.headers))
    names = ", ".join(header.headers[i] or f"column {i + 1}" for i in roles.name_columns)
    print(
        f"name: {names} (rule {roles.combination_rule!r}, source {roles.source}"
        + (", composite" if roles.composite_mode else "")
        + ")"
    )
    amount_header = header.headers[roles.amount_column] or f"column {roles.amount_column + 1}"
    print(f"amount: {amount_header} (source {roles.amount_source})")
    if report.resolution.row_summaries:
        print(f"row summaries: {len(report.resolution.row_summaries)}")
    print(f"entries: {len(report.entries)}")
    for entry in report.entries:
        print(f"{entry.id}\t{fmt_amount(entry.amount)}\t{entry.original_name}\t{entry.name}")
    return 0


def cmd_reconcile(
    standard_path: str, check_path: str, *, api_key: str | None, summary: bool
) -> int:
    """Drive the workflow end to end and print the comparison."""

    wf = ReconcileWorkflow(settings=Settings.from_env())
    wf.set_file(EntrySource.STANDARD, standard_path)
    wf.set_file(EntrySource.CHECK, check_path)
    wf.set_credential(_resolve_credential(api_key) or "")
    try:
        wf.require_inputs()
    except InputMissing as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    steps = [Stage.DISPLAY, Stage.MANUAL_CONFIRM, Stage.COMPARE]
    if summary:
        steps.append(Stage.SUMMARIZE)
    for expected in steps:
        wf.next()
        snap = wf.snapshot()
        if snap.error or snap.stage is not expected:
            reason = snap.error or "stage did not complete"
            print(f"Error ({snap.stage}): {reason}", file=sys.stderr)
            return 1
        if snap.stage is Stage.DISPLAY:
            print(f"parsed: standard={len(snap.standard)} check={len(snap.check)}")

    snap = wf.snapshot()
    _print_categories(snap)
    if snap.summary:
        print()
        print(snap.summary)
    return 0


def cmd_check_credential(api_key: str | None) -> int:
    credential = _resolve_credential(api_key)
    if not validate_credential(credential):
        print("Error: credential is missing or malformed (expected 'sk-…').", file=sys.stderr)
        return 1
    client = create_client(credential, settings=Settings.from_env())
    if client is None or not client.check_connection():
        print("Error: the AI provider rejected the credential.", file=sys.stderr)
        return 1
    print("credential ok")
    return 0


# ---- Typer-based console interface ----------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Reconcile two ledger spreadsheets by category with AI-assisted structure "
        "detection. Loads the AI credential from a local .env before running."
    ),
)

# Module-level option/argument objects (no calls in parameter defaults).
API_KEY_OPTION: OptionInfo = typer.Option(
    "--api-key",
    help="AI credential (falls back to LEDGER_RECONCILE_API_KEY / DEEPSEEK_API_KEY).",
)
FILE_ARGUMENT: ArgumentInfo = typer.Argument(
    help="Ledger file (.xlsx, .xlsm, .xls or .csv).", dir_okay=False
)


@app.command("inspect")
def inspect_cmd(
    path: Annotated[Path, FILE_ARGUMENT],
    *,
    source: EntrySource = typer.Option(EntrySource.STANDARD, help="Which ledger this is."),
    api_key: Annotated[str | None, API_KEY_OPTION] = None,
    no_ai: bool = typer.Option(False, "--no-ai", help="Heuristics only; never call the AI."),
) -> None:
    """Show how a single file is understood: header, column roles, entries."""

    raise typer.Exit(cmd_inspect(str(path), source=source, api_key=api_key, use_ai=not no_ai))


@app.command("reconcile")
def reconcile_cmd(
    standard: Annotated[Path, typer.Argument(help="Standard ledger file.", dir_okay=False)],
    check: Annotated[Path, typer.Argument(help="Ledger file to check.", dir_okay=False)],
    *,
    api_key: Annotated[str | None, API_KEY_OPTION] = None,
    summary: bool = typer.Option(True, "--summary/--no-summary", help="Generate the report."),
) -> None:
    """Parse, classify and compare two ledgers."""

    raise typer.Exit(cmd_reconcile(str(standard), str(check), api_key=api_key, summary=summary))


@app.command("check-credential")
def check_credential_cmd(api_key: Annotated[str | None, API_KEY_OPTION] = None) -> None:
    """Validate the credential's shape and that the provider accepts it."""

    raise typer.Exit(cmd_check_credential(api_key))


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover
    app()
