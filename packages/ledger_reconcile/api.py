"""Public API and orchestration for the ``ledger_reconcile`` package.

Parsing a file runs the full structure pipeline:

``read_grid`` → :func:`~.header_locator.locate_header` →
:func:`~.columns.resolve_column_roles` → :func:`~.extract.extract_entries`.

Classification and the summary report are re-exported from their modules so
callers (the workflow and the CLI) have one import surface.
"""

from __future__ import annotations

from os import PathLike
from typing import NamedTuple

from .ai_client import ChatClient
from .classify import classify_entries, ingest_classification  # noqa: F401  (re-export)
from .columns import resolve_column_roles
from .extract import extract_entries
from .header_locator import locate_header
from .ingest import read_grid
from .logging_setup import get_logger
from .models import ColumnResolution, Entry, EntrySource, Grid, HeaderDecision, ParsedData
from .pmap import p_map
from .settings import Settings
from .summarize import generate_summary  # noqa: F401  (re-export)

_PARSE_CONCURRENCY: int = 2

_logger = get_logger("ledger_reconcile.api")


class FileReport(NamedTuple):
    """Everything learned while parsing one file."""

    grid: Grid
    header: HeaderDecision
    resolution: ColumnResolution
    entries: list[Entry]


def inspect_file(
    path: str | PathLike[str],
    source: EntrySource,
    *,
    client: ChatClient | None = None,
    settings: Settings | None = None,
) -> FileReport:
    """Parse ``path`` and keep the intermediate decisions alongside the entries."""

    settings = settings or (client.settings if client is not None else Settings.from_env())
    grid = read_grid(path)
    header = locate_header(grid, client=client, settings=settings)
    resolution = resolve_column_roles(
        header.headers, grid[header.data_start :], client=client, settings=settings
    )
    entries = extract_entries(grid, header, resolution, source, settings=settings)
    return FileReport(grid, header, resolution, entries)


def parse_file(
    path: str | PathLike[str],
    source: EntrySource,
    *,
    client: ChatClient | None = None,
    settings: Settings | None = None,
) -> list[Entry]:
    """Return the entries of one ledger file.

    Raises ``FileUnreadable`` or ``StructureUnresolved``; AI failures during
    structure inference are absorbed by the fallbacks.
    """

    return inspect_file(path, source, client=client, settings=settings).entries


def parse_files(
    standard_path: str | PathLike[str],
    check_path: str | PathLike[str],
    *,
    client: ChatClient | None = None,
    settings: Settings | None = None,
) -> ParsedData:
    """Parse both ledgers concurrently; the first failure fails the whole call."""

    settings = settings or (client.settings if client is not None else Settings.from_env())
    jobs = [(standard_path, EntrySource.STANDARD), (check_path, EntrySource.CHECK)]

    def _parse(job: tuple[str | PathLike[str], EntrySource]) -> list[Entry]:
        path, source = job
        return parse_file(path, source, client=client, settings=settings)

    standard, check = p_map(jobs, _parse, concurrency=_PARSE_CONCURRENCY)
    _logger.info("api:parsed standard=%d check=%d", len(standard), len(check))
    return ParsedData(standard, check)


__all__ = [
    "FileReport",
    "classify_entries",
    "generate_summary",
    "ingest_classification",
    "inspect_file",
    "parse_file",
    "parse_files",
]
