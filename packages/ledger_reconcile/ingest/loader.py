"""Read the first sheet of a ledger file into a normalized grid.

Supported inputs are ``.xlsx``/``.xlsm``/``.xls`` workbooks (first sheet
only, read through pandas with the ``openpyxl``/``xlrd`` engines) and ``.csv``
text files (decoded with ``chardet``-detected encoding, delimiter sniffed with
the ``csv`` module). Every failure surfaces as
:class:`~ledger_reconcile.errors.FileUnreadable` naming the file.
"""

from __future__ import annotations

import csv
import io
from os import PathLike
from pathlib import Path
from typing import Any

import chardet
import pandas as pd

from ..errors import FileUnreadable
from ..grid import normalize_grid
from ..logging_setup import get_logger
from ..models import Grid

MAX_FILE_BYTES = 10 * 1024 * 1024
EXCEL_EXTENSIONS = frozenset({".xlsx", ".xlsm", ".xls"})
TEXT_EXTENSIONS = frozenset({".csv"})
SUPPORTED_EXTENSIONS = EXCEL_EXTENSIONS | TEXT_EXTENSIONS

_ENCODING_SAMPLE_BYTES = 64 * 1024
_SNIFF_DELIMITERS = ",;\t|"

_logger = get_logger("ledger_reconcile.ingest.loader")


def validate_file(path: str | PathLike[str]) -> Path:
    """Check existence, extension and size of ``path`` and return it as a ``Path``."""

    p = Path(path)
    if not p.is_file():
        raise FileUnreadable(f"File not found: {p}", path=str(p))
    suffix = p.suffix.lower()
    if suffix not in SUPPORTED_EXTENSIONS:
        raise FileUnreadable(
            f"Unsupported file type {suffix or '(none)'!r} for {p.name}; expected one of "
            + ", ".join(sorted(SUPPORTED_EXTENSIONS)),
            path=str(p),
        )
    size = p.stat().st_size
    if size == 0:
        raise FileUnreadable(f"File is empty: {p.name}", path=str(p))
    if size > MAX_FILE_BYTES:
        raise FileUnreadable(
            f"File {p.name} is {size / (1024 * 1024):.1f} MB; the limit is 10 MB", path=str(p)
        )
    return p


def _decode(raw: bytes, name: str) -> str:
    detected = chardet.detect(raw[:_ENCODING_SAMPLE_BYTES]).get("encoding")
    # Chinese ledgers are commonly GBK; gb18030 is its superset.
    for encoding in ("utf-8-sig", detected, "gb18030"):
        if not encoding:
            continue
        try:
            return raw.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    raise FileUnreadable(f"Could not determine the text encoding of {name}", path=name)


def _read_csv_rows(p: Path) -> list[list[str]]:
    text = _decode(p.read_bytes(), p.name)
    sample = "\n".join(text.splitlines()[:25])
    try:
        dialect: type[csv.Dialect] | csv.Dialect = csv.Sniffer().sniff(
            sample, delimiters=_SNIFF_DELIMITERS
        )
    except csv.Error:
        dialect = csv.excel
    try:
        return list(csv.reader(io.StringIO(text, newline=""), dialect))
    except csv.Error as e:
        raise FileUnreadable(f"Malformed CSV in {p.name}: {e}", path=str(p)) from e


def _read_excel_rows(p: Path) -> list[list[Any]]:
    engine = "xlrd" if p.suffix.lower() == ".xls" else "openpyxl"
    try:
        frame = pd.read_excel(p, sheet_name=0, header=None, dtype=object, engine=engine)
    except Exception as e:  # noqa: BLE001 - engines raise many unrelated types
        raise FileUnreadable(f"Could not read workbook {p.name}: {e}", path=str(p)) from e
    return frame.values.tolist()


def read_grid(path: str | PathLike[str]) -> Grid:
    """Validate ``path`` and return its first sheet as a normalized grid."""

    p = validate_file(path)
    if p.suffix.lower() in TEXT_EXTENSIONS:
        rows: list[list[Any]] = list(_read_csv_rows(p))
    else:
        rows = _read_excel_rows(p)

    grid = normalize_grid(rows)
    if not grid:
        raise FileUnreadable(f"The first sheet of {p.name} has no data", path=str(p))
    _logger.info("loader:read file=%s rows=%d cols=%d", p.name, len(grid), len(grid[0]))
    return grid


__all__ = ["MAX_FILE_BYTES", "SUPPORTED_EXTENSIONS", "read_grid", "validate_file"]
