"""CellGrid normalization: raw sheet rows → rectangular grid of strings.

Spreadsheet readers hand back heterogeneous cells (``str``, ``int``,
``float``, ``datetime``, ``None``, pandas ``NaN``). Downstream stages only deal
with trimmed strings, so everything is canonicalized here once.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from .models import Grid

# Zero-width and BOM characters that survive copy/paste from web pages and PDFs.
_ZERO_WIDTH_RE = re.compile("[\u200b\u200c\u200d\u2060\ufeff]")
_WS_RE = re.compile(r"\s+")


def normalize_cell(value: Any) -> str:
    """Return the canonical string form of one cell.

    - ``None`` and ``NaN`` become ``""``.
    - Integral floats lose their ``.0`` (Excel stores ``5000`` as ``5000.0``).
    - Dates render as ISO strings.
    - Zero-width characters are removed; runs of whitespace (including
      non-breaking spaces and embedded newlines) collapse to one space.
    """

    if value is None:
        return ""
    if not isinstance(value, str) and value != value:
        # NaN-like scalars (float NaN, pandas NaT) are the only values unequal to themselves.
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return ""
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        if value.hour == value.minute == value.second == 0 and not value.microsecond:
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    text = _ZERO_WIDTH_RE.sub("", str(value)).replace("\xa0", " ")
    if text.strip().lower() in {"nan", "nat"}:
        return ""
    return _WS_RE.sub(" ", text).strip()


def is_blank_row(row: Sequence[str]) -> bool:
    return all(cell == "" for cell in row)


def normalize_grid(rows: Iterable[Sequence[Any]], *, width: int | None = None) -> Grid:
    """Canonicalize ``rows`` into a rectangular grid.

    Trailing empty cells and trailing blank rows are dropped; shorter rows are
    padded with ``""`` to the grid width. The width is the longest row unless
    ``width`` is given, in which case a row with non-empty cells past ``width``
    raises ``ValueError`` (rows are never silently truncated).
    """

    cleaned: list[list[str]] = []
    for row_no, row in enumerate(rows):
        cells = [normalize_cell(v) for v in row]
        while cells and cells[-1] == "":
            cells.pop()
        if width is not None and len(cells) > width:
            raise ValueError(
                f"row {row_no + 1} has {len(cells)} cells but the sheet width is {width}"
            )
        cleaned.append(cells)

    while cleaned and not cleaned[-1]:
        cleaned.pop()

    n_cols = width if width is not None else max((len(r) for r in cleaned), default=0)
    return [r + [""] * (n_cols - len(r)) for r in cleaned]


def column_values(rows: Sequence[Sequence[str]], index: int) -> list[str]:
    """Return column ``index`` of ``rows`` (``""`` where a row is too short)."""

    return [row[index] if index < len(row) else "" for row in rows]


__all__ = ["column_values", "is_blank_row", "normalize_cell", "normalize_grid"]
