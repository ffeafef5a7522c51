"""Turn data rows into :class:`~ledger_reconcile.models.Entry` objects.

Rows that cannot produce an entry (blank name, unparseable amount, composite
cell without an amount tail) are skipped and logged; only a file without a
single valid row is an error.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from .amounts import is_numeric_cell, split_composite, try_parse_amount
from .errors import StructureUnresolved
from .grid import is_blank_row
from .logging_setup import get_logger
from .models import ColumnResolution, Entry, EntrySource, Grid, HeaderDecision
from .row_summaries import candidate_text
from .settings import Settings

CONTEXT_JOINER = " | "
ELLIPSIS = "…"

_PLACEHOLDER_RE = re.compile(r"\{(\d+)\}")
_EMPTY_BRACKETS_RE = re.compile(r"\(\s*\)|（\s*）|\[\s*\]|【\s*】")
_SEP_CLASS = r"[-–—_/|:：,，]"
_SEP_RUN_RE = re.compile(rf"\s*({_SEP_CLASS})(?:\s*{_SEP_CLASS})+\s*")
_EDGE_SEPS_RE = re.compile(rf"^(?:\s|{_SEP_CLASS})+|(?:\s|{_SEP_CLASS})+$")
_WS_RE = re.compile(r"\s+")

_logger = get_logger("ledger_reconcile.extract")


def apply_combination_rule(rule: str, values: Sequence[str]) -> str:
    """Substitute ``{0}``, ``{1}``, ... in ``rule`` and tidy the result.

    Placeholders without a value become empty. Empty bracket pairs, runs of
    separators left by empty values, and leading/trailing separators are
    removed: ``"{0}({1})-{2}"`` with ``["A", "", "C"]`` gives ``"A-C"``.
    """

    def _sub(m: re.Match[str]) -> str:
        i = int(m.group(1))
        return values[i].strip() if i < len(values) else ""

    text = _PLACEHOLDER_RE.sub(_sub, rule)
    prev = None
    while prev != text:
        prev = text
        text = _EMPTY_BRACKETS_RE.sub("", text)
        text = _SEP_RUN_RE.sub(r"\1", text)
        text = _EDGE_SEPS_RE.sub("", text)
    return _WS_RE.sub(" ", text).strip()


def build_context_text(row: Sequence[str], amount_column: int, max_chars: int) -> str:
    """Denoised summary of a row's non-amount cells.

    Empty, purely numeric and single-character cells are dropped, adjacent
    repeats collapse, and the result is cut to ``max_chars`` with a trailing
    ellipsis.
    """

    parts: list[str] = []
    for i, cell in enumerate(row):
        if i == amount_column:
            continue
        c = cell.strip()
        if len(c) <= 1 or is_numeric_cell(c):
            continue
        if parts and parts[-1] == c:
            continue
        parts.append(c)
    text = CONTEXT_JOINER.join(parts)
    if len(text) > max_chars:
        text = text[: max(0, max_chars - len(ELLIPSIS))].rstrip() + ELLIPSIS
    return text


def extract_entries(
    grid: Grid,
    decision: HeaderDecision,
    resolution: ColumnResolution,
    source: EntrySource,
    *,
    settings: Settings | None = None,
) -> list[Entry]:
    """Extract the entries of one file.

    Entry IDs are ``"<source>_<sheet row number>"`` (1-based), so they are
    unique within the file and point the user at the originating row.
    """

    settings = settings or Settings.from_env()
    roles = resolution.roles
    summaries = resolution.row_summaries
    entries: list[Entry] = []
    skipped = 0

    for grid_index in range(decision.data_start, len(grid)):
        row = grid[grid_index]
        if is_blank_row(row):
            continue
        row_no = grid_index + 1

        if roles.composite_mode:
            cell = row[roles.name_columns[0]]
            split = split_composite(cell)
            if split is None:
                _logger.warning(
                    "extract:skip source=%s row=%d reason=composite_unsplittable cell=%r",
                    source,
                    row_no,
                    cell,
                )
                skipped += 1
                continue
            name, amount = split
        else:
            candidate = candidate_text(row, roles.name_columns)
            name = summaries.get(candidate) or apply_combination_rule(
                roles.combination_rule, [row[i] for i in roles.name_columns]
            )
            raw_amount = row[roles.amount_column]
            parsed = try_parse_amount(raw_amount)
            if parsed is None:
                _logger.warning(
                    "extract:skip source=%s row=%d reason=amount_unparseable value=%r",
                    source,
                    row_no,
                    raw_amount,
                )
                skipped += 1
                continue
            amount = parsed

        if not name:
            _logger.warning("extract:skip source=%s row=%d reason=empty_name", source, row_no)
            skipped += 1
            continue

        context = build_context_text(row, roles.amount_column, settings.context_max_chars)
        entries.append(
            Entry(
                id=f"{source}_{row_no}",
                name=context or name,
                original_name=name,
                amount=amount,
                source=source,
                context_text=context,
            )
        )

    _logger.info("extract:done source=%s entries=%d skipped=%d", source, len(entries), skipped)
    if not entries:
        headers = decision.headers

        def _label(i: int) -> str:
            return headers[i] if i < len(headers) and headers[i] else f"column {i + 1}"

        raise StructureUnresolved(
            f"No valid data rows in the {source} file: {skipped} row(s) had no usable "
            "name or amount.",
            found={
                "name": ", ".join(_label(i) for i in roles.name_columns),
                "amount": _label(roles.amount_column),
            },
            strategies=roles.strategies,
        )
    return entries


__all__ = [
    "CONTEXT_JOINER",
    "ELLIPSIS",
    "apply_combination_rule",
    "build_context_text",
    "extract_entries",
]
