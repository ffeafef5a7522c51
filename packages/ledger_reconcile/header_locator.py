"""Locate the header row of a normalized grid.

Strategy order (see :mod:`ledger_reconcile.attempts`):

1. AI classifier over per-row statistics, only with a client; accepted above a
   0.5 confidence floor.
2. Heuristic: the first row with at least two non-empty cells and at least
   one non-numeric cell.

When the AI reports that the sheet has no header at all, it is asked to name
the columns from the data; if that fails (or no header is found without AI),
placeholder names ``Column 1``, ``Column 2``, ... are synthesized. Header
detection never raises for AI failures.
"""

from __future__ import annotations

from collections.abc import Sequence

from . import prompting
from .ai_client import ChatClient
from .amounts import is_numeric_cell
from .attempts import Attempt, Strategy, run_chain
from .errors import RemoteCallFailed, ResponseUnparseable
from .grid import is_blank_row
from .logging_setup import get_logger
from .models import Grid, HeaderDecision, HeaderSource
from .responses import ColumnNamesResponse, HeaderRowResponse, parse_response
from .settings import Settings

_AI_FLOOR: float = 0.5
_HEURISTIC_CONFIDENCE: float = 0.6
_NO_HEADER = -1

_logger = get_logger("ledger_reconcile.header_locator")


def placeholder_names(n_cols: int) -> tuple[str, ...]:
    return tuple(f"Column {i + 1}" for i in range(n_cols))


def looks_like_header(row: Sequence[str]) -> bool:
    non_empty = [c for c in row if c]
    return len(non_empty) >= 2 and any(not is_numeric_cell(c) for c in non_empty)


def _heuristic(rows: Sequence[Sequence[str]]) -> Attempt | None:
    for i, row in enumerate(rows):
        if looks_like_header(row):
            return Attempt(i, _HEURISTIC_CONFIDENCE, HeaderSource.HEURISTIC)
    return None


def _ai_header(client: ChatClient, rows: Sequence[Sequence[str]]) -> Attempt | None:
    text = client.complete(
        prompting.build_header_messages(rows), temperature=0.1, max_tokens=300, purpose="header"
    )
    parsed = parse_response(text, HeaderRowResponse)
    idx = parsed.header_row_index
    if idx != _NO_HEADER and not (0 <= idx < len(rows)):
        _logger.info("header:ai_out_of_range row=%d scanned=%d", idx, len(rows))
        return None
    if idx != _NO_HEADER and is_blank_row(rows[idx]):
        _logger.info("header:ai_blank_row row=%d", idx)
        return None
    _logger.debug(
        "header:ai_answer row=%d confidence=%.2f type=%s reason=%s",
        idx,
        parsed.confidence,
        parsed.row_type,
        parsed.reason,
    )
    return Attempt(idx, parsed.confidence, HeaderSource.AI)


def _ai_column_names(
    client: ChatClient, rows: Sequence[Sequence[str]], n_cols: int
) -> tuple[str, ...] | None:
    try:
        text = client.complete(
            prompting.build_column_names_messages(rows, n_cols),
            temperature=0.2,
            max_tokens=400,
            purpose="column_names",
        )
        parsed = parse_response(text, ColumnNamesResponse)
    except (RemoteCallFailed, ResponseUnparseable) as e:
        _logger.warning("header:column_names_failed error=%s detail=%s", e.__class__.__name__, e)
        return None
    if not any(parsed.column_names):
        return None
    fallback = placeholder_names(n_cols)
    names = list(parsed.column_names[:n_cols])
    names += fallback[len(names) :]
    return tuple(n or fallback[i] for i, n in enumerate(names))


def locate_header(
    grid: Grid, *, client: ChatClient | None = None, settings: Settings | None = None
) -> HeaderDecision:
    """Return the :class:`HeaderDecision` for ``grid``.

    Only the first ``settings.header_scan_rows`` rows are inspected. Without a
    client the result is purely heuristic.
    """

    settings = settings or (client.settings if client is not None else Settings.from_env())
    scan = grid[: settings.header_scan_rows]
    n_cols = len(grid[0]) if grid else 0

    strategies: list[Strategy] = []
    if client is not None:
        strategies.append(Strategy("ai_header", lambda: _ai_header(client, scan), gated=True))
    strategies.append(Strategy("heuristic", lambda: _heuristic(scan)))
    result = run_chain(strategies, floor=_AI_FLOOR, label="header")
    attempt = result.attempt

    if attempt is not None and attempt.value != _NO_HEADER:
        idx = int(attempt.value)
        _logger.info(
            "header:decided row=%d source=%s confidence=%.2f",
            idx,
            attempt.source,
            attempt.confidence,
        )
        return HeaderDecision(idx, attempt.confidence, attempt.source, tuple(grid[idx]))

    if attempt is not None and client is not None:
        # The AI is confident the sheet starts with data.
        names = _ai_column_names(client, grid[: settings.sample_rows], n_cols)
        if names is not None:
            _logger.info("header:ai_column_names columns=%d", n_cols)
            return HeaderDecision(_NO_HEADER, attempt.confidence, HeaderSource.AI, names)
        return HeaderDecision(
            _NO_HEADER, attempt.confidence, HeaderSource.SYNTHESIZED, placeholder_names(n_cols)
        )

    _logger.info("header:synthesized columns=%d tried=%s", n_cols, ",".join(result.tried))
    return HeaderDecision(_NO_HEADER, 0.0, HeaderSource.SYNTHESIZED, placeholder_names(n_cols))


__all__ = ["locate_header", "looks_like_header", "placeholder_names"]
