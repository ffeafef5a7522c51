"""Prompt construction for every AI call the pipeline makes.

Each builder returns a ``[system, user]`` message pair. Structured inputs are
embedded as deterministic JSON between ``BEGIN_<KIND>_JSON`` / ``END_<KIND>_JSON``
markers, and every JSON-returning prompt spells out the exact object shape the
matching parser in :mod:`ledger_reconcile.responses` expects.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .ai_client import ChatMessage
from .amounts import fmt_amount, is_numeric_cell
from .models import CategoryMap, CategoryStatus, Entry

KIND_HEADER_ROWS = "HEADER_ROWS"
KIND_COLUMN_SAMPLES = "COLUMN_SAMPLES"
KIND_NAME_COLUMNS = "NAME_COLUMNS"
KIND_ROW_TEXTS = "ROW_TEXTS"
KIND_EXISTING_COLUMNS = "EXISTING_COLUMNS"
KIND_AMOUNT_COLUMNS = "AMOUNT_COLUMNS"
KIND_ENTRIES = "ENTRIES"
KIND_CATEGORY_TOTALS = "CATEGORY_TOTALS"

_JSON_ONLY = "Return only the JSON object, with no code fences and no commentary."


def begin_marker(kind: str) -> str:
    return f"BEGIN_{kind}_JSON\n"


def end_marker(kind: str) -> str:
    return f"\nEND_{kind}_JSON"


def _embed(kind: str, payload: Any) -> str:
    return begin_marker(kind) + json.dumps(payload, ensure_ascii=False) + end_marker(kind)


def _messages(system: str, user: str) -> list[ChatMessage]:
    return [{"role": "system", "content": system}, {"role": "user", "content": user}]


def _columns_payload(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> dict[str, Any]:
    return {
        "columns": [{"index": i, "header": h} for i, h in enumerate(headers)],
        "sampleRows": [list(r) for r in rows],
    }


# ---- Structure inference ----------------------------------------------------


def build_header_messages(rows: Sequence[Sequence[str]]) -> list[ChatMessage]:
    """Ask which of the leading ``rows`` is the header row.

    Each row is described by its cells plus non-empty / numeric / text counts.
    """

    stats = []
    for i, row in enumerate(rows):
        non_empty = [c for c in row if c]
        numeric = sum(1 for c in non_empty if is_numeric_cell(c))
        stats.append(
            {
                "index": i,
                "cells": list(row),
                "nonEmpty": len(non_empty),
                "numeric": numeric,
                "text": len(non_empty) - numeric,
            }
        )
    system = (
        "You analyse the layout of spreadsheet exports from accounting systems. "
        "Identify the row that holds the column names."
    )
    user = (
        "Below are the first rows of a sheet with per-row statistics. Title rows, "
        "notes and blank rows may precede the header. If no row is a header "
        "(every row is data), answer -1.\n"
        + _embed(KIND_HEADER_ROWS, stats)
        + "\nRespond with exactly this JSON shape:\n"
        '{"headerRowIndex": <int, 0-based, or -1>, "reason": <string>, '
        '"confidence": <number 0..1>, "rowType": "header" | "data" | "title"}\n'
        + _JSON_ONLY
    )
    return _messages(system, user)


def build_column_names_messages(rows: Sequence[Sequence[str]], n_cols: int) -> list[ChatMessage]:
    system = "You name the columns of headerless accounting sheets."
    user = (
        f"The sheet has {n_cols} columns and no header row. Propose a short, "
        "descriptive name for every column based on these data rows.\n"
        + _embed(KIND_COLUMN_SAMPLES, [list(r) for r in rows])
        + f"\nRespond with exactly this JSON shape ({n_cols} names, in column order):\n"
        '{"columnNames": [<string>, ...]}\n' + _JSON_ONLY
    )
    return _messages(system, user)


def build_name_columns_messages(
    headers: Sequence[str], rows: Sequence[Sequence[str]], *, exclude: Iterable[int] = ()
) -> list[ChatMessage]:
    """Ask which column(s) together describe the line item."""

    excluded = sorted(set(exclude))
    system = (
        "You map spreadsheet columns to accounting fields. A line item's name may be "
        "spread over several columns (project, department, subject)."
    )
    note = f" Do not use columns {excluded}; they hold amounts." if excluded else ""
    user = (
        "Choose the column or columns that, combined, best name each line item."
        + note
        + " Describe how to combine them with a template using {0}, {1}, ... for the "
        "chosen columns in the order you list them, e.g. \"{0}-{1}\".\n"
        + _embed(KIND_NAME_COLUMNS, _columns_payload(headers, rows))
        + "\nRespond with exactly this JSON shape:\n"
        '{"columnIndices": [<int>, ...], "combinationRule": <string>, '
        '"reason": <string>, "confidence": <number 0..1>}\n'
        "Use an empty columnIndices list when no column names the items.\n" + _JSON_ONLY
    )
    return _messages(system, user)


def build_row_summary_messages(texts: Sequence[str]) -> list[ChatMessage]:
    system = "You write short, specific names for accounting line items."
    user = (
        "Each input below is the combined text of one ledger row. Write one concise "
        "name (at most 20 characters, same language as the input) for every input.\n"
        + _embed(KIND_ROW_TEXTS, list(texts))
        + "\nRespond with exactly this JSON shape, copying each input verbatim:\n"
        '{"summaries": [{"input": <string>, "name": <string>}, ...]}\n' + _JSON_ONLY
    )
    return _messages(system, user)


def build_existing_column_messages(
    headers: Sequence[str], rows: Sequence[Sequence[str]], *, exclude: Iterable[int] = ()
) -> list[ChatMessage]:
    excluded = sorted(set(exclude))
    system = "You map spreadsheet columns to accounting fields."
    note = f" Ignore columns {excluded}." if excluded else ""
    user = (
        "No column is labelled as the item name. Decide whether any existing column "
        "contains or implies the item name anyway, for example a column holding "
        "values like \"ProjectA:100\"." + note + "\n"
        + _embed(KIND_EXISTING_COLUMNS, _columns_payload(headers, rows))
        + "\nRespond with exactly this JSON shape:\n"
        '{"bestColumnIndex": <int, or -1 if none>, "reason": <string>, '
        '"confidence": <number 0..1>}\n' + _JSON_ONLY
    )
    return _messages(system, user)


def build_amount_column_messages(
    headers: Sequence[str], rows: Sequence[Sequence[str]], *, exclude: Iterable[int] = ()
) -> list[ChatMessage]:
    excluded = sorted(set(exclude))
    system = "You map spreadsheet columns to accounting fields."
    note = f" Columns {excluded} hold item names." if excluded else ""
    user = (
        "Identify the single column holding the monetary amount of each line item."
        + note + "\n"
        + _embed(KIND_AMOUNT_COLUMNS, _columns_payload(headers, rows))
        + "\nRespond with exactly this JSON shape:\n"
        '{"amountColumnIndex": <int, or -1 if none>, "reason": <string>, '
        '"confidence": <number 0..1>}\n' + _JSON_ONLY
    )
    return _messages(system, user)


# ---- Classification and summary --------------------------------------------


def _entry_lines(entries: Sequence[Entry]) -> list[dict[str, str]]:
    return [{"id": e.id, "name": e.name, "amount": fmt_amount(e.amount)} for e in entries]


def build_classification_messages(
    standard: Sequence[Entry], check: Sequence[Entry]
) -> list[ChatMessage]:
    """Ask the AI to group entries of both ledgers into shared categories.

    Entries are referenced by their IDs (``standard_3``, ``check_7``).
    """

    system = (
        "You are a financial analyst reconciling two ledgers. Group line items with "
        "the same meaning into categories so their totals can be compared."
    )
    user = (
        "Rules:\n"
        "1. Group by semantic similarity of the names (salary and wages belong together).\n"
        "2. Put items from both ledgers that describe the same thing in the same category.\n"
        "3. Keep category names short; use subcategories only when they help.\n"
        "4. Reference every item by its id, exactly once.\n"
        + _embed(
            KIND_ENTRIES,
            {"standard": _entry_lines(standard), "check": _entry_lines(check)},
        )
        + "\nRespond with exactly this JSON shape:\n"
        '{"categories": {"<category name>": {"standard": ["standard_<n>", ...], '
        '"check": ["check_<n>", ...], "subcategories": {"<name>": {...same shape...}}}}}\n'
        + _JSON_ONLY
    )
    return _messages(system, user)


_STATUS_LABEL: Mapping[CategoryStatus, str] = {
    CategoryStatus.MATCH: "match",
    CategoryStatus.MISMATCH: "mismatch",
    CategoryStatus.MISSING: "missing on one side",
}


def build_summary_messages(categories: CategoryMap) -> list[ChatMessage]:
    """Ask for a plain-text reconciliation report over the computed totals."""

    rows = [
        {
            "category": name,
            "totalStandard": fmt_amount(cat.total_standard),
            "totalCheck": fmt_amount(cat.total_check),
            "difference": fmt_amount(cat.difference),
            "status": _STATUS_LABEL[cat.status],
        }
        for name, cat in categories.items()
    ]
    system = (
        "You are a financial auditor. Write clear, concise reconciliation reports."
    )
    user = (
        "Write a reconciliation report for these per-category totals. Cover: an "
        "overview, a comparison per category, the anomalies (large differences or "
        "missing items) and recommendations.\n"
        + _embed(KIND_CATEGORY_TOTALS, rows)
        + "\nRespond with the report text only (plain text, no JSON)."
    )
    return _messages(system, user)


__all__ = [
    "KIND_AMOUNT_COLUMNS",
    "KIND_CATEGORY_TOTALS",
    "KIND_COLUMN_SAMPLES",
    "KIND_ENTRIES",
    "KIND_EXISTING_COLUMNS",
    "KIND_HEADER_ROWS",
    "KIND_NAME_COLUMNS",
    "KIND_ROW_TEXTS",
    "begin_marker",
    "build_amount_column_messages",
    "build_classification_messages",
    "build_column_names_messages",
    "build_existing_column_messages",
    "build_header_messages",
    "build_name_columns_messages",
    "build_row_summary_messages",
    "build_summary_messages",
    "end_marker",
]
