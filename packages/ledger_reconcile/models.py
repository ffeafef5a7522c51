"""Data models and type aliases for ``ledger_reconcile``.

Plain dataclasses carry the pipeline's own values (grids, decisions, entries,
categories). Response shapes coming back from the AI provider are validated
separately with pydantic in :mod:`ledger_reconcile.responses`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from typing import NamedTuple

# ---------------------------------------------------------------------------
# Grid
# ---------------------------------------------------------------------------

type Grid = list[list[str]]
"""A rectangular sheet: every row has the same number of string cells."""


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class HeaderSource(StrEnum):
    HEURISTIC = "heuristic"
    AI = "ai"
    SYNTHESIZED = "synthesized"


class RoleSource(StrEnum):
    KEYWORD = "keyword"
    AI = "ai"
    HEURISTIC = "heuristic"
    COMPOSITE = "composite"


class EntrySource(StrEnum):
    STANDARD = "standard"
    CHECK = "check"


class CategoryStatus(StrEnum):
    MATCH = "match"
    MISMATCH = "mismatch"
    MISSING = "missing"


# ---------------------------------------------------------------------------
# Structure decisions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class HeaderDecision:
    """Which grid row holds the column names, and how that was decided.

    Attributes
    ----------
    row_index:
        0-based grid row of the header, or ``-1`` when the file has none.
    confidence:
        Confidence in [0, 1] of the deciding strategy.
    source:
        The strategy that produced the decision.
    headers:
        Column names used downstream. File-provided when ``row_index >= 0``,
        otherwise AI-proposed or placeholder names (``"Column 1"``, ...).
    """

    row_index: int
    confidence: float
    source: HeaderSource
    headers: tuple[str, ...] = ()

    @property
    def data_start(self) -> int:
        """Grid index of the first data row."""

        return self.row_index + 1


@dataclass(frozen=True, slots=True)
class ColumnRoleAssignment:
    """Resolved name/amount roles for one file.

    ``combination_rule`` is a template with ``{0}``, ``{1}``, ... placeholders
    that map positionally onto ``name_columns``. In ``composite_mode`` the name
    and the amount share the single column ``name_columns[0]``.
    """

    name_columns: tuple[int, ...]
    amount_column: int
    combination_rule: str = "{0}"
    composite_mode: bool = False
    source: RoleSource = RoleSource.KEYWORD
    amount_source: RoleSource = RoleSource.KEYWORD
    strategies: tuple[str, ...] = ()


class ColumnResolution(NamedTuple):
    """Column roles plus the AI row summaries keyed by candidate row text."""

    roles: ColumnRoleAssignment
    row_summaries: Mapping[str, str]


# ---------------------------------------------------------------------------
# Entries and categories
# ---------------------------------------------------------------------------


@dataclass(slots=True, eq=False)
class Entry:
    """A single financial line item extracted from one ledger file.

    Every field except ``category`` is fixed once the extractor creates the
    entry. ``category`` records the entry's current category membership and is
    only changed by classification and manual moves. Identity (``is``) is the
    entry's identity; two entries with equal fields are still distinct.
    """

    id: str
    name: str
    original_name: str
    amount: Decimal
    source: EntrySource
    context_text: str = ""
    category: str | None = None


@dataclass(slots=True)
class Category:
    """A named group of entries from both files plus its reconciled totals.

    ``total_standard``, ``total_check``, ``difference`` and ``status`` are
    derived from membership by :func:`ledger_reconcile.reconcile.recompute_category`;
    they go stale while entries are moved during manual confirmation and are
    refreshed at the Calculate stage.
    """

    name: str
    standard: list[Entry] = field(default_factory=list)
    check: list[Entry] = field(default_factory=list)
    total_standard: Decimal = Decimal("0.00")
    total_check: Decimal = Decimal("0.00")
    difference: Decimal = Decimal("0.00")
    status: CategoryStatus = CategoryStatus.MISSING

    def entries(self) -> list[Entry]:
        return [*self.standard, *self.check]


type CategoryMap = dict[str, Category]
"""Categories keyed by their unique name, in insertion order."""


class ParsedData(NamedTuple):
    standard: list[Entry]
    check: list[Entry]


class ClassificationResult(NamedTuple):
    categories: CategoryMap
    summary: str


__all__ = [
    "Category",
    "CategoryMap",
    "CategoryStatus",
    "ClassificationResult",
    "ColumnResolution",
    "ColumnRoleAssignment",
    "Entry",
    "EntrySource",
    "Grid",
    "HeaderDecision",
    "HeaderSource",
    "ParsedData",
    "RoleSource",
]
