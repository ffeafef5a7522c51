"""Per-category totals, status derivation and manual entry moves."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from .logging_setup import get_logger
from .models import Category, CategoryMap, CategoryStatus, Entry, EntrySource

UNCLASSIFIED = "Unclassified"

_ZERO = Decimal("0.00")

_logger = get_logger("ledger_reconcile.reconcile")


def _total(entries: Iterable[Entry]) -> Decimal:
    return sum((e.amount for e in entries), _ZERO)


def derive_status(category: Category) -> CategoryStatus:
    """``missing`` when a side is empty, else ``match`` iff the totals agree.

    The ``Unclassified`` bucket holds unreconciled items and is always
    ``mismatch`` while it has entries.
    """

    if category.name == UNCLASSIFIED and (category.standard or category.check):
        return CategoryStatus.MISMATCH
    if not category.standard or not category.check:
        return CategoryStatus.MISSING
    return CategoryStatus.MATCH if category.difference == _ZERO else CategoryStatus.MISMATCH


def recompute_category(category: Category) -> Category:
    """Refresh totals, difference and status of ``category`` in place."""

    category.total_standard = _total(category.standard)
    category.total_check = _total(category.check)
    category.difference = abs(category.total_standard - category.total_check)
    category.status = derive_status(category)
    return category


def calculate(categories: CategoryMap) -> CategoryMap:
    """Recompute every category from its current membership.

    Depends only on membership, so running it again yields identical values.
    """

    for name, category in categories.items():
        recompute_category(category)
        for entry in category.entries():
            entry.category = name
    _logger.info(
        "reconcile:calculated categories=%d match=%d mismatch=%d missing=%d",
        len(categories),
        *(sum(1 for c in categories.values() if c.status is s) for s in CategoryStatus),
    )
    return categories


def build_category(name: str, entries: Iterable[Entry]) -> Category:
    """Create a category holding ``entries`` (split by source) with fresh totals."""

    category = Category(name=name)
    for entry in entries:
        bucket = category.standard if entry.source is EntrySource.STANDARD else category.check
        bucket.append(entry)
        entry.category = name
    return recompute_category(category)


def move_entry(
    categories: CategoryMap, entry_id: str, from_category: str, to_category: str
) -> Entry:
    """Transfer entry ``entry_id`` from ``from_category`` to ``to_category``.

    The entry object is removed from whichever list of the source category
    holds it and appended to the destination list matching its source. A new
    destination starts with zeroed totals. Totals are not recomputed here.
    Raises ``KeyError`` when the source category or the entry is unknown.
    """

    source_cat = categories.get(from_category)
    if source_cat is None:
        raise KeyError(f"unknown category: {from_category!r}")
    entry = next((e for e in source_cat.entries() if e.id == entry_id), None)
    if entry is None:
        raise KeyError(f"entry {entry_id!r} is not in category {from_category!r}")
    if from_category == to_category:
        return entry

    source_cat.standard[:] = [e for e in source_cat.standard if e is not entry]
    source_cat.check[:] = [e for e in source_cat.check if e is not entry]

    dest = categories.get(to_category)
    if dest is None:
        dest = categories[to_category] = Category(name=to_category)
    (dest.standard if entry.source is EntrySource.STANDARD else dest.check).append(entry)
    entry.category = to_category
    _logger.info("reconcile:moved entry=%s from=%s to=%s", entry_id, from_category, to_category)
    return entry


__all__ = [
    "UNCLASSIFIED",
    "build_category",
    "calculate",
    "derive_status",
    "move_entry",
    "recompute_category",
]
