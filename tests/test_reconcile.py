# ruff: noqa: E402, I001
import sys
from decimal import Decimal
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from ledger_reconcile.models import Category, CategoryStatus, Entry, EntrySource  # noqa: E402
from ledger_reconcile.reconcile import (  # noqa: E402
    UNCLASSIFIED,
    build_category,
    calculate,
    move_entry,
)


def _std(n: int, amount: str, name: str = "item") -> Entry:
    return Entry(f"standard_{n}", name, name, Decimal(amount), EntrySource.STANDARD)


def _chk(n: int, amount: str, name: str = "item") -> Entry:
    return Entry(f"check_{n}", name, name, Decimal(amount), EntrySource.CHECK)


def _categories() -> dict[str, Category]:
    return {
        "Salary": build_category("Salary", [_std(2, "5000.00"), _chk(2, "5000.00")]),
        "Rent": build_category("Rent", [_std(3, "8000.00"), _chk(3, "7000.00"), _chk(4, "500")]),
        "Travel": build_category("Travel", [_std(4, "120.40")]),
    }


def test_status_and_totals():
    cats = calculate(_categories())
    assert cats["Salary"].status is CategoryStatus.MATCH
    assert cats["Rent"].status is CategoryStatus.MISMATCH
    assert cats["Rent"].total_check == Decimal("7500.00")
    assert cats["Rent"].difference == Decimal("500.00")
    assert cats["Travel"].status is CategoryStatus.MISSING
    assert cats["Travel"].difference == Decimal("120.40")


def test_calculate_is_idempotent_and_preserves_sums():
    cats = _categories()
    first = {
        n: (c.total_standard, c.total_check, c.difference, c.status)
        for n, c in calculate(cats).items()
    }
    second = {
        n: (c.total_standard, c.total_check, c.difference, c.status)
        for n, c in calculate(cats).items()
    }
    assert first == second
    assert sum(c.total_standard for c in cats.values()) == Decimal("13120.40")
    assert sum(c.total_check for c in cats.values()) == Decimal("12500.00")


def test_unclassified_bucket_is_never_a_match():
    bucket = build_category(UNCLASSIFIED, [_std(2, "10"), _chk(2, "10")])
    assert bucket.status is CategoryStatus.MISMATCH
    empty = calculate({UNCLASSIFIED: Category(name=UNCLASSIFIED)})[UNCLASSIFIED]
    assert empty.status is CategoryStatus.MISSING


def test_move_entry_transfers_identity_and_defers_totals():
    cats = calculate(_categories())
    moved = move_entry(cats, "check_4", "Rent", "Deposits")
    assert moved.category == "Deposits"
    assert [e.id for e in cats["Rent"].check] == ["check_3"]
    assert cats["Deposits"].check == [moved]
    assert cats["Deposits"].total_check == Decimal("0.00")
    # Totals refresh only when recalculated.
    assert cats["Rent"].total_check == Decimal("7500.00")

    calculate(cats)
    assert cats["Rent"].status is CategoryStatus.MISMATCH
    assert cats["Rent"].difference == Decimal("1000.00")
    assert cats["Deposits"].status is CategoryStatus.MISSING
    assert moved in cats["Deposits"].entries()


def test_move_entry_into_existing_category_and_same_category_noop():
    cats = calculate(_categories())
    move_entry(cats, "standard_4", "Travel", "Salary")
    assert [e.id for e in cats["Salary"].standard] == ["standard_2", "standard_4"]
    assert cats["Travel"].standard == []

    before = list(cats["Salary"].standard)
    move_entry(cats, "standard_2", "Salary", "Salary")
    assert cats["Salary"].standard == before


def test_move_entry_rejects_unknown_category_or_entry():
    cats = _categories()
    with pytest.raises(KeyError):
        move_entry(cats, "standard_2", "Nope", "Rent")
    with pytest.raises(KeyError):
        move_entry(cats, "standard_99", "Salary", "Rent")
    with pytest.raises(KeyError):
        move_entry(cats, "standard_3", "Salary", "Rent")
