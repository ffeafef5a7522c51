# ruff: noqa: E402, I001
import sys
from pathlib import Path
from typing import Any

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

import ledger_reconcile.ai_client as ai_client_mod  # noqa: E402
from ledger_reconcile.ai_client import ChatClient  # noqa: E402
from ledger_reconcile.columns import (  # noqa: E402
    AMOUNT_KEYWORDS,
    NAME_KEYWORDS,
    detect_composite,
    match_keyword,
    resolve_column_roles,
    score_name_column,
)
from ledger_reconcile.errors import StructureUnresolved  # noqa: E402
from ledger_reconcile.models import RoleSource  # noqa: E402
from ledger_reconcile.row_summaries import collect_candidates, summarize_rows  # noqa: E402
from ledger_reconcile.settings import Settings  # noqa: E402

from tests.helpers.ledgers import VALID_KEY  # noqa: E402
from tests.helpers.openai_stub import ChatOpenAIStub  # noqa: E402

DEPARTMENT_HEADERS = ["部门", "类别", "费用"]
DEPARTMENT_ROWS = [
    ["行政", "办公用品", "1200.50"],
    ["行政", "房租", "8000"],
    ["销售", "差旅费", "3000"],
]


def _client(
    monkeypatch: pytest.MonkeyPatch, handlers: dict[str, Any], settings: Settings | None = None
) -> tuple[ChatClient, ChatOpenAIStub]:
    stub = ChatOpenAIStub(handlers)
    monkeypatch.setattr(ai_client_mod, "OpenAI", stub.factory)
    return ChatClient(VALID_KEY, settings=settings or Settings()), stub


def _summaries(payload: list[str]) -> dict[str, Any]:
    return {"summaries": [{"input": t, "name": "S:" + t.split(" | ")[-1]} for t in payload]}


# ---- Keyword matching --------------------------------------------------------


def test_match_keyword_prefers_exact_over_contained():
    assert match_keyword(["Item No.", "Name"], NAME_KEYWORDS) == 1
    assert match_keyword(["Item Description", "Amount"], NAME_KEYWORDS) == 0
    assert match_keyword(["项目名称", "金额"], NAME_KEYWORDS) == 0


def test_match_keyword_token_inside_keyword_and_exclusion():
    # "desc" is a token of the header and is contained in "description".
    assert match_keyword(["No", "desc"], NAME_KEYWORDS) == 1
    assert match_keyword(["Name", "Item"], NAME_KEYWORDS, exclude=[0]) == 1
    assert match_keyword(["A", "B"], NAME_KEYWORDS) is None


def test_match_keyword_ignores_short_latin_abbreviations():
    # "cr" sits inside "description" and "to" inside "total".
    assert match_keyword(["Date", "Dr", "Cr", "Balance"], NAME_KEYWORDS) is None
    assert match_keyword(["Date", "Payee", "To", "Memo", "Sum"], AMOUNT_KEYWORDS) is None
    assert match_keyword(["Ref", "Amt"], AMOUNT_KEYWORDS) == 1


# ---- Local statistics ------------------------------------------------------------


def test_score_name_column_exclusions():
    assert score_name_column("", ["Rent", "Power"]) is None
    assert score_name_column("Sum", ["1", "2", "3"]) is None
    assert score_name_column("Flag", ["a", "b", "c"]) is None
    assert score_name_column("Kind", ["Rent", "Rent", "Rent", "Rent"]) is None

    score = score_name_column("Details", ["Office chairs", "Printer paper", "Team lunch"])
    assert score == pytest.approx(0.4 + 0.3 + (12 / 20) * 0.3)


def test_detect_composite_needs_single_majority_column():
    rows = [["员工工资:5000"], ["办公用品:1200.5"], ["备注"]]
    assert detect_composite(["明细"], rows) is True
    assert detect_composite(["明细"], [["员工工资"], ["办公用品"]]) is False
    assert detect_composite(["a", "b"], [["x:1", "y:2"]]) is False


# ---- Resolution chains -------------------------------------------------------------


def test_keywords_resolve_without_any_ai_call(monkeypatch: pytest.MonkeyPatch):
    client, stub = _client(monkeypatch, {})
    resolution = resolve_column_roles(["项目名称", "金额"], [["员工工资", "5000"]], client=client)
    roles = resolution.roles
    assert roles.name_columns == (0,)
    assert roles.amount_column == 1
    assert roles.combination_rule == "{0}"
    assert (roles.source, roles.amount_source) == (RoleSource.KEYWORD, RoleSource.KEYWORD)
    assert not roles.composite_mode
    assert resolution.row_summaries == {}
    assert stub.calls == []


def test_composite_single_column_sheet():
    rows = [["员工工资:5000"], ["办公用品:1200.5"], ["差旅费:3000"]]
    roles = resolve_column_roles(["明细"], rows, settings=Settings()).roles
    assert roles.composite_mode
    assert roles.name_columns == (0,) and roles.amount_column == 0
    assert (roles.source, roles.amount_source) == (RoleSource.COMPOSITE, RoleSource.COMPOSITE)
    assert roles.strategies[0] == "composite"


def test_ai_multi_column_name_with_row_summaries(monkeypatch: pytest.MonkeyPatch):
    client, stub = _client(
        monkeypatch,
        {
            "NAME_COLUMNS": lambda p: {
                "columnIndices": [0, 1],
                "combinationRule": "{0}-{1}",
                "reason": "department plus category",
                "confidence": 0.9,
            },
            "AMOUNT_COLUMNS": lambda p: {"amountColumnIndex": 2, "confidence": 0.95},
            "ROW_TEXTS": _summaries,
        },
    )
    resolution = resolve_column_roles(DEPARTMENT_HEADERS, DEPARTMENT_ROWS, client=client)
    roles = resolution.roles
    assert roles.name_columns == (0, 1)
    assert roles.combination_rule == "{0}-{1}"
    assert roles.source is RoleSource.AI
    assert (roles.amount_column, roles.amount_source) == (2, RoleSource.AI)
    assert resolution.row_summaries == {
        "行政 | 办公用品": "S:办公用品",
        "行政 | 房租": "S:房租",
        "销售 | 差旅费": "S:差旅费",
    }
    assert stub.kinds() == ["NAME_COLUMNS", "AMOUNT_COLUMNS", "ROW_TEXTS"]


def test_ai_rule_without_placeholders_gets_default(monkeypatch: pytest.MonkeyPatch):
    client, _ = _client(
        monkeypatch,
        {
            "NAME_COLUMNS": lambda p: {"columnIndices": [1, 0, 9], "combinationRule": "join"},
            "AMOUNT_COLUMNS": lambda p: {"amountColumnIndex": 2, "confidence": 0.9},
            "ROW_TEXTS": lambda p: {"summaries": []},
        },
    )
    roles = resolve_column_roles(DEPARTMENT_HEADERS, DEPARTMENT_ROWS, client=client).roles
    assert roles.name_columns == (1, 0)
    assert roles.combination_rule == "{0}-{1}"


def test_low_confidence_ai_answers_fall_through_to_local_strategies(
    monkeypatch: pytest.MonkeyPatch,
):
    client, stub = _client(
        monkeypatch,
        {
            "NAME_COLUMNS": lambda p: {"columnIndices": [], "confidence": 0.9},
            "EXISTING_COLUMNS": lambda p: {"bestColumnIndex": 0, "confidence": 0.3},
            "AMOUNT_COLUMNS": lambda p: {"amountColumnIndex": 0, "confidence": 0.2},
        },
    )
    roles = resolve_column_roles(DEPARTMENT_HEADERS, DEPARTMENT_ROWS, client=client).roles
    assert roles.name_columns == (1,)
    assert roles.source is RoleSource.HEURISTIC
    assert (roles.amount_column, roles.amount_source) == (2, RoleSource.HEURISTIC)
    assert roles.strategies == (
        "composite",
        "keyword_name",
        "ai_name_columns",
        "ai_existing_column",
        "local_name",
        "keyword_amount",
        "ai_amount_column",
        "numeric_scan",
    )
    assert stub.kinds() == ["NAME_COLUMNS", "EXISTING_COLUMNS", "AMOUNT_COLUMNS"]


def test_ai_existing_composite_column_enables_composite_mode(monkeypatch: pytest.MonkeyPatch):
    headers = ["日期", "明细"]
    rows = [["2024-01", "员工工资:5000"], ["2024-02", "房租:8000"]]
    client, _ = _client(
        monkeypatch,
        {
            "NAME_COLUMNS": lambda p: {"columnIndices": []},
            "EXISTING_COLUMNS": lambda p: {"bestColumnIndex": 1, "confidence": 0.8},
        },
    )
    roles = resolve_column_roles(headers, rows, client=client).roles
    assert roles.composite_mode
    assert roles.name_columns == (1,) and roles.amount_column == 1
    assert roles.amount_source is RoleSource.COMPOSITE


def test_ai_failures_never_abort_resolution(monkeypatch: pytest.MonkeyPatch):
    # No handlers: every AI call fails with a transport error.
    client, _ = _client(monkeypatch, {})
    roles = resolve_column_roles(DEPARTMENT_HEADERS, DEPARTMENT_ROWS, client=client).roles
    assert roles.name_columns == (1,)
    assert roles.amount_column == 2


def test_local_scoring_and_numeric_scan_prefers_column_after_name():
    headers = ["No", "Details", "Flag", "Sum"]
    rows = [
        ["1", "Office chairs for staff", "a", "120"],
        ["2", "Printer paper", "a", "30"],
        ["3", "Team lunch", "a", "85.5"],
    ]
    roles = resolve_column_roles(headers, rows, settings=Settings()).roles
    assert roles.name_columns == (1,)
    assert roles.amount_column == 3
    assert (roles.source, roles.amount_source) == (RoleSource.HEURISTIC, RoleSource.HEURISTIC)


def test_keyword_columns_without_matching_content_fall_through():
    headers = ["Item", "Details", "Amount"]
    rows = [["1", "Chairs for staff", "120"], ["2", "Printer paper", "30"]]
    roles = resolve_column_roles(headers, rows, settings=Settings()).roles
    assert roles.name_columns == (1,)
    assert roles.source is RoleSource.HEURISTIC
    assert (roles.amount_column, roles.amount_source) == (2, RoleSource.KEYWORD)

    headers = ["Payee", "Total", "Sum"]
    rows = [["Landlord", "n/a", "500.00"], ["Grocer", "n/a", "42.10"]]
    roles = resolve_column_roles(headers, rows, settings=Settings()).roles
    assert (roles.name_columns, roles.source) == ((0,), RoleSource.KEYWORD)
    assert (roles.amount_column, roles.amount_source) == (2, RoleSource.HEURISTIC)
    assert "numeric_scan" in roles.strategies


def test_abbreviated_headers_do_not_hijack_roles():
    headers = ["Date", "Payee", "To", "Memo", "Sum"]
    rows = [
        ["2024-01-02", "Landlord", "Acct A", "rent", "500.00"],
        ["2024-01-03", "Grocer", "Acct B", "food", "42.10"],
    ]
    roles = resolve_column_roles(headers, rows, settings=Settings()).roles
    assert roles.name_columns == (1,)
    assert roles.amount_column == 4


def test_bank_statement_prefers_debit_over_running_balance():
    headers = ["Date", "Narration", "Dr", "Cr", "Balance"]
    rows = [
        ["2024-01-02", "Salary for March 2024", "", "5000.00", "6000.00"],
        ["2024-01-03", "Coffee with a client", "30.00", "", "5970.00"],
        ["2024-01-04", "Office rent for January", "2000.00", "", "3970.00"],
    ]
    roles = resolve_column_roles(headers, rows, settings=Settings()).roles
    assert roles.name_columns == (1,)
    assert (roles.amount_column, roles.amount_source) == (2, RoleSource.HEURISTIC)


def test_unresolvable_structure_reports_what_was_found():
    with pytest.raises(StructureUnresolved) as ei:
        resolve_column_roles(["A", "B"], [["1", "2"], ["3", "4"]], settings=Settings())
    err = ei.value
    assert err.found["name"] is None
    assert err.found["amount"] == "'A' (column 1)"
    assert "local_name" in err.strategies and "numeric_scan" in err.strategies
    assert "name" in str(err)


# ---- Row summaries -------------------------------------------------------------------


def test_collect_candidates_dedupes_and_limits():
    rows = [["a", "x"], ["a", "x"], ["b", ""], ["", ""], ["c", "y"]]
    assert collect_candidates(rows, (0, 1), limit=10) == ["a | x", "b", "c | y"]
    assert collect_candidates(rows, (0, 1), limit=2) == ["a | x", "b"]


def test_summarize_rows_batches_and_degrades_failed_batches(monkeypatch: pytest.MonkeyPatch):
    def handler(payload: list[str]) -> dict[str, Any]:
        if "bad" in payload:
            raise RuntimeError("upstream hiccup")
        return _summaries(payload)

    settings = Settings(row_summary_batch_size=2)
    client, stub = _client(monkeypatch, {"ROW_TEXTS": handler}, settings)
    out = summarize_rows(client, ["a", "b", "bad", "c"], settings=settings)
    assert out == {"a": "S:a", "b": "S:b"}
    assert len(stub.calls) == 2
