# ruff: noqa: E402, I001
import sys
import threading
from decimal import Decimal
from pathlib import Path
from typing import Any

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

import ledger_reconcile.ai_client as ai_client_mod  # noqa: E402
from ledger_reconcile.errors import InputMissing, StructureUnresolved  # noqa: E402
from ledger_reconcile.models import (  # noqa: E402
    CategoryStatus,
    ClassificationResult,
    Entry,
    EntrySource,
    ParsedData,
)
from ledger_reconcile.reconcile import build_category  # noqa: E402
from ledger_reconcile.settings import Settings  # noqa: E402
from ledger_reconcile.workflow import (  # noqa: E402
    ReconcileWorkflow,
    Stage,
    ThreadRunner,
    WorkflowServices,
)

from tests.helpers.ledgers import VALID_KEY, salary_ledger  # noqa: E402
from tests.helpers.openai_stub import ChatOpenAIStub, group_by_name  # noqa: E402

_CLIENT = object()


def _parsed() -> ParsedData:
    return ParsedData(
        [Entry("standard_2", "工资", "工资", Decimal("5000.00"), EntrySource.STANDARD)],
        [
            Entry("check_2", "工资", "工资", Decimal("5000.00"), EntrySource.CHECK),
            Entry("check_3", "咖啡", "咖啡", Decimal("30.00"), EntrySource.CHECK),
        ],
    )


def _classify(_client: Any, standard: list[Entry], check: list[Entry]) -> ClassificationResult:
    return ClassificationResult(
        {"Salary": build_category("Salary", [*standard, *check])}, "grouped"
    )


def _services(**overrides: Any) -> WorkflowServices:
    defaults: dict[str, Any] = {
        "parse": lambda std, chk, client, settings: _parsed(),
        "classify": _classify,
        "summarize": lambda client, categories: "report",
        "client_factory": lambda credential, settings: _CLIENT,
    }
    defaults.update(overrides)
    return WorkflowServices(**defaults)


def _ready(wf: ReconcileWorkflow, tmp_path: Path) -> ReconcileWorkflow:
    wf.set_file(EntrySource.STANDARD, tmp_path / "a.csv")
    wf.set_file(EntrySource.CHECK, tmp_path / "b.csv")
    wf.set_credential(VALID_KEY)
    return wf


# ---- End to end ----------------------------------------------------------------------


def test_full_run_on_matching_ledgers(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    stub = ChatOpenAIStub(
        {
            "HEADER_ROWS": lambda p: {"headerRowIndex": 0, "confidence": 0.95},
            "ENTRIES": group_by_name,
            "CATEGORY_TOTALS": lambda p: "All five categories match.",
        }
    )
    monkeypatch.setattr(ai_client_mod, "OpenAI", stub.factory)

    wf = ReconcileWorkflow(settings=Settings())
    wf.set_file(EntrySource.STANDARD, salary_ledger(tmp_path / "standard.csv"))
    wf.set_file(EntrySource.CHECK, salary_ledger(tmp_path / "check.csv"))
    wf.set_credential(VALID_KEY)

    assert wf.next()
    snap = wf.snapshot()
    assert snap.stage is Stage.DISPLAY and snap.error is None
    assert len(snap.standard) == 5 and len(snap.check) == 5
    assert snap.standard[0].id == "standard_2"

    assert wf.next()
    assert wf.stage is Stage.MANUAL_CONFIRM
    assert wf.next()
    snap = wf.snapshot()
    assert snap.stage is Stage.COMPARE
    assert len(snap.categories) == 5
    for category in snap.categories.values():
        assert category.status is CategoryStatus.MATCH
        assert category.difference == Decimal("0.00")

    assert wf.next()
    snap = wf.snapshot()
    assert snap.stage is Stage.SUMMARIZE
    assert snap.summary == "All five categories match."
    assert not snap.loading
    assert stub.kinds().count("HEADER_ROWS") == 2
    assert stub.kinds()[-2:] == ["ENTRIES", "CATEGORY_TOTALS"]


# ---- Guards and transitions ---------------------------------------------------------


def test_upload_requires_both_files_and_credential(tmp_path: Path):
    wf = ReconcileWorkflow(services=_services(), settings=Settings())
    wf.set_file(EntrySource.STANDARD, tmp_path / "a.csv")
    assert wf.next() is False
    assert wf.stage is Stage.UPLOAD
    with pytest.raises(InputMissing) as ei:
        wf.require_inputs()
    assert "check file" in str(ei.value) and "credential" in str(ei.value)

    wf.set_file("check", tmp_path / "b.csv")
    wf.set_credential("   ")
    assert wf.missing_inputs() == ["credential"]
    assert wf.next() is False


def test_parse_failure_then_retry(tmp_path: Path):
    calls = {"n": 0}

    def parse(std, chk, client, settings):
        calls["n"] += 1
        if calls["n"] == 1:
            raise StructureUnresolved("no amount column")
        return _parsed()

    wf = _ready(ReconcileWorkflow(services=_services(parse=parse), settings=Settings()), tmp_path)
    assert wf.next()
    snap = wf.snapshot()
    assert snap.stage is Stage.PARSE
    assert snap.error is not None and snap.error.startswith("The required columns")
    assert not snap.loading

    assert wf.retry()
    assert wf.stage is Stage.DISPLAY
    assert wf.snapshot().error is None


def test_back_navigation_and_set_file_clears_error(tmp_path: Path):
    def parse(std, chk, client, settings):
        raise StructureUnresolved("nothing usable")

    wf = _ready(ReconcileWorkflow(services=_services(parse=parse), settings=Settings()), tmp_path)
    wf.next()
    assert wf.back()
    assert wf.stage is Stage.UPLOAD
    assert wf.snapshot().error is not None
    wf.set_file(EntrySource.STANDARD, tmp_path / "c.csv")
    assert wf.snapshot().error is None


def test_manual_confirm_moves_and_skip(tmp_path: Path):
    wf = _ready(ReconcileWorkflow(services=_services(), settings=Settings()), tmp_path)
    wf.next()
    wf.next()
    assert wf.stage is Stage.MANUAL_CONFIRM
    assert wf.move_entry("check_3", "Salary", "Coffee")
    assert wf.move_entry("check_3", "Nope", "Salary") is False
    assert wf.back() and wf.stage is Stage.DISPLAY

    wf.next()
    assert wf.move_entry("check_3", "Salary", "Coffee")
    assert wf.skip()
    snap = wf.snapshot()
    assert snap.stage is Stage.COMPARE
    assert snap.categories["Salary"].status is CategoryStatus.MATCH
    assert snap.categories["Coffee"].status is CategoryStatus.MISSING
    assert wf.move_entry("check_3", "Coffee", "Salary") is False


def test_classification_without_usable_credential_fails_in_stage(tmp_path: Path):
    wf = _ready(
        ReconcileWorkflow(
            services=_services(client_factory=lambda credential, settings: None),
            settings=Settings(),
        ),
        tmp_path,
    )
    wf.next()
    assert wf.stage is Stage.DISPLAY
    wf.next()
    snap = wf.snapshot()
    assert snap.stage is Stage.CLASSIFY
    assert snap.error is not None and "credential" in snap.error


def test_summary_failure_retry_back_and_restart(tmp_path: Path):
    answers = iter([RuntimeError("provider timeout"), "final report", "second report"])

    def summarize(client, categories):
        answer = next(answers)
        if isinstance(answer, Exception):
            raise answer
        return answer

    wf = _ready(
        ReconcileWorkflow(services=_services(summarize=summarize), settings=Settings()), tmp_path
    )
    for _ in range(3):
        wf.next()
    assert wf.stage is Stage.COMPARE
    assert wf.restart() is False

    wf.next()
    snap = wf.snapshot()
    assert snap.stage is Stage.SUMMARIZE and snap.error == "provider timeout"
    assert wf.retry()
    assert wf.snapshot().summary == "final report"

    assert wf.back() and wf.stage is Stage.COMPARE
    wf.next()
    assert wf.restart()
    snap = wf.snapshot()
    assert snap.stage is Stage.UPLOAD
    assert snap.categories == {} and snap.standard == ()
    assert wf.missing_inputs() == ["standard file", "check file"]


# ---- Background tasks ----------------------------------------------------------------


def test_stale_parse_result_is_ignored_after_back(tmp_path: Path):
    release = threading.Event()

    def parse(std, chk, client, settings):
        release.wait(5)
        return _parsed()

    runner = ThreadRunner()
    wf = _ready(
        ReconcileWorkflow(runner=runner, services=_services(parse=parse), settings=Settings()),
        tmp_path,
    )
    assert wf.next()
    assert wf.stage is Stage.PARSE and wf.snapshot().loading
    assert wf.retry() is False

    assert wf.back()
    release.set()
    assert runner.wait_idle(5)
    snap = wf.snapshot()
    assert snap.stage is Stage.UPLOAD
    assert snap.standard == ()


def test_background_parse_completes_into_display(tmp_path: Path):
    runner = ThreadRunner()
    wf = ReconcileWorkflow(runner=runner, services=_services(), settings=Settings())
    _ready(wf, tmp_path)
    wf.next()
    assert runner.wait_idle(5)
    assert wf.stage is Stage.DISPLAY
    assert len(wf.snapshot().check) == 2
