"""Pytest configuration for test isolation.

The CLI and ``Settings.from_env()`` read ``LEDGER_RECONCILE_*`` variables and
the AI credential from the environment (and from a local ``.env`` via
python-dotenv). A developer's shell or ``.env`` could otherwise leak a real
credential or tuned settings into tests, switching stubbed code paths to
different branches. Each test starts from a clean environment inside its own
working directory, and AI retry backoff sleeps are disabled.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

import ledger_reconcile.ai_client as ai_client_mod  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop credential/settings variables and run each test in ``tmp_path``."""

    for name in list(os.environ):
        if name.startswith("LEDGER_RECONCILE_") or name == "DEEPSEEK_API_KEY":
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(ai_client_mod, "_sleep_backoff", lambda attempt_no: None)
