# ruff: noqa: E402, I001
import sys
import threading
import time
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]

from ledger_reconcile.pmap import MapperTimeout, p_map, p_map_skip  # noqa: E402


def test_preserves_input_order_and_skips():
    def mapper(x: int):
        time.sleep(0.01 * (5 - x))
        return p_map_skip if x == 2 else x * 10

    assert p_map(range(5), mapper, concurrency=3) == [0, 10, 30, 40]


def test_bounded_concurrency():
    lock = threading.Lock()
    inflight = 0
    peak = 0

    def mapper(x: int) -> int:
        nonlocal inflight, peak
        with lock:
            inflight += 1
            peak = max(peak, inflight)
        time.sleep(0.02)
        with lock:
            inflight -= 1
        return x

    assert p_map(range(8), mapper, concurrency=2) == list(range(8))
    assert peak <= 2


def test_first_error_propagates_by_default():
    def mapper(x: int) -> int:
        if x == 1:
            raise RuntimeError("boom")
        return x

    with pytest.raises(RuntimeError, match="boom"):
        p_map([0, 1, 2], mapper, concurrency=1)


def test_collects_errors_without_stop_on_error():
    def mapper(x: int) -> int:
        raise ValueError(str(x))

    with pytest.raises(ExceptionGroup) as ei:
        p_map([1, 2], mapper, concurrency=2, stop_on_error=False)
    assert len(ei.value.exceptions) == 2


def test_fallback_replaces_failures_and_timeouts():
    seen: list[type] = []

    def mapper(x: int) -> str:
        if x == 0:
            time.sleep(0.5)
        if x == 1:
            raise KeyError("bad")
        return f"ok{x}"

    def fallback(x: int, exc: BaseException) -> str:
        seen.append(type(exc))
        return f"fallback{x}"

    out = p_map([0, 1, 2], mapper, concurrency=3, timeout=0.1, fallback=fallback)
    assert out == ["fallback0", "fallback1", "ok2"]
    assert MapperTimeout in seen and KeyError in seen


def test_rejects_invalid_arguments():
    with pytest.raises(ValueError):
        p_map([1], lambda x: x, concurrency=0)
    with pytest.raises(ValueError):
        p_map([1], lambda x: x, concurrency=1, timeout=0)
