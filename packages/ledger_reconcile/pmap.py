"""Bounded, order-preserving parallel map over a thread pool.

Used for the two per-file parse jobs and for batched row-summary requests.
Each call may carry a per-item ``timeout`` (measured from the moment a worker
starts the item) and a ``fallback`` that turns a failed or expired item into
a value instead of an error. Threads cannot be interrupted: an expired call
is left running, its result is dropped, and the pool is shut down without
waiting on it.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


# Sentinel value: mappers can `return p_map_skip` to omit the element.
p_map_skip: object = _Skip()


class MapperTimeout(TimeoutError):
    """Raised (or handed to ``fallback``) when a mapper call exceeds ``timeout``."""


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    timeout: float | None = None,
    fallback: Callable[[InT, BaseException], OutT | object] | None = None,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with a bounded concurrency limit.

    - The returned list preserves input order, excluding items where the mapper
      (or the fallback) returned ``p_map_skip``.
    - ``timeout`` bounds each mapper call in seconds; an expired call counts as
      a failure with :class:`MapperTimeout`.
    - When ``fallback`` is given, every failed item is replaced by
      ``fallback(item, exc)`` and no error is raised.
    - Otherwise, with ``stop_on_error`` (default) the first failure propagates
      and not-yet-started work is cancelled; without it, all failures are
      raised together as an ``ExceptionGroup`` once every item has finished.
    """

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")
    if timeout is not None and timeout <= 0:
        raise ValueError("timeout must be positive when set")

    it = enumerate(iterable)
    results: dict[int, OutT | object] = {}
    errors: list[Exception] = []
    items: dict[int, InT] = {}
    future_to_idx: dict[Future, int] = {}
    started: dict[int, float] = {}
    started_lock = threading.Lock()
    submitted = 0
    abandoned = False

    def _run(idx: int, item: InT) -> OutT | object:
        with started_lock:
            started[idx] = time.monotonic()
        return mapper(item)

    def _submit(pool: ThreadPoolExecutor) -> Future | None:
        nonlocal submitted
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        items[idx] = item
        fut = pool.submit(_run, idx, item)
        future_to_idx[fut] = idx
        submitted += 1
        return fut

    def _next_wait(active: set[Future]) -> float | None:
        if timeout is None:
            return None
        now = time.monotonic()
        with started_lock:
            deadlines = [
                started[future_to_idx[f]] + timeout
                for f in active
                if future_to_idx[f] in started
            ]
        if not deadlines:
            # Nothing has started yet (workers busy); poll again after one period.
            return timeout
        return max(0.0, min(deadlines) - now)

    def _expired(active: set[Future]) -> list[Future]:
        if timeout is None:
            return []
        now = time.monotonic()
        with started_lock:
            return [
                f
                for f in active
                if future_to_idx[f] in started and now - started[future_to_idx[f]] >= timeout
            ]

    pool = ThreadPoolExecutor(max_workers=concurrency)
    try:
        active: set[Future] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, timeout=_next_wait(active), return_when=FIRST_COMPLETED)

            failures: list[tuple[int, Exception]] = []
            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    failures.append((idx, e))

            expired = _expired(active)
            for fut in expired:
                active.discard(fut)
                idx = future_to_idx.pop(fut)
                fut.cancel()
                abandoned = True
                failures.append(
                    (idx, MapperTimeout(f"p_map: item {idx} exceeded timeout of {timeout}s"))
                )

            for idx, exc in sorted(failures, key=lambda pair: pair[0]):
                if fallback is not None:
                    results[idx] = fallback(items[idx], exc)
                    continue
                if stop_on_error:
                    raise exc
                errors.append(exc)

            for _ in range(len(done) + len(expired)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)
    finally:
        # Never block on abandoned (timed-out) calls; cancel anything queued.
        pool.shutdown(wait=not abandoned, cancel_futures=True)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)

    out: list[OutT] = []
    for i in range(submitted):
        val = results.get(i, p_map_skip)
        if val is p_map_skip:
            continue
        out.append(val)  # type: ignore[arg-type]
    return out


__all__ = ["MapperTimeout", "p_map", "p_map_skip"]
