"""Ordered fallback chains for structure inference.

Header, name-column and amount-column resolution all follow the same pattern:
try strategies in a fixed order, keep the first usable answer, and never let a
remote failure abort the parse. :func:`run_chain` implements that once.

A strategy returns an :class:`Attempt` or ``None`` ("nothing found"). Gated
strategies (typically AI-backed) must also clear the chain's confidence floor;
the comparison is strict, so an answer exactly at the floor is rejected.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any, NamedTuple

from .errors import RemoteCallFailed, ResponseUnparseable
from .logging_setup import get_logger

_logger = get_logger("ledger_reconcile.attempts")


class Attempt(NamedTuple):
    value: Any
    confidence: float
    source: str


class Strategy(NamedTuple):
    """One named step of a chain.

    ``gated`` strategies are accepted only above the chain floor; ungated ones
    (keyword and local heuristics) are accepted whenever they return a value.
    """

    name: str
    resolve: Callable[[], Attempt | None]
    gated: bool = False


class ChainResult(NamedTuple):
    attempt: Attempt | None
    tried: tuple[str, ...]


def run_chain(strategies: Sequence[Strategy], *, floor: float, label: str) -> ChainResult:
    """Run ``strategies`` in order and return the first accepted attempt.

    ``RemoteCallFailed`` and ``ResponseUnparseable`` raised by a strategy are
    logged and treated as "nothing found". Any other exception propagates.
    ``tried`` lists every strategy that was invoked, in order.
    """

    tried: list[str] = []
    for strategy in strategies:
        tried.append(strategy.name)
        try:
            attempt = strategy.resolve()
        except (RemoteCallFailed, ResponseUnparseable) as e:
            _logger.warning(
                "%s:strategy_failed strategy=%s error=%s detail=%s",
                label,
                strategy.name,
                e.__class__.__name__,
                e,
            )
            continue
        if attempt is None:
            _logger.debug("%s:strategy_empty strategy=%s", label, strategy.name)
            continue
        if strategy.gated and not attempt.confidence > floor:
            _logger.info(
                "%s:below_floor strategy=%s confidence=%.2f floor=%.2f",
                label,
                strategy.name,
                attempt.confidence,
                floor,
            )
            continue
        _logger.info(
            "%s:accepted strategy=%s confidence=%.2f", label, strategy.name, attempt.confidence
        )
        return ChainResult(attempt, tuple(tried))
    return ChainResult(None, tuple(tried))


__all__ = ["Attempt", "ChainResult", "Strategy", "run_chain"]
