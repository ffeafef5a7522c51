"""Logging for ``ledger_reconcile``.

Every module logs through ``get_logger("ledger_reconcile.<module>")`` with
short ``"<area>:<event> key=value"`` lines (``header:decided``,
``ai:retry``, ``workflow:stage``). Nothing is printed until an entrypoint
calls :func:`configure_logging`; the CLI does so from its root callback.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

ROOT_LOGGER = "ledger_reconcile"
LEVEL_ENV_VAR = "LEDGER_RECONCILE_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_state = {"configured": False}


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or ``LEDGER_RECONCILE_LOG_LEVEL`` when ``None``) into a number.

    Accepts ints, digit strings and level names in any case. Anything
    unrecognized resolves to ``INFO``.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    text = level.strip().upper()
    if text.isdigit():
        return int(text)
    return logging.getLevelNamesMapping().get(text, logging.INFO)


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Send package logs to ``stream`` (stderr by default); later calls are no-ops."""

    if _state["configured"]:
        return

    root = logging.getLogger(ROOT_LOGGER)
    root.handlers = [h for h in root.handlers if not isinstance(h, logging.NullHandler)]

    numeric = resolve_level(level)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    handler.setLevel(numeric)
    root.addHandler(handler)
    root.setLevel(numeric)
    root.propagate = False
    _state["configured"] = True


def get_logger(name: str) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not _state["configured"] and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)
