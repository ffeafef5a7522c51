"""Remote generation of the reconciliation report."""

from __future__ import annotations

import re

from . import prompting
from .ai_client import ChatClient
from .errors import ResponseUnparseable
from .logging_setup import get_logger
from .models import CategoryMap

_FENCE_RE = re.compile(r"^```[A-Za-z]*\s*\n?(.*?)\n?```$", re.DOTALL)

_logger = get_logger("ledger_reconcile.summarize")


def generate_summary(client: ChatClient, categories: CategoryMap) -> str:
    """Return the AI-written report for the computed category totals.

    ``RemoteCallFailed`` propagates; an answer with no text raises
    ``ResponseUnparseable``. Both are fatal to the Summarize stage.
    """

    text = client.complete(
        prompting.build_summary_messages(categories),
        temperature=0.2,
        max_tokens=1500,
        purpose="summary",
    ).strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1).strip()
    if not text:
        raise ResponseUnparseable("summary response contained no report text")
    _logger.info("summarize:done categories=%d chars=%d", len(categories), len(text))
    return text


__all__ = ["generate_summary"]
