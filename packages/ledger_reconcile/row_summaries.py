"""Row-level AI naming for multi-column name assignments.

When a line item's name is spread over several columns, the combined cell
text of each row is sent to the AI in batches and one short name per distinct
text comes back. Results are keyed by the exact candidate text so the
extractor can look them up per row. A failed or timed-out batch contributes
nothing; its rows keep the rule-based name.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from . import prompting
from .ai_client import ChatClient
from .logging_setup import get_logger
from .pmap import p_map
from .responses import RowSummaryResponse, parse_response
from .settings import Settings

_CANDIDATE_JOINER = " | "
_TOKENS_PER_ITEM = 60

_logger = get_logger("ledger_reconcile.row_summaries")


def candidate_text(row: Sequence[str], name_columns: Sequence[int]) -> str:
    """Join the non-empty name-column cells of ``row``."""

    return _CANDIDATE_JOINER.join(row[i] for i in name_columns if i < len(row) and row[i])


def collect_candidates(
    rows: Iterable[Sequence[str]], name_columns: Sequence[int], *, limit: int
) -> list[str]:
    """Distinct non-empty candidate texts in first-seen order, at most ``limit``."""

    seen: dict[str, None] = {}
    for row in rows:
        text = candidate_text(row, name_columns)
        if text and text not in seen:
            seen[text] = None
            if len(seen) >= limit:
                break
    return list(seen)


def summarize_rows(
    client: ChatClient, texts: Sequence[str], *, settings: Settings
) -> dict[str, str]:
    """Return ``{candidate_text: short_name}`` for the texts the AI named."""

    if not texts:
        return {}
    size = settings.row_summary_batch_size
    batches = [list(texts[i : i + size]) for i in range(0, len(texts), size)]

    def _summarize_batch(batch: list[str]) -> dict[str, str]:
        text = client.complete(
            prompting.build_row_summary_messages(batch),
            temperature=0.2,
            max_tokens=max(200, _TOKENS_PER_ITEM * len(batch)),
            timeout=settings.row_summary_timeout,
            purpose="row_summaries",
        )
        parsed = parse_response(text, RowSummaryResponse)
        wanted = set(batch)
        return {
            item.input: item.name
            for item in parsed.summaries
            if item.input in wanted and item.name
        }

    def _degrade(batch: list[str], exc: BaseException) -> dict[str, str]:
        _logger.warning(
            "row_summaries:batch_failed size=%d error=%s detail=%s",
            len(batch),
            exc.__class__.__name__,
            exc,
        )
        return {}

    results = p_map(
        batches,
        _summarize_batch,
        concurrency=settings.row_summary_concurrency,
        timeout=settings.row_summary_timeout,
        fallback=_degrade,
    )
    merged: dict[str, str] = {}
    for partial in results:
        merged.update(partial)
    _logger.info(
        "row_summaries:done batches=%d texts=%d named=%d", len(batches), len(texts), len(merged)
    )
    return merged


__all__ = ["candidate_text", "collect_candidates", "summarize_rows"]
