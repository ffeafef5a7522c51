"""Resolve which columns hold the item name and the amount.

The name chain tries, in order:

1. composite detection (single-column sheets whose cells read ``name:amount``),
2. keyword match against the name vocabulary,
3. AI multi-column selection with a combination rule,
4. AI reinterpretation of an existing column,
5. local statistical scoring.

The amount chain is keyword match, then AI selection, then a local numeric
scan. AI strategies run only with a client and any AI failure falls through to
the next strategy. When either role stays unresolved a
:class:`~ledger_reconcile.errors.StructureUnresolved` names what was found and
which strategies were tried.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import NamedTuple

from . import prompting
from .ai_client import ChatClient
from .amounts import DETECTION_SEPARATORS, is_numeric_cell, split_composite
from .attempts import Attempt, Strategy, run_chain
from .errors import StructureUnresolved
from .grid import column_values, is_blank_row
from .logging_setup import get_logger
from .models import ColumnResolution, ColumnRoleAssignment, RoleSource
from .responses import (
    AmountColumnResponse,
    ExistingColumnResponse,
    NameColumnsResponse,
    parse_response,
)
from .row_summaries import collect_candidates, summarize_rows
from .settings import Settings

NAME_KEYWORDS: tuple[str, ...] = (
    "name",
    "名称",
    "条目",
    "项目",
    "项目名称",
    "摘要",
    "描述",
    "内容",
    "事项",
    "科目",
    "科目名称",
    "description",
    "item",
    "particulars",
    "payee",
)
AMOUNT_KEYWORDS: tuple[str, ...] = (
    "amount",
    "金额",
    "价值",
    "价格",
    "数额",
    "total",
    "price",
    "value",
    "amt",
)
BALANCE_KEYWORDS: tuple[str, ...] = ("balance", "余额", "结余")

_AI_FLOOR: float = 0.3
_COMPOSITE_SAMPLE: int = 10
_NUMERIC_SCAN_MIN_RATIO: float = 0.8
_DUPLICATE_UNIQUENESS: float = 0.3
_MIN_AVG_TEXT_LEN: float = 2.0
_TOKEN_SPLIT_RE = re.compile(r"[\s\-_]+")
_MIN_ASCII_TOKEN: int = 3
_MIN_CJK_TOKEN: int = 2

_logger = get_logger("ledger_reconcile.columns")


class _NamePick(NamedTuple):
    columns: tuple[int, ...]
    rule: str = "{0}"
    composite: bool = False


# ---- Keyword matching --------------------------------------------------------


def _min_token_len(token: str) -> int:
    return _MIN_ASCII_TOKEN if token.isascii() else _MIN_CJK_TOKEN


def match_keyword(
    headers: Sequence[str], keywords: Sequence[str], *, exclude: Iterable[int] = ()
) -> int | None:
    """Return the first header index matching ``keywords``, by match strength.

    Strengths, strongest first: exact (case-insensitive) equality, keyword
    contained in the header, and a header token contained in a keyword (tokens
    split on whitespace, ``-`` and ``_``). In that last pass a Latin token must
    have three or more characters unless it equals a keyword outright, so
    abbreviations such as ``Cr`` or ``To`` do not hit ``description`` or
    ``total``.
    """

    skip = set(exclude)
    kws = [k.lower() for k in keywords]
    norm = [(i, h.strip().lower()) for i, h in enumerate(headers) if i not in skip and h.strip()]

    for i, h in norm:
        if h in kws:
            return i
    for i, h in norm:
        if any(k in h for k in kws):
            return i
    for i, h in norm:
        for t in _TOKEN_SPLIT_RE.split(h):
            if any(t == k or (len(t) >= _min_token_len(t) and t in k) for k in kws):
                return i
    return None


# ---- Sampling helpers ----------------------------------------------------------


def _sample(data_rows: Sequence[Sequence[str]], limit: int) -> list[Sequence[str]]:
    return [r for r in data_rows if not is_blank_row(r)][:limit]


def _composite_share(cells: Sequence[str]) -> float:
    values = [c for c in cells if c]
    if not values:
        return 0.0
    hits = sum(1 for c in values if split_composite(c, DETECTION_SEPARATORS) is not None)
    return hits / len(values)


def detect_composite(headers: Sequence[str], data_rows: Sequence[Sequence[str]]) -> bool:
    """True when a single-column sheet packs ``name<sep>amount`` into most cells."""

    if len(headers) != 1:
        return False
    sample = _sample(data_rows, _COMPOSITE_SAMPLE)
    return _composite_share(column_values(sample, 0)) > 0.5


def score_name_column(header: str, cells: Sequence[str]) -> float | None:
    """Local name-likeness score in [0, 1], or ``None`` when the column is excluded.

    ``textRatio*0.4 + uniqueness*0.3 + min(avgTextLen/20, 1)*0.3``. Columns with
    an empty header, only numeric content, near-duplicate values or very short
    text are excluded.
    """

    if not header.strip() or not cells:
        return None
    non_empty = [c for c in cells if c]
    if not non_empty:
        return None
    texts = [c for c in non_empty if not is_numeric_cell(c)]
    if not texts:
        return None
    uniqueness = len(set(non_empty)) / len(non_empty)
    if uniqueness < _DUPLICATE_UNIQUENESS and len(non_empty) >= 3:
        return None
    avg_len = sum(len(t) for t in texts) / len(texts)
    if avg_len < _MIN_AVG_TEXT_LEN:
        return None
    text_ratio = len(texts) / len(cells)
    return text_ratio * 0.4 + uniqueness * 0.3 + min(avg_len / 20.0, 1.0) * 0.3


def _default_rule(n: int) -> str:
    return "-".join(f"{{{i}}}" for i in range(n))


def _valid_indices(raw: Iterable[int], n_cols: int, exclude: set[int]) -> tuple[int, ...]:
    out: list[int] = []
    for i in raw:
        if 0 <= i < n_cols and i not in exclude and i not in out:
            out.append(i)
    return tuple(out)


# ---- Resolver ------------------------------------------------------------------


class _Resolver:
    """One resolution run over a single file's headers and data rows."""

    def __init__(
        self,
        headers: Sequence[str],
        data_rows: Sequence[Sequence[str]],
        client: ChatClient | None,
        settings: Settings,
    ) -> None:
        self.headers = list(headers)
        self.data_rows = data_rows
        self.client = client
        self.settings = settings
        self.n_cols = len(self.headers)
        self.sample = _sample(data_rows, settings.sample_rows)

    # Name strategies

    def composite(self) -> Attempt | None:
        if detect_composite(self.headers, self.data_rows):
            return Attempt(_NamePick((0,), "{0}", True), 1.0, RoleSource.COMPOSITE)
        return None

    def keyword_name(self, exclude: set[int]) -> Attempt | None:
        skip = set(exclude)
        while True:
            idx = match_keyword(self.headers, NAME_KEYWORDS, exclude=skip)
            if idx is None:
                return None
            values = [c for c in column_values(self.sample, idx) if c]
            if any(not is_numeric_cell(c) for c in values):
                return Attempt(_NamePick((idx,)), 1.0, RoleSource.KEYWORD)
            _logger.debug("columns:keyword_name_rejected col=%d reason=no_text", idx)
            skip.add(idx)

    def keyword_amount(self) -> int | None:
        idx = match_keyword(self.headers, AMOUNT_KEYWORDS)
        if idx is None:
            return None
        if not any(is_numeric_cell(c) for c in column_values(self.sample, idx)):
            _logger.debug("columns:keyword_amount_rejected col=%d reason=no_amounts", idx)
            return None
        return idx

    def ai_name_columns(self, exclude: set[int]) -> Attempt | None:
        assert self.client is not None
        text = self.client.complete(
            prompting.build_name_columns_messages(self.headers, self.sample, exclude=exclude),
            temperature=0.1,
            max_tokens=400,
            purpose="name_columns",
        )
        parsed = parse_response(text, NameColumnsResponse)
        cols = _valid_indices(parsed.column_indices, self.n_cols, exclude)
        if not cols:
            return None
        rule = parsed.combination_rule
        if "{" not in rule:
            rule = _default_rule(len(cols))
        _logger.debug("columns:ai_name cols=%s rule=%r reason=%s", cols, rule, parsed.reason)
        return Attempt(_NamePick(cols, rule), parsed.confidence, RoleSource.AI)

    def ai_existing_column(self, exclude: set[int]) -> Attempt | None:
        assert self.client is not None
        text = self.client.complete(
            prompting.build_existing_column_messages(self.headers, self.sample, exclude=exclude),
            temperature=0.1,
            max_tokens=300,
            purpose="existing_column",
        )
        parsed = parse_response(text, ExistingColumnResponse)
        idx = parsed.best_column_index
        if not (0 <= idx < self.n_cols) or idx in exclude:
            return None
        composite = _composite_share(column_values(self.sample, idx)) > 0.5
        return Attempt(_NamePick((idx,), "{0}", composite), parsed.confidence, RoleSource.AI)

    def local_name(self, exclude: set[int]) -> Attempt | None:
        best: tuple[float, int] | None = None
        for i, header in enumerate(self.headers):
            if i in exclude:
                continue
            score = score_name_column(header, column_values(self.sample, i))
            if score is not None and (best is None or score > best[0]):
                best = (score, i)
        if best is None:
            return None
        return Attempt(_NamePick((best[1],)), best[0], RoleSource.HEURISTIC)

    # Amount strategies

    def ai_amount_column(self, exclude: set[int]) -> Attempt | None:
        assert self.client is not None
        text = self.client.complete(
            prompting.build_amount_column_messages(self.headers, self.sample, exclude=exclude),
            temperature=0.1,
            max_tokens=300,
            purpose="amount_column",
        )
        parsed = parse_response(text, AmountColumnResponse)
        idx = parsed.amount_column_index
        if not (0 <= idx < self.n_cols) or idx in exclude:
            return None
        return Attempt(idx, parsed.confidence, RoleSource.AI)

    def numeric_scan(self, exclude: set[int]) -> Attempt | None:
        """Pick the most numeric column among those at least 80% numeric.

        Running-balance columns lose to any other candidate. Among equally
        numeric columns, those right of the name column beat those left of it
        (row numbers sit on the left), then the leftmost wins.
        """

        name_end = max(exclude, default=-1)
        candidates: list[tuple[tuple[bool, float, bool, int], int, float]] = []
        for i in range(self.n_cols):
            if i in exclude:
                continue
            values = [c for c in column_values(self.sample, i) if c]
            if not values:
                continue
            ratio = sum(1 for c in values if is_numeric_cell(c)) / len(values)
            if ratio < _NUMERIC_SCAN_MIN_RATIO:
                continue
            balance = match_keyword([self.headers[i]], BALANCE_KEYWORDS) is not None
            candidates.append(((not balance, ratio, i > name_end, -i), i, ratio))
        if not candidates:
            return None
        _, idx, ratio = max(candidates)
        return Attempt(idx, ratio, RoleSource.HEURISTIC)

    # Orchestration

    def resolve(self) -> ColumnResolution:
        amount_kw = self.keyword_amount()
        name_exclude = {amount_kw} if amount_kw is not None else set()

        name_strategies = [
            Strategy("composite", self.composite),
            Strategy("keyword_name", lambda: self.keyword_name(name_exclude)),
        ]
        if self.client is not None:
            name_strategies += [
                Strategy("ai_name_columns", lambda: self.ai_name_columns(name_exclude)),
                Strategy(
                    "ai_existing_column",
                    lambda: self.ai_existing_column(name_exclude),
                    gated=True,
                ),
            ]
        name_strategies.append(Strategy("local_name", lambda: self.local_name(name_exclude)))
        name_result = run_chain(name_strategies, floor=_AI_FLOOR, label="columns:name")
        tried = list(name_result.tried)

        pick: _NamePick | None = name_result.attempt.value if name_result.attempt else None
        name_source = name_result.attempt.source if name_result.attempt else None

        amount_col: int | None = None
        amount_source: RoleSource | None = None
        if pick is not None and pick.composite:
            amount_col, amount_source = pick.columns[0], RoleSource.COMPOSITE
        elif amount_kw is not None:
            amount_col, amount_source = amount_kw, RoleSource.KEYWORD
            tried.append("keyword_amount")
        else:
            tried.append("keyword_amount")
            amount_exclude = set(pick.columns) if pick is not None else set()
            amount_strategies: list[Strategy] = []
            if self.client is not None:
                amount_strategies.append(
                    Strategy(
                        "ai_amount_column",
                        lambda: self.ai_amount_column(amount_exclude),
                        gated=True,
                    )
                )
            amount_strategies.append(
                Strategy("numeric_scan", lambda: self.numeric_scan(amount_exclude))
            )
            amount_result = run_chain(amount_strategies, floor=_AI_FLOOR, label="columns:amount")
            tried += amount_result.tried
            if amount_result.attempt is not None:
                amount_col = int(amount_result.attempt.value)
                amount_source = amount_result.attempt.source

        if pick is None or amount_col is None or name_source is None or amount_source is None:
            raise self._unresolved(pick, amount_col, tuple(tried))

        roles = ColumnRoleAssignment(
            name_columns=pick.columns,
            amount_column=amount_col,
            combination_rule=pick.rule,
            composite_mode=pick.composite,
            source=name_source,
            amount_source=amount_source,
            strategies=tuple(tried),
        )
        _logger.info(
            "columns:resolved name=%s amount=%d rule=%r composite=%s source=%s amount_source=%s",
            list(roles.name_columns),
            roles.amount_column,
            roles.combination_rule,
            roles.composite_mode,
            roles.source,
            roles.amount_source,
        )
        return ColumnResolution(roles, self._row_summaries(roles))

    def _row_summaries(self, roles: ColumnRoleAssignment) -> Mapping[str, str]:
        if self.client is None or roles.composite_mode or len(roles.name_columns) < 2:
            return {}
        texts = collect_candidates(
            self.data_rows, roles.name_columns, limit=self.settings.row_summary_max_samples
        )
        return summarize_rows(self.client, texts, settings=self.settings)

    def _header_label(self, idx: int) -> str:
        header = self.headers[idx] if 0 <= idx < self.n_cols else ""
        return f"{header!r} (column {idx + 1})" if header else f"column {idx + 1}"

    def _unresolved(
        self, pick: _NamePick | None, amount_col: int | None, tried: tuple[str, ...]
    ) -> StructureUnresolved:
        found: dict[str, str | None] = {
            "name": ", ".join(self._header_label(i) for i in pick.columns) if pick else None,
            "amount": self._header_label(amount_col) if amount_col is not None else None,
        }
        parts = [f"{role}: {label or 'missing'}" for role, label in found.items()]
        message = (
            "Could not identify the "
            + " and ".join(role for role, label in found.items() if label is None)
            + " column ("
            + "; ".join(parts)
            + f"). Headers: {self.headers}. Strategies tried: {', '.join(tried)}."
        )
        return StructureUnresolved(message, found=found, strategies=tried)


def resolve_column_roles(
    headers: Sequence[str],
    data_rows: Sequence[Sequence[str]],
    *,
    client: ChatClient | None = None,
    settings: Settings | None = None,
) -> ColumnResolution:
    """Resolve name/amount column roles for one file.

    ``data_rows`` are the grid rows after the header row. Row summaries are
    only requested when the name spans several columns and a client is given.
    """

    settings = settings or (client.settings if client is not None else Settings.from_env())
    return _Resolver(headers, data_rows, client, settings).resolve()


__all__ = [
    "AMOUNT_KEYWORDS",
    "NAME_KEYWORDS",
    "detect_composite",
    "match_keyword",
    "resolve_column_roles",
    "score_name_column",
]
