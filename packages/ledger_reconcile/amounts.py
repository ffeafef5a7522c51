"""Amount parsing shared by the column resolver and the entry extractor.

Ledgers in the wild write amounts as ``"¥1,200.50"``, ``"(300.00)"``,
``"5000元"`` or ``"USD 12.5"``. :func:`parse_amount` accepts all of these and
returns a ``Decimal`` with exactly two fractional digits. :func:`split_composite`
handles cells that pack a name and an amount together (``"员工工资:5000.00"``).
"""

from __future__ import annotations

import re
import unicodedata
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_CENT = Decimal("0.01")

# NFKC folds the full-width yen sign to "¥"; both are listed for clarity.
_CURRENCY_SYMBOLS = frozenset("¥￥$€£₽₹₩₪₫₡₵₺₴₸₼₲₱₭₯₰₳₶₷₻₾₿")
_CURRENCY_CODE_RE = re.compile(
    r"^(?:RMB|CNY|USD|EUR|GBP|HKD|JPY)\s*|\s*(?:RMB|CNY|USD|EUR|GBP|HKD|JPY)$",
    re.IGNORECASE,
)
_UNIT_SUFFIX_RE = re.compile(r"\s*(?:元|块|角|分|yuan|rmb|cny|usd)$", re.IGNORECASE)
_PLAIN_NUMBER_RE = re.compile(r"^(?:\d+(?:\.\d*)?|\.\d+)$")

# A currency-like tail: optional sign and symbol, digits with optional thousands
# separators and decimals, optional unit word.
_AMOUNT_TAIL_RE = re.compile(
    r"^[-+]?\s*[¥￥$€£]?\s*\d[\d,]*(?:\.\d+)?\s*(?:元|块|角|分|yuan|rmb|cny|usd)?$",
    re.IGNORECASE,
)

# Separator priority used when decomposing composite cells.
COMPOSITE_SEPARATORS: tuple[str, ...] = (":", "：", "|", "(", "（", "-", " ", "\t")
# Separators whose presence marks a column as composite during detection.
DETECTION_SEPARATORS: tuple[str, ...] = (":", "：", "-", "(", "（", "|")


def parse_amount(raw: str | None) -> Decimal:
    """Parse a currency-like string into a 2-decimal ``Decimal``.

    Currency symbols/codes, unit words (``元``, ``块``, …), whitespace and
    thousands separators are removed. A leading ``-`` or surrounding
    parentheses mark a negative amount. Raises ``ValueError`` when the
    remainder is not a plain decimal number.
    """

    if raw is None:
        raise ValueError("amount is required")
    s = unicodedata.normalize("NFKC", str(raw)).strip()
    if not s:
        raise ValueError("amount is empty")

    negative = False
    # Strip sign, symbol, code, unit and parentheses in any order until stable.
    while True:
        before = s
        if s.startswith("+"):
            s = s[1:].lstrip()
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
        if s and s[0] in _CURRENCY_SYMBOLS:
            s = s[1:].lstrip()
        if s and s[-1] in _CURRENCY_SYMBOLS:
            s = s[:-1].rstrip()
        s = _CURRENCY_CODE_RE.sub("", s)
        s = _UNIT_SUFFIX_RE.sub("", s)
        if len(s) >= 2 and s.startswith("(") and s.endswith(")"):
            negative = True
            s = s[1:-1].strip()
        if s == before:
            break

    s = s.replace(",", "").replace(" ", "")
    if not _PLAIN_NUMBER_RE.match(s):
        raise ValueError(f"invalid amount: {raw!r}")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:  # pragma: no cover - regex already guards
        raise ValueError(f"invalid amount: {raw!r}") from exc
    d = d.quantize(_CENT, rounding=ROUND_HALF_UP)
    return -d if negative else d


def try_parse_amount(raw: str | None) -> Decimal | None:
    try:
        return parse_amount(raw)
    except ValueError:
        return None


def is_numeric_cell(cell: str) -> bool:
    """True for non-empty cells that parse as an amount (``"12"``, ``"¥1,200.50"``)."""

    return bool(cell) and try_parse_amount(cell) is not None


def looks_like_amount_tail(text: str) -> bool:
    return bool(_AMOUNT_TAIL_RE.match(text.strip()))


def split_composite(
    cell: str, separators: tuple[str, ...] = COMPOSITE_SEPARATORS
) -> tuple[str, Decimal] | None:
    """Split ``"name<sep>amount"`` into ``(name, amount)``.

    Separators are tried in priority order; a split is accepted only when the
    last segment is a currency-like number (optionally followed by a unit
    word) and the head is non-empty. Returns ``None`` when no split works.
    """

    text = cell.strip()
    if not text:
        return None
    for sep in separators:
        if sep not in text:
            continue
        parts = [p.strip() for p in text.split(sep)]
        parts = [p for p in parts if p]
        if len(parts) < 2:
            continue
        tail = parts[-1]
        if sep in ("(", "（"):
            tail = tail.rstrip(")）").strip()
        if not looks_like_amount_tail(tail):
            continue
        amount = try_parse_amount(tail)
        if amount is None:
            continue
        name = sep.join(parts[:-1]).strip()
        if name:
            return name, amount
    return None


def fmt_amount(d: Decimal) -> str:
    """Two decimals, ASCII dot, leading minus for negatives."""

    return f"{d.quantize(_CENT, rounding=ROUND_HALF_UP):.2f}"


__all__ = [
    "COMPOSITE_SEPARATORS",
    "DETECTION_SEPARATORS",
    "fmt_amount",
    "is_numeric_cell",
    "looks_like_amount_tail",
    "parse_amount",
    "split_composite",
    "try_parse_amount",
]
