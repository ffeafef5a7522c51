"""Parsing of free-text AI responses into typed variants.

Every prompt asks for one JSON object, but models routinely wrap it in a code
fence, surround it with prose, leave a trailing comma, or nest the payload one
level deeper under a wrapper key. :func:`extract_json_object` recovers the
object and :func:`parse_response` validates it against one of the strict
pydantic variants below. Failures surface as
:class:`~ledger_reconcile.errors.ResponseUnparseable`.
"""

from __future__ import annotations

import json
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ResponseUnparseable

_FENCE_RE = re.compile(r"```[A-Za-z]*\s*\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")

M = TypeVar("M", bound=BaseModel)


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first JSON object embedded in ``text``.

    Tolerates fenced code blocks, prose before/after the object and, after one
    repair attempt, trailing commas before ``}`` or ``]``.
    """

    if not isinstance(text, str) or not text.strip():
        raise ResponseUnparseable("empty response")

    body = text
    fence = _FENCE_RE.search(text)
    if fence and "{" in fence.group(1):
        body = fence.group(1)

    start = body.find("{")
    end = body.rfind("}")
    if start == -1 or end <= start:
        raise ResponseUnparseable("response does not contain a JSON object")
    candidate = body[start : end + 1]

    try:
        decoded = json.loads(candidate)
    except json.JSONDecodeError:
        repaired = _TRAILING_COMMA_RE.sub(r"\1", candidate)
        try:
            decoded = json.loads(repaired)
        except json.JSONDecodeError as e:
            raise ResponseUnparseable(f"response is not valid JSON: {e.msg}") from e

    if not isinstance(decoded, dict):
        raise ResponseUnparseable("expected a JSON object at top level")
    return decoded


class _Response(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)

    @field_validator("confidence", mode="before", check_fields=False)
    @classmethod
    def _confidence_default(cls, v: Any) -> Any:
        return 0.0 if v is None else v

    @field_validator("confidence", check_fields=False)
    @classmethod
    def _confidence_clamped(cls, v: float) -> float:
        return min(1.0, max(0.0, float(v)))

    @field_validator("reason", mode="before", check_fields=False)
    @classmethod
    def _reason_text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class HeaderRowResponse(_Response):
    header_row_index: int = Field(alias="headerRowIndex")
    reason: str = ""
    confidence: float = 0.0
    row_type: str = Field(default="", alias="rowType")


class ColumnNamesResponse(_Response):
    column_names: list[str] = Field(alias="columnNames")

    @field_validator("column_names", mode="before")
    @classmethod
    def _names_as_text(cls, v: Any) -> Any:
        if isinstance(v, list):
            return ["" if n is None else str(n).strip() for n in v]
        return v


class NameColumnsResponse(_Response):
    column_indices: list[int] = Field(alias="columnIndices")
    combination_rule: str = Field(default="", alias="combinationRule")
    reason: str = ""
    confidence: float = 0.0

    @field_validator("combination_rule", mode="before")
    @classmethod
    def _rule_text(cls, v: Any) -> str:
        return "" if v is None else str(v)


class ExistingColumnResponse(_Response):
    best_column_index: int = Field(alias="bestColumnIndex")
    reason: str = ""
    confidence: float = 0.0


class AmountColumnResponse(_Response):
    amount_column_index: int = Field(alias="amountColumnIndex")
    reason: str = ""
    confidence: float = 0.0


class RowSummaryItem(_Response):
    input: str
    name: str


class RowSummaryResponse(_Response):
    summaries: list[RowSummaryItem]


def parse_response(text: str, model: type[M]) -> M:
    """Validate the JSON object in ``text`` as ``model``.

    When the top-level object does not validate but holds exactly one nested
    object, that inner object is tried as well (``{"result": {...}}``).
    """

    obj = extract_json_object(text)
    try:
        return model.model_validate(obj)
    except ValidationError as first_error:
        if len(obj) == 1:
            (inner,) = obj.values()
            if isinstance(inner, dict):
                try:
                    return model.model_validate(inner)
                except ValidationError:
                    pass
        raise ResponseUnparseable(
            f"response does not match {model.__name__}: {first_error.error_count()} error(s)"
        ) from first_error


__all__ = [
    "AmountColumnResponse",
    "ColumnNamesResponse",
    "ExistingColumnResponse",
    "HeaderRowResponse",
    "NameColumnsResponse",
    "RowSummaryItem",
    "RowSummaryResponse",
    "extract_json_object",
    "parse_response",
]
