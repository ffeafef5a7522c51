"""AI classification of entries into categories.

:func:`ingest_classification` turns the model's free-text answer into a
:class:`~ledger_reconcile.models.CategoryMap`:

- the JSON object is recovered from fences/prose (:mod:`.responses`),
- a ``{"categories": {...}}`` or single-key wrapper is unwrapped,
- the category tree is walked; ``subcategories`` flatten to ``"Parent/Child"``,
- ``standard``/``check`` arrays reference entries by ID (``standard_3``), with a
  ``name:amount`` description fallback that only accepts a unique match,
- entries nobody referenced land in ``Unclassified``.

Any failure while doing so degrades to a single ``Unclassified`` category
holding every entry; classification never blocks the workflow.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from . import prompting
from .ai_client import ChatClient
from .amounts import try_parse_amount
from .errors import ResponseUnparseable
from .logging_setup import get_logger
from .models import (
    Category,
    CategoryMap,
    CategoryStatus,
    ClassificationResult,
    Entry,
    EntrySource,
)
from .reconcile import UNCLASSIFIED, build_category, calculate
from .responses import extract_json_object

# IDs may be decorated by the model: "standard_2: 员工工资", "check_3 (房租)".
_ENTRY_ID_RE = re.compile(r"(?<![A-Za-z0-9_])((?:standard|check)_\d+)(?!\d)")
_NODE_KEYS = frozenset({"standard", "check", "subcategories"})
_DESCRIPTION_SEPARATORS = (":", "：")

FALLBACK_SUMMARY = (
    "The AI response could not be parsed, so every entry was placed in "
    f"'{UNCLASSIFIED}'. Move the entries into categories manually before calculating."
)

_logger = get_logger("ledger_reconcile.classify")


def _unwrap(obj: Mapping[str, Any]) -> Mapping[str, Any]:
    inner = obj.get("categories")
    if isinstance(inner, Mapping):
        return inner
    if len(obj) == 1:
        (value,) = obj.values()
        if (
            isinstance(value, Mapping)
            and value
            and not (_NODE_KEYS & set(value))
            and all(isinstance(v, Mapping) for v in value.values())
        ):
            return value
    return obj


class _Linker:
    """Walks a category tree and links references back to entry objects."""

    def __init__(self, standard: Sequence[Entry], check: Sequence[Entry]) -> None:
        self.pools: dict[EntrySource, Sequence[Entry]] = {
            EntrySource.STANDARD: standard,
            EntrySource.CHECK: check,
        }
        self.by_id = {e.id: e for e in [*standard, *check]}
        self.assigned: set[int] = set()
        self.categories: CategoryMap = {}

    def _by_description(self, ref: str, side: EntrySource) -> Entry | None:
        cut = max(ref.rfind(sep) for sep in _DESCRIPTION_SEPARATORS)
        if cut <= 0:
            return None
        name, amount = ref[:cut].strip(), try_parse_amount(ref[cut + 1 :])
        if not name or amount is None:
            return None
        matches = [
            e
            for e in self.pools[side]
            if e.amount == amount
            and (name in (e.name, e.original_name) or name in e.name or e.original_name in name)
        ]
        return matches[0] if len(matches) == 1 else None

    def _resolve(self, ref: Any, side: EntrySource) -> Entry | None:
        if isinstance(ref, Mapping):
            ref = ref.get("id")
        if not isinstance(ref, str) or not ref.strip():
            return None
        ref = ref.strip()
        found = _ENTRY_ID_RE.search(ref)
        if found:
            return self.by_id.get(found.group(1))
        return self._by_description(ref, side)

    def add_members(self, name: str, entries: list[Entry]) -> None:
        category = self.categories.get(name)
        if category is None:
            category = self.categories[name] = Category(name=name)
        for entry in entries:
            (category.standard if entry.source is EntrySource.STANDARD else category.check).append(
                entry
            )

    def walk(self, tree: Mapping[str, Any], prefix: str = "") -> None:
        for raw_name, node in tree.items():
            label = str(raw_name).strip()
            if not label or not isinstance(node, Mapping):
                continue
            name = f"{prefix}/{label}" if prefix else label

            own: list[Entry] = []
            for side in (EntrySource.STANDARD, EntrySource.CHECK):
                refs = node.get(side.value)
                if refs is None:
                    continue
                if not isinstance(refs, list):
                    raise ResponseUnparseable(f"category {name!r}: {side.value!r} is not a list")
                for ref in refs:
                    entry = self._resolve(ref, side)
                    if entry is None:
                        continue
                    if entry.source is not side:
                        _logger.info(
                            "classify:source_mismatch entry=%s listed_under=%s", entry.id, side
                        )
                        continue
                    if id(entry) in self.assigned:
                        continue
                    self.assigned.add(id(entry))
                    own.append(entry)

            subs = node.get("subcategories")
            has_subs = isinstance(subs, Mapping) and bool(subs)
            # Containers without entries of their own only exist through their children.
            if own or not has_subs:
                self.add_members(name, own)
            if has_subs:
                self.walk(subs, name)

    def unassigned(self) -> list[Entry]:
        return [
            e for pool in self.pools.values() for e in pool if id(e) not in self.assigned
        ]


def summarize_counts(categories: CategoryMap) -> str:
    """Fixed-template overview of category statuses."""

    counts = {s: sum(1 for c in categories.values() if c.status is s) for s in CategoryStatus}
    return (
        f"Entries were grouped into {len(categories)} categories: "
        f"{counts[CategoryStatus.MATCH]} match, "
        f"{counts[CategoryStatus.MISMATCH]} differ and "
        f"{counts[CategoryStatus.MISSING]} are missing on one side. "
        "Review the categories with differences and adjust the grouping where needed."
    )


def fallback_result(standard: Sequence[Entry], check: Sequence[Entry]) -> ClassificationResult:
    """All entries in one ``Unclassified`` category with status ``mismatch``."""

    category = build_category(UNCLASSIFIED, [*standard, *check])
    category.status = CategoryStatus.MISMATCH
    return ClassificationResult({UNCLASSIFIED: category}, FALLBACK_SUMMARY)


def ingest_classification(
    text: str, standard: Sequence[Entry], check: Sequence[Entry]
) -> ClassificationResult:
    """Build the category map described by the AI answer ``text``.

    Every input entry ends up in exactly one category. On any error the
    :func:`fallback_result` is returned instead.
    """

    try:
        tree = _unwrap(extract_json_object(text))
        linker = _Linker(standard, check)
        linker.walk(tree)
        leftovers = linker.unassigned()
        if leftovers:
            linker.add_members(UNCLASSIFIED, leftovers)
        categories = calculate(linker.categories)
    except Exception as e:  # noqa: BLE001 - any failure degrades to the fallback bucket
        _logger.warning(
            "classify:fallback error=%s detail=%s entries=%d",
            e.__class__.__name__,
            e,
            len(standard) + len(check),
        )
        return fallback_result(standard, check)

    _logger.info(
        "classify:ingested categories=%d unclassified=%d", len(categories), len(leftovers)
    )
    return ClassificationResult(categories, summarize_counts(categories))


def classify_entries(
    client: ChatClient, standard: Sequence[Entry], check: Sequence[Entry]
) -> ClassificationResult:
    """Ask the AI to group ``standard`` and ``check`` entries and ingest the answer.

    ``RemoteCallFailed`` propagates; an empty answer degrades to the fallback.
    """

    try:
        text = client.complete(
            prompting.build_classification_messages(standard, check),
            temperature=0.3,
            max_tokens=2000,
            purpose="classify",
        )
    except ResponseUnparseable as e:
        _logger.warning("classify:empty_response detail=%s", e)
        return fallback_result(standard, check)
    return ingest_classification(text, standard, check)


__all__ = [
    "FALLBACK_SUMMARY",
    "classify_entries",
    "fallback_result",
    "ingest_classification",
    "summarize_counts",
]
