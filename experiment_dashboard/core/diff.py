from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from ..utils.json_utils import sanitize_for_json
from ..utils.telemetry import time_block

logger = logging.getLogger("expdash.diff")

DEFAULT_MAX_ITEMS = 300
DEFAULT_MAX_DEPTH = 32
MISSING_MARKER = "(missing)"

ChangeKind = Literal["added", "removed", "changed"]


class _Missing:
    """Sentinel for an absent side of a change; distinct from JSON null."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> _Missing:
        return self

    def __deepcopy__(self, memo: dict) -> _Missing:
        return self


MISSING: Any = _Missing()


@dataclass(frozen=True)
class ChangeEntry:
    path: str
    kind: ChangeKind
    before: Any = MISSING
    after: Any = MISSING

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"path": self.path, "kind": self.kind}
        if self.before is not MISSING:
            out["before"] = self.before
        if self.after is not MISSING:
            out["after"] = self.after
        return out


def _is_mapping(value: Any) -> bool:
    return isinstance(value, Mapping)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _scalar_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if _is_number(a) and _is_number(b):
        if isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b):
            return True
        return a == b
    if _is_number(a) or _is_number(b):
        return False
    return type(a) is type(b) and a == b


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality: order-sensitive for sequences, key-set + values for mappings.

    Unlike ``==``, booleans never equal numbers (``True != 1``), and NaN equals
    NaN so that a document always compares equal to itself. Nesting is walked
    with an explicit stack, so arbitrarily deep documents compare without
    hitting the interpreter's recursion limit.
    """
    pending = [(a, b)]
    while pending:
        x, y = pending.pop()
        if x is y:
            continue
        if _is_mapping(x) or _is_mapping(y):
            if not (_is_mapping(x) and _is_mapping(y)):
                return False
            if len(x) != len(y) or set(x.keys()) != set(y.keys()):
                return False
            pending.extend((x[k], y[k]) for k in x)
            continue
        if _is_sequence(x) or _is_sequence(y):
            if not (_is_sequence(x) and _is_sequence(y)):
                return False
            if len(x) != len(y):
                return False
            pending.extend(zip(x, y))
            continue
        if not _scalar_equal(x, y):
            return False
    return True


def _union_keys(a: Mapping[str, Any], b: Mapping[str, Any]) -> list[Any]:
    keys = list(a.keys())
    seen = set(keys)
    keys.extend(k for k in b.keys() if k not in seen)
    return keys


_END = object()


def _walk(
    a: Mapping[str, Any],
    b: Mapping[str, Any],
    base_path: str,
    max_items: int,
    max_depth: int,
    out: list[ChangeEntry],
) -> None:
    # Depth-first over (left, right, path, depth, remaining keys) frames.
    frames = [(a, b, base_path, 0, iter(_union_keys(a, b)))]
    while frames and len(out) < max_items:
        left, right, prefix, depth, keys = frames[-1]
        key = next(keys, _END)
        if key is _END:
            frames.pop()
            continue
        path = f"{prefix}.{key}" if prefix else str(key)
        if key not in left:
            out.append(ChangeEntry(path, "added", after=right[key]))
            continue
        if key not in right:
            out.append(ChangeEntry(path, "removed", before=left[key]))
            continue
        va, vb = left[key], right[key]
        if _is_mapping(va) and _is_mapping(vb) and depth < max_depth:
            frames.append((va, vb, path, depth + 1, iter(_union_keys(va, vb))))
            continue
        if not deep_equal(va, vb):
            out.append(ChangeEntry(path, "changed", before=va, after=vb))


def diff(
    a: Mapping[str, Any] | None,
    b: Mapping[str, Any] | None,
    base_path: str = "",
    *,
    max_items: int = DEFAULT_MAX_ITEMS,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[ChangeEntry]:
    """Flat, path-addressed change list between two documents.

    Keys are visited in ``a``'s order followed by keys only present in ``b``.
    Nested mappings are descended into until ``max_depth``; deeper pairs are
    compared as whole values. At most ``max_items`` entries are returned.
    """
    if max_items < 1:
        return []
    out: list[ChangeEntry] = []
    _walk(a or {}, b or {}, base_path, max_items, max_depth, out)
    return out[:max_items]


@dataclass
class SectionDiff:
    section: str
    changes: list[ChangeEntry]
    truncated: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "section": self.section,
            "truncated": self.truncated,
            "changes": [c.to_dict() for c in self.changes],
        }


COMPARISON_SECTIONS: tuple[str, ...] = ("params", "summary")


def compare_documents(
    doc_a: Mapping[str, Any] | None,
    doc_b: Mapping[str, Any] | None,
    *,
    max_items: int = DEFAULT_MAX_ITEMS,
    max_depth: int = DEFAULT_MAX_DEPTH,
    sections: Sequence[str] = COMPARISON_SECTIONS,
) -> list[SectionDiff]:
    """Diff each comparison section independently, each with its own cap."""
    results: list[SectionDiff] = []
    for section in sections:
        left = (doc_a or {}).get(section)
        right = (doc_b or {}).get(section)
        left = left if _is_mapping(left) else {}
        right = right if _is_mapping(right) else {}
        with time_block(logger, "diff_section", section=section) as fields:
            # One extra entry tells us whether the cap cut anything off.
            entries = diff(left, right, max_items=max_items + 1, max_depth=max_depth)
            fields["entries"] = len(entries)
        results.append(
            SectionDiff(
                section=section,
                changes=entries[:max_items],
                truncated=len(entries) > max_items,
            )
        )
    return results


def render_value(value: Any) -> str:
    """Collapsed, display-ready text for one side of a change entry."""
    if value is MISSING:
        return MISSING_MARKER
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if _is_number(value):
        if isinstance(value, float) and not math.isfinite(value):
            return str(value)
        return f"{value:.6f}"
    if _is_mapping(value):
        return f"object{{{len(value)}}}"
    if _is_sequence(value):
        return f"array[{len(value)}]"
    return str(value)


def is_expandable(value: Any) -> bool:
    return value is not MISSING and (_is_mapping(value) or _is_sequence(value))


def expand_value(value: Any) -> str:
    """Full JSON text shown when a collapsed object/array is expanded."""
    if value is MISSING:
        return MISSING_MARKER
    return json.dumps(sanitize_for_json(value), indent=2, sort_keys=False, default=str)


__all__ = [
    "MISSING",
    "ChangeEntry",
    "SectionDiff",
    "compare_documents",
    "deep_equal",
    "diff",
    "expand_value",
    "is_expandable",
    "render_value",
]
