from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from ..core.timeseries import to_millis

SEARCH_FIELDS: tuple[str, ...] = ("code", "name", "author", "description")

# sort key -> (metric group, field); None group means a top-level field
SORT_KEYS: dict[str, tuple[str | None, str]] = {
    "date": (None, "date"),
    "pnl": ("financial", "pnl"),
    "winRate": ("financial", "winRate"),
    "sharpeRatio": ("financial", "sharpeRatio"),
    "precision": ("mlMetrics", "precision"),
}

QUICK_FILTERS: tuple[str, ...] = ("all", "invalid", "no_improvement", "profitable", "high_win_rate")


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        fval = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(fval) else fval


def _group_value(record: Mapping[str, Any], group: str, key: str) -> float | None:
    metrics = record.get(group)
    if not isinstance(metrics, Mapping):
        return None
    return _number(metrics.get(key))


def matches_search(record: Mapping[str, Any], term: str) -> bool:
    needle = (term or "").strip().lower()
    if not needle:
        return True
    return any(needle in str(record.get(f) or "").lower() for f in SEARCH_FIELDS)


def matches_filter(record: Mapping[str, Any], filter_type: str) -> bool:
    improvements = record.get("improvements") or []
    status = str(record.get("status") or "").lower()
    if not filter_type or filter_type == "all":
        return True
    if filter_type == "invalid":
        return status == "invalid"
    if filter_type == "no_improvement":
        return not improvements and status != "invalid"
    if filter_type == "profitable":
        pnl = _group_value(record, "financial", "pnl")
        return pnl is not None and pnl > 0
    if filter_type == "high_win_rate":
        win_rate = _group_value(record, "financial", "winRate")
        return win_rate is not None and win_rate > 0.6
    return filter_type in improvements


def filter_experiments(
    records: Iterable[Mapping[str, Any]],
    search: str = "",
    filter_type: str = "all",
    tags: Sequence[str] = (),
) -> list[Mapping[str, Any]]:
    """Search text, quick filter, then any-of tag filter, in that order."""
    wanted = set(tags)
    out = []
    for record in records:
        if not matches_search(record, search):
            continue
        if not matches_filter(record, filter_type):
            continue
        if wanted and not wanted.intersection(record.get("tags") or []):
            continue
        out.append(record)
    return out


def sort_key_value(record: Mapping[str, Any], key: str) -> float | None:
    group, field_name = SORT_KEYS.get(key, (None, key))
    if group is None:
        raw = record.get(field_name)
        if field_name == "date":
            return _number(to_millis(raw))
        return _number(raw)
    return _group_value(record, group, field_name)


def sort_experiments(
    records: Iterable[Mapping[str, Any]], key: str = "date", direction: str = "desc"
) -> list[Mapping[str, Any]]:
    """Stable sort on ``key``; records without a value always go last."""
    if key not in SORT_KEYS:
        raise ValueError(f"Unknown sort key: {key}")
    rows = list(records)
    present = [r for r in rows if sort_key_value(r, key) is not None]
    absent = [r for r in rows if sort_key_value(r, key) is None]
    present.sort(key=lambda r: sort_key_value(r, key), reverse=direction == "desc")  # type: ignore[arg-type, return-value]
    return present + absent


def paginate(
    records: Sequence[Mapping[str, Any]], page: int = 1, per_page: int = 10
) -> tuple[list[Mapping[str, Any]], int]:
    total_pages = max(1, math.ceil(len(records) / per_page)) if per_page > 0 else 1
    page = min(max(1, page), total_pages)
    start = (page - 1) * per_page
    return list(records[start : start + per_page]), total_pages


def all_tags(records: Iterable[Mapping[str, Any]]) -> list[str]:
    return sorted({str(t) for r in records for t in (r.get("tags") or []) if t})


def improved_experiments(records: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    """Valid experiments that improved at least one goal category."""
    return [
        r
        for r in records
        if str(r.get("status") or "valid").lower() == "valid" and (r.get("improvements") or [])
    ]
