from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import pandas as pd

from ..utils.telemetry import time_block

logger = logging.getLogger("expdash.timeseries")

DEFAULT_MAX_POINTS = 50


@dataclass(frozen=True)
class Sample:
    value: float | None
    timestamp_millis: int | None
    source_label: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "timestamp_millis": self.timestamp_millis,
            "source_label": self.source_label,
        }


@dataclass
class AlignedSeries:
    timeline: list[int] = field(default_factory=list)
    per_category: dict[str, list[float | None]] = field(default_factory=dict)
    per_category_labels: dict[str, list[str | None]] = field(default_factory=dict)
    max_by_category: dict[str, Sample | None] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeline": list(self.timeline),
            "per_category": {k: list(v) for k, v in self.per_category.items()},
            "per_category_labels": {k: list(v) for k, v in self.per_category_labels.items()},
            "max_by_category": {
                k: (s.to_dict() if s is not None else None) for k, s in self.max_by_category.items()
            },
        }


def to_millis(value: Any) -> int | None:
    """Epoch milliseconds for a heterogeneous timestamp, or None when unparseable.

    Plain numbers are taken as epoch milliseconds; strings, datetimes and
    pandas timestamps go through ``pd.to_datetime`` (naive values are UTC).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            pass
        else:
            return int(number) if math.isfinite(number) else None
        value = text
    elif not isinstance(value, (datetime, date, pd.Timestamp)):
        return None
    try:
        ts = pd.to_datetime(value, utc=True, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    if ts is None or pd.isna(ts):
        return None
    return int(ts.value // 1_000_000)


def to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _valid_timestamp(ts: Any) -> bool:
    if ts is None or isinstance(ts, bool):
        return False
    if isinstance(ts, float):
        return math.isfinite(ts)
    return isinstance(ts, int)


def max_sample(samples: Iterable[Sample]) -> Sample | None:
    """Sample with the greatest value; first wins on ties; missing values are skipped."""
    best: Sample | None = None
    for sample in samples:
        value = sample.value
        if value is None or (isinstance(value, float) and math.isnan(value)):
            continue
        if best is None or value > best.value:  # type: ignore[operator]
            best = sample
    return best


def align(
    samples_by_category: Mapping[str, Sequence[Sample]],
    max_points: int = DEFAULT_MAX_POINTS,
) -> AlignedSeries:
    """Merge per-category samples onto one shared, windowed timeline.

    The timeline holds the distinct valid timestamps of every category,
    ascending, cut to the most recent ``max_points``. Slots with no sample at
    a timeline point are ``None`` (a chart gap). ``max_by_category`` is taken
    over the full, unwindowed sample lists.
    """
    if max_points < 1:
        raise ValueError(f"max_points must be >= 1, got {max_points}")

    with time_block(logger, "align_series", categories=len(samples_by_category)) as fields:
        distinct: set[int] = set()
        for samples in samples_by_category.values():
            for sample in samples:
                if _valid_timestamp(sample.timestamp_millis):
                    distinct.add(int(sample.timestamp_millis))  # type: ignore[arg-type]
        timeline = sorted(distinct)
        if len(timeline) > max_points:
            timeline = timeline[-max_points:]
        fields["points"] = len(timeline)

        result = AlignedSeries(timeline=timeline)
        for category, samples in samples_by_category.items():
            by_ts: dict[int, Sample] = {}
            for sample in samples:
                if not _valid_timestamp(sample.timestamp_millis):
                    continue
                by_ts.setdefault(int(sample.timestamp_millis), sample)  # type: ignore[arg-type]
            values: list[float | None] = []
            labels: list[str | None] = []
            for ts in timeline:
                hit = by_ts.get(ts)
                values.append(hit.value if hit is not None else None)
                labels.append(hit.source_label if hit is not None else None)
            result.per_category[category] = values
            result.per_category_labels[category] = labels
            result.max_by_category[category] = max_sample(samples)
    return result


def _record_label(record: Mapping[str, Any]) -> str:
    for key in ("code", "name", "id"):
        value = record.get(key)
        if value not in (None, ""):
            return str(value)
    return ""


def collect_samples(
    records: Iterable[Mapping[str, Any]],
    categories: Sequence[str],
) -> dict[str, list[Sample]]:
    """Group the goal samples carried by normalized records per category.

    Each record's ``goals`` list holds ``{goal_type, value, timestamp}``
    entries (``created_at`` is accepted for the timestamp). Goals of other
    categories are ignored; samples keep record order.
    """
    wanted = {c.lower(): c for c in categories}
    out: dict[str, list[Sample]] = {c: [] for c in categories}
    for record in records:
        label = _record_label(record)
        goals = record.get("goals") or []
        if not isinstance(goals, list):
            continue
        for goal in goals:
            if not isinstance(goal, Mapping):
                continue
            goal_type = str(goal.get("goal_type") or goal.get("category") or "").lower()
            category = wanted.get(goal_type)
            if category is None:
                continue
            raw_ts = goal.get("timestamp")
            if raw_ts is None:
                raw_ts = goal.get("created_at")
            out[category].append(
                Sample(
                    value=to_number(goal.get("value")),
                    timestamp_millis=to_millis(raw_ts),
                    source_label=str(goal.get("source") or label),
                )
            )
    return out


__all__ = [
    "AlignedSeries",
    "Sample",
    "align",
    "collect_samples",
    "max_sample",
    "to_millis",
    "to_number",
]
