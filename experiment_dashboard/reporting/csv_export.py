from __future__ import annotations

import csv
import io
import math
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any

EXPORT_FILENAME = "experiments_metrics.csv"


def _metric(record: Mapping[str, Any], group: str, key: str) -> float | None:
    metrics = record.get(group)
    if not isinstance(metrics, Mapping):
        return None
    value = metrics.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        fval = float(value)
    except (TypeError, ValueError):
        return None
    return fval if math.isfinite(fval) else None


def _fixed(group: str, key: str, digits: int) -> Callable[[Mapping[str, Any]], str]:
    def fmt(record: Mapping[str, Any]) -> str:
        value = _metric(record, group, key)
        return "" if value is None else f"{value:.{digits}f}"

    return fmt


def _percent(group: str, key: str) -> Callable[[Mapping[str, Any]], str]:
    def fmt(record: Mapping[str, Any]) -> str:
        value = _metric(record, group, key)
        return "" if value is None else f"{value * 100:.1f}%"

    return fmt


def _integer(group: str, key: str) -> Callable[[Mapping[str, Any]], str]:
    def fmt(record: Mapping[str, Any]) -> str:
        value = _metric(record, group, key)
        return "" if value is None else str(int(value))

    return fmt


def _field(key: str) -> Callable[[Mapping[str, Any]], str]:
    def fmt(record: Mapping[str, Any]) -> str:
        value = record.get(key)
        return "" if value is None else str(value)

    return fmt


def _tags(record: Mapping[str, Any]) -> str:
    return ";".join(str(t) for t in record.get("tags") or [])


# Missing metrics are written as empty cells, never as 0.
COLUMNS: tuple[tuple[str, Callable[[Mapping[str, Any]], str]], ...] = (
    ("Code", _field("code")),
    ("Date", _field("date")),
    ("Author", _field("author")),
    ("Description", _field("description")),
    ("Status", _field("status")),
    ("Tags", _tags),
    ("PnL", _fixed("financial", "pnl", 2)),
    ("Profit", _fixed("financial", "profit", 2)),
    ("Loss", _fixed("financial", "loss", 2)),
    ("Win Rate", _percent("financial", "winRate")),
    ("Total Trades", _integer("financial", "totalTrades")),
    ("Sharpe Ratio", _fixed("financial", "sharpeRatio", 3)),
    ("Max Drawdown", _percent("financial", "maxDrawdown")),
    ("PnL Q1", _fixed("financial", "pnlQ1", 2)),
    ("PnL Q2", _fixed("financial", "pnlQ2", 2)),
    ("PnL Q3", _fixed("financial", "pnlQ3", 2)),
    ("PnL Q4", _fixed("financial", "pnlQ4", 2)),
    ("Precision", _percent("mlMetrics", "precision")),
    ("Recall", _percent("mlMetrics", "recall")),
    ("F1 Score", _percent("mlMetrics", "f1Score")),
    ("Accuracy", _percent("mlMetrics", "accuracy")),
    ("Val Precision", _percent("mlMetrics", "validationPrecision")),
    ("Val Recall", _percent("mlMetrics", "validationRecall")),
    ("Val F1", _percent("mlMetrics", "validationF1")),
    ("Val Accuracy", _percent("mlMetrics", "validationAccuracy")),
    ("Profit Factor", _fixed("financial", "profitFactor", 2)),
    ("Calmar Ratio", _fixed("financial", "calmarRatio", 3)),
    ("Sortino Ratio", _fixed("financial", "sortinoRatio", 3)),
)


class ExperimentCSVExporter:
    """Writes the experiment metrics table for normalized records."""

    def __init__(self, out_dir: Path | None = None):
        self.out_dir = Path(out_dir) if out_dir is not None else None

    def rows(self, records: Iterable[Mapping[str, Any]]) -> list[list[str]]:
        return [[fmt(r) for _, fmt in COLUMNS] for r in records]

    def render(self, records: Iterable[Mapping[str, Any]]) -> str:
        buf = io.StringIO()
        w = csv.writer(buf, lineterminator="\n")
        w.writerow([name for name, _ in COLUMNS])
        w.writerows(self.rows(records))
        return buf.getvalue()

    def export(self, records: Iterable[Mapping[str, Any]], filename: str = EXPORT_FILENAME) -> Path:
        if self.out_dir is None:
            raise ValueError("out_dir is required to export to a file")
        self.out_dir.mkdir(parents=True, exist_ok=True)
        path = self.out_dir / filename
        with open(path, "w", newline="") as f:
            f.write(self.render(records))
        return path
