from __future__ import annotations

import csv
import io
from pathlib import Path

import pytest

from experiment_dashboard.core.normalize import normalize
from experiment_dashboard.reporting.csv_export import COLUMNS, EXPORT_FILENAME, ExperimentCSVExporter


def _parse(text: str) -> list[dict[str, str]]:
    return list(csv.DictReader(io.StringIO(text)))


def test_render_formats_metrics():
    record = normalize(
        {
            "code": "EXP_A",
            "author": "alice",
            "description": 'says "hi", twice',
            "tags": "btc,momentum",
            "financial": {"pnl": 120.456, "winRate": 0.6543, "totalTrades": 41.0, "sharpeRatio": 1.23456},
            "mlMetrics": '{"precision": 0.712}',
        }
    )
    rows = _parse(ExperimentCSVExporter().render([record]))
    assert len(rows) == 1
    row = rows[0]
    assert list(row.keys()) == [name for name, _ in COLUMNS]
    assert row["Code"] == "EXP_A"
    assert row["Description"] == 'says "hi", twice'
    assert row["Tags"] == "btc;momentum"
    assert row["PnL"] == "120.46"
    assert row["Win Rate"] == "65.4%"
    assert row["Total Trades"] == "41"
    assert row["Sharpe Ratio"] == "1.235"
    assert row["Precision"] == "71.2%"


def test_missing_values_are_empty_not_zero():
    row = _parse(ExperimentCSVExporter().render([normalize({"code": "X", "financial": {"pnl": None}})]))[0]
    assert row["PnL"] == ""
    assert row["Win Rate"] == ""
    assert row["Recall"] == ""
    assert row["Date"] == ""


def test_export_writes_file(tmp_path: Path):
    path = ExperimentCSVExporter(tmp_path / "out").export([normalize({"code": "X"})])
    assert path == tmp_path / "out" / EXPORT_FILENAME
    assert path.read_text().splitlines()[0].startswith("Code,Date,Author")


def test_export_requires_out_dir():
    with pytest.raises(ValueError):
        ExperimentCSVExporter().export([])
