from __future__ import annotations

import json
from pathlib import Path

import pytest


def write_run(root: Path, name: str, **files: object) -> Path:
    """Create ``root/name`` holding one JSON file per keyword (``record`` -> record.json)."""
    run_dir = root / name
    run_dir.mkdir(parents=True, exist_ok=True)
    for stem, payload in files.items():
        (run_dir / f"{stem}.json").write_text(json.dumps(payload))
    return run_dir


@pytest.fixture
def reports_dir(tmp_path: Path) -> Path:
    root = tmp_path / "reports"
    root.mkdir()
    write_run(
        root,
        "EXP_A",
        record={
            "author": "alice",
            "date": "2024-01-02",
            "description": "momentum baseline",
            "status": "valid",
            "tags": "btc, momentum",
            "improvements": '["open"]',
            "financial": {"pnl": 120.5, "winRate": 0.65, "sharpeRatio": 1.2},
            "mlMetrics": '{"precision": 0.71}',
        },
        params={"window": 20, "risk": {"stop": 0.02}},
        summary={"sharpe": 1.2, "trades": 40},
        goals=[
            {"goal_type": "open", "value": 1.2, "timestamp": 100},
            {"goal_type": "open", "value": 3.4, "timestamp": 50},
            {"goal_type": "close", "value": 0.5, "timestamp": 100},
        ],
    )
    write_run(
        root,
        "EXP_B",
        record={
            "author": "bob",
            "date": "2024-01-05",
            "description": "mean reversion",
            "status": "valid",
            "tags": ["eth"],
            "improvements": [],
            "financial": {"pnl": -10.0, "winRate": 0.4},
        },
        params={"window": 30, "risk": {"stop": 0.02, "take": 0.05}},
        summary={"sharpe": 0.4, "trades": 40},
        goals=[{"goal_type": "reg", "value": 2.0, "timestamp": 75}],
    )
    write_run(
        root,
        "EXP_C",
        record={"author": "carol", "date": "2023-12-30", "status": "invalid", "tags": "btc"},
    )
    return root
