from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import experiment_dashboard.main
from experiment_dashboard.main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    for key in ("EXPDASH_API_BASE_URL", "EXPDASH_API_TOKEN", "EXPDASH_REPORTS_DIR"):
        monkeypatch.delenv(key, raising=False)
    # Keep load_dotenv from picking up a developer's .env file.
    monkeypatch.chdir(tmp_path)


def _write(path: Path, payload: object) -> Path:
    path.write_text(json.dumps(payload))
    return path


def test_diff_prints_rendered_changes(tmp_path: Path):
    a = _write(tmp_path / "a.json", {"params": {"a": 1, "b": {"x": 1}}, "summary": "{}"})
    b = _write(tmp_path / "b.json", {"params": {"a": 2, "b": {"x": 1, "y": [1, 2]}}, "summary": {}})
    result = runner.invoke(app, ["diff", str(a), str(b)])
    assert result.exit_code == 0, result.output
    assert "[params] 2 difference(s)" in result.output
    assert "changed  a: 1.000000 -> 2.000000" in result.output
    assert "added    b.y: (missing) -> array[2]" in result.output
    assert "[summary] 0 difference(s)" in result.output


def test_diff_json_output_and_truncation(tmp_path: Path):
    a = _write(tmp_path / "a.json", {"params": {"p": 1, "q": 1}})
    b = _write(tmp_path / "b.json", {"params": {"p": 2, "q": 2}})
    result = runner.invoke(app, ["diff", str(a), str(b), "--json", "--max-items", "1"])
    assert result.exit_code == 0, result.output
    sections = json.loads(result.output)
    assert sections[0] == {
        "section": "params",
        "truncated": True,
        "changes": [{"path": "p", "kind": "changed", "before": 1, "after": 2}],
    }


def test_diff_handles_deeply_nested_files(tmp_path: Path):
    docs = []
    for leaf in (1, 2):
        doc: dict = {"leaf": leaf}
        for _ in range(600):
            doc = {"k": doc}
        docs.append({"params": doc})
    a = _write(tmp_path / "a.json", docs[0])
    b = _write(tmp_path / "b.json", docs[1])
    result = runner.invoke(app, ["diff", str(a), str(b)])
    assert result.exit_code == 0, result.output
    assert "[params] 1 difference(s)" in result.output
    assert f"changed  {'.'.join(['k'] * 33)}: object{{1}} -> object{{1}}" in result.output


def test_diff_rejects_unreadable_input(tmp_path: Path):
    good = _write(tmp_path / "a.json", {})
    bad = tmp_path / "b.json"
    bad.write_text("[1, 2]")
    assert runner.invoke(app, ["diff", str(good), str(bad)]).exit_code == 2
    assert runner.invoke(app, ["diff", str(good), str(tmp_path / "nope.json")]).exit_code == 2


def test_export_csv_from_reports_dir(reports_dir: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EXPDASH_REPORTS_DIR", str(reports_dir))
    out_dir = tmp_path / "exports"
    result = runner.invoke(
        app, ["export-csv", "--output-dir", str(out_dir), "--tag", "btc", "--sort", "pnl"]
    )
    assert result.exit_code == 0, result.output
    lines = (out_dir / "experiments_metrics.csv").read_text().splitlines()
    assert len(lines) == 3
    assert lines[1].startswith("EXP_A,")
    assert lines[2].startswith("EXP_C,")
    assert "Wrote 2 experiments" in result.output


def test_export_csv_rejects_unknown_sort(reports_dir: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EXPDASH_REPORTS_DIR", str(reports_dir))
    assert runner.invoke(app, ["export-csv", "--sort", "colour"]).exit_code == 2


def test_bad_config_exits_with_code_2(tmp_path: Path):
    cfg = tmp_path / "bad.yaml"
    cfg.write_text("diff_max_items: 0\n")
    result = runner.invoke(app, ["export-csv", "--config", str(cfg)])
    assert result.exit_code == 2


def test_suggest_lists_candidates(reports_dir: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EXPDASH_REPORTS_DIR", str(reports_dir))
    result = runner.invoke(app, ["suggest", "exp", "--exclude", "EXP_A"])
    assert result.exit_code == 0, result.output
    listed = [line for line in result.output.splitlines() if line.startswith("- ")]
    assert listed == ["- EXP_B\t2024-01-05", "- EXP_C\t2023-12-30"]

    result = runner.invoke(app, ["suggest", "zzz"])
    assert result.output.strip() == "No matches"


def test_serve_builds_app_and_runs_uvicorn(reports_dir: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("EXPDASH_REPORTS_DIR", str(reports_dir))
    seen = {}

    class _Server:
        def __init__(self, config):
            seen["config"] = config

        def run(self):
            seen["ran"] = True

    monkeypatch.setattr(experiment_dashboard.main.uvicorn, "Server", _Server)
    result = runner.invoke(app, ["serve", "--port", "8123"])
    assert result.exit_code == 0, result.output
    assert seen["ran"] is True
    assert seen["config"].port == 8123
    assert f"reports dir {reports_dir}" in result.output
