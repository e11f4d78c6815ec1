from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from experiment_dashboard.data import ReportsDirectorySource, SourceError, source_from_config
from experiment_dashboard.config import DashboardConfig
from experiment_dashboard.data.api_client import ExperimentApiClient


def test_list_experiments_reads_every_run(reports_dir: Path):
    source = ReportsDirectorySource(reports_dir)
    out = source.list_experiments()
    assert out["count"] == 3
    assert [r["code"] for r in out["results"]] == ["EXP_A", "EXP_B", "EXP_C"]
    assert out["results"][0]["params"] == {"window": 20, "risk": {"stop": 0.02}}


def test_list_experiments_search(reports_dir: Path):
    source = ReportsDirectorySource(reports_dir)
    assert [r["code"] for r in source.list_experiments({"search": "BOB"})["results"]] == ["EXP_B"]


def test_fetch_candidates_ranks_recent_first_and_excludes(reports_dir: Path):
    source = ReportsDirectorySource(reports_dir)
    got = source.fetch_candidates("EXP", limit=2)
    assert [r["code"] for r in got] == ["EXP_B", "EXP_A"]
    got = source.fetch_candidates("EXP", limit=2, exclude=["EXP_B"])
    assert [r["code"] for r in got] == ["EXP_A", "EXP_C"]
    assert [r["code"] for r in source.fetch_candidates("EXP", limit=2, page=2)] == ["EXP_C"]


def test_fetch_candidates_async_runs_in_thread(reports_dir: Path):
    source = ReportsDirectorySource(reports_dir)
    got = asyncio.run(source.fetch_candidates_async("carol"))
    assert [r["code"] for r in got] == ["EXP_C"]


def test_comparison_document(reports_dir: Path):
    source = ReportsDirectorySource(reports_dir)
    doc = source.fetch_comparison_document("EXP_A", "EXP_B")
    assert doc["success"] is True
    assert doc["docA"]["summary"] == {"sharpe": 1.2, "trades": 40}
    assert doc["docB"]["params"]["window"] == 30


def test_comparison_with_missing_run_keeps_other_side(reports_dir: Path):
    source = ReportsDirectorySource(reports_dir)
    doc = source.fetch_comparison_document("EXP_A", "NOPE")
    assert doc["success"] is False
    assert doc["docA"] is not None
    assert doc["docB"] is None
    assert doc["error"] == "Run not found: NOPE"


@pytest.mark.parametrize("run_id", ["../etc", "a/b", "", ".", ".."])
def test_invalid_run_ids_are_rejected(reports_dir: Path, run_id: str):
    source = ReportsDirectorySource(reports_dir)
    with pytest.raises(SourceError) as info:
        source.fetch_comparison_document(run_id, "EXP_A")
    assert info.value.status == 400


def test_reports_root_is_not_a_run(reports_dir: Path):
    (reports_dir / "record.json").write_text('{"author": "root"}')
    source = ReportsDirectorySource(reports_dir)
    with pytest.raises(SourceError) as info:
        source.run_dir(".")
    assert info.value.status == 400
    assert source.run_dir("EXP_A") == (reports_dir / "EXP_A").resolve()


def test_unreadable_json_falls_back(reports_dir: Path):
    (reports_dir / "EXP_B" / "summary.json").write_text("{broken")
    source = ReportsDirectorySource(reports_dir)
    assert source.fetch_comparison_document("EXP_A", "EXP_B")["docB"]["summary"] == {}


def test_goal_records_filter_by_experiment_and_type(reports_dir: Path):
    source = ReportsDirectorySource(reports_dir)
    records = source.fetch_goal_records({"exp_name": "EXP_A", "goal_type": "open"})
    assert len(records) == 1
    assert [g["value"] for g in records[0]["goals"]] == [1.2, 3.4]
    assert len(source.fetch_goal_records()) == 3


def test_missing_root_is_empty(tmp_path: Path):
    source = ReportsDirectorySource(tmp_path / "absent")
    assert source.list_experiments() == {"results": [], "count": 0}


def test_fulltests_need_the_api(reports_dir: Path):
    with pytest.raises(SourceError) as info:
        ReportsDirectorySource(reports_dir).list_fulltests()
    assert info.value.status == 404


def test_source_from_config(tmp_path: Path):
    assert isinstance(source_from_config(DashboardConfig(reports_dir=str(tmp_path))), ReportsDirectorySource)
    api = source_from_config(DashboardConfig(api_base_url="http://backend", api_token="t"))
    assert isinstance(api, ExperimentApiClient)
    assert api.session.headers["Authorization"] == "Token t"
