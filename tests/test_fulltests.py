from __future__ import annotations

from datetime import datetime, timezone

from experiment_dashboard.reporting.fulltests import (
    EPOCH,
    derive_fulltest_date,
    format_logs,
    logs_to_text,
    normalize_pod_logs,
    sort_fulltests,
)


def test_format_logs_strips_gutters_and_blank_runs():
    raw = "╭── Training\n│ epoch 1\n│ epoch 2\n\n\n\n      deep indent\n╰── done"
    assert format_logs(raw) == "Training\nepoch 1\nepoch 2\n\n  deep indent\ndone"


def test_format_logs_non_text():
    assert format_logs("") == ""
    assert format_logs(None) == ""  # type: ignore[arg-type]


def test_logs_to_text():
    assert logs_to_text(["a", 1]) == "a\n1"
    assert logs_to_text(None) == ""
    assert logs_to_text({"k": 1}) == '{\n  "k": 1\n}'


def test_normalize_pod_logs_shapes():
    assert normalize_pod_logs({"pod-1": ["a", "b"], "pod-2": "c"}) == {"pod-1": "a\nb", "pod-2": "c"}
    nested = {"job": {"pod-1": {"content": ["x", "y"]}, "pod-2": {"message": "m"}}}
    assert normalize_pod_logs(nested) == {"pod-1": "x\ny", "pod-2": "m"}
    assert normalize_pod_logs('{"pod": "text"}') == {"pod": "text"}
    assert normalize_pod_logs("plain text") == {}
    assert normalize_pod_logs([1, 2]) == {}


def test_derive_fulltest_date_prefers_name_stamp():
    assert derive_fulltest_date({"name": "Alice_202401021530", "created_at": "2020-01-01"}) == datetime(
        2024, 1, 2, 15, 30, tzinfo=timezone.utc
    )
    assert derive_fulltest_date({"name": "nostamp", "created_at": "2023-05-06T07:08:00Z"}) == datetime(
        2023, 5, 6, 7, 8, tzinfo=timezone.utc
    )
    assert derive_fulltest_date({"name": "Bob_209913991299"}) == EPOCH
    assert derive_fulltest_date({}) == EPOCH


def test_sort_fulltests_newest_first():
    tests = [
        {"id": 1, "name": "A_202401010000"},
        {"id": 2, "created_at": "2024-06-01"},
        {"id": 3},
    ]
    assert [t["id"] for t in sort_fulltests(tests)] == [2, 1, 3]
