from __future__ import annotations

import json
import logging
import math

from experiment_dashboard.utils.json_utils import (
    parse_json_or_default,
    safe_json_dumps,
    sanitize_for_json,
    script_safe_json,
)
from experiment_dashboard.utils.telemetry import get_logger, log_json, time_block


def test_time_block_logs_duration_and_fields(caplog):
    logger = logging.getLogger("expdash.test.timing")
    with caplog.at_level(logging.DEBUG, logger=logger.name):
        with time_block(logger, "align_series", categories=3) as fields:
            fields["points"] = 50
    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "align_series"
    assert payload["categories"] == 3
    assert payload["points"] == 50
    assert payload["duration_sec"] >= 0


def test_log_json_skips_disabled_levels(caplog):
    logger = logging.getLogger("expdash.test.quiet")
    with caplog.at_level(logging.WARNING, logger=logger.name):
        log_json(logger, "noise", level=logging.DEBUG)
    assert caplog.records == []


def test_get_logger_honours_log_level(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "warning")
    assert get_logger("expdash.test.level").level == logging.WARNING


def test_json_helpers():
    assert sanitize_for_json({1: [math.nan, math.inf, 2.5]}) == {"1": [None, None, 2.5]}
    assert safe_json_dumps({"v": float("nan")}) == '{"v": null}'
    assert script_safe_json({"s": "</script>"}) == '{"s": "<\\/script>"}'
    assert parse_json_or_default("{bad", {"d": 1}) == {"d": 1}
    assert parse_json_or_default(b"[1]", None) == [1]
    assert parse_json_or_default(None, "x") == "x"
