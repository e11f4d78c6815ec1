from __future__ import annotations

import logging
from types import SimpleNamespace

import pytest
import requests
from requests.adapters import HTTPAdapter

from experiment_dashboard.utils.http import (
    LoggingHTTPAdapter,
    build_query_string,
    create_retry_session,
)


def test_logging_http_adapter_logs_success(monkeypatch, caplog):
    response = requests.Response()
    response.status_code = 200
    response.raw = SimpleNamespace(retries=SimpleNamespace(history=[1, 2]))

    def fake_send(self, request, **kwargs):
        return response

    monkeypatch.setattr(HTTPAdapter, "send", fake_send)

    logger = logging.getLogger("expdash.http.test")
    adapter = LoggingHTTPAdapter(logger=logger, log_level=logging.INFO)
    with caplog.at_level(logging.INFO, logger=logger.name):
        req = SimpleNamespace(method="GET", url="https://example.com/api/fulltests/")
        got = adapter.send(req)

    assert got is response
    assert "http GET https://example.com/api/fulltests/ -> 200" in caplog.text
    assert "attempt=3" in caplog.text


def test_logging_http_adapter_logs_error(monkeypatch, caplog):
    def fake_send(self, request, **kwargs):
        raise requests.ConnectionError("boom")

    monkeypatch.setattr(HTTPAdapter, "send", fake_send)

    adapter = LoggingHTTPAdapter()
    with caplog.at_level(logging.DEBUG, logger="expdash.http"):
        with pytest.raises(requests.ConnectionError):
            adapter.send(SimpleNamespace(method="GET", url="https://example.com"))

    assert "http-error GET https://example.com" in caplog.text


def test_create_retry_session_mounts_adapter_and_headers():
    session = create_retry_session(total=2, token="abc")
    adapter = session.get_adapter("https://example.com")
    assert isinstance(adapter, LoggingHTTPAdapter)
    assert adapter.max_retries.total == 2
    assert 502 in adapter.max_retries.status_forcelist
    assert session.headers["Authorization"] == "Token abc"
    assert session.headers["Accept"] == "application/json"


def test_create_retry_session_without_token():
    assert "Authorization" not in create_retry_session().headers


def test_build_query_string_skips_empty_values():
    qs = build_query_string({"search": "EXP 1", "page": 2, "exclude": None, "tag": "", "all": True})
    assert qs == "?search=EXP+1&page=2&all=true"
    assert build_query_string({"a": None}) == ""
    assert build_query_string(None) == ""
