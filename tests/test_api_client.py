from __future__ import annotations

import json

import pytest
import requests

from experiment_dashboard.data.api_client import ExperimentApiClient, _extract_results
from experiment_dashboard.data.base import SourceError


class FakeSession:
    def __init__(self, responses: dict[str, tuple[int, object]] | None = None, exc=None):
        self.responses = responses or {}
        self.exc = exc
        self.urls: list[str] = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        if self.exc is not None:
            raise self.exc
        path = url.split("://", 1)[-1].split("/", 1)[-1].split("?", 1)[0]
        status, body = self.responses.get("/" + path, (404, {"detail": "Not found"}))
        resp = requests.Response()
        resp.status_code = status
        if isinstance(body, str):
            resp._content = body.encode()
            resp.headers["content-type"] = "text/plain"
        else:
            resp._content = json.dumps(body).encode()
            resp.headers["content-type"] = "application/json"
        return resp


def _client(session: FakeSession) -> ExperimentApiClient:
    return ExperimentApiClient("https://api.example.com/", session=session)


def test_list_experiments_reads_data_envelope():
    session = FakeSession(
        {
            "/api/fulltests/frontend_list/": (
                200,
                {"data": {"experiments": [{"code": "E1"}], "pagination": {"totalItems": 42}}},
            )
        }
    )
    out = _client(session).list_experiments({"search": "E", "page": None})
    assert out == {"results": [{"code": "E1"}], "count": 42}
    assert session.urls == ["https://api.example.com/api/fulltests/frontend_list/?search=E"]


def test_fetch_candidates_forwards_paging_and_exclusions():
    session = FakeSession({"/api/fulltests/frontend_list/": (200, {"results": [], "count": 0})})
    _client(session).fetch_candidates("EXP", limit=5, page=2, exclude=["a", "b"])
    assert session.urls[0].endswith("?search=EXP&limit=5&page=2&exclude=a%2Cb")


def test_fetch_comparison_document():
    doc = {"success": True, "docA": {"params": {}}, "docB": {"params": {}}}
    session = FakeSession({"/api/fulltests/compare/": (200, doc)})
    assert _client(session).fetch_comparison_document("A", "B") == doc
    assert session.urls[0].endswith("/api/fulltests/compare/?exp_a=A&exp_b=B")


def test_comparison_must_be_an_object():
    session = FakeSession({"/api/fulltests/compare/": (200, [1, 2])})
    with pytest.raises(SourceError):
        _client(session).fetch_comparison_document("A", "B")


def test_goal_records_use_experiment_value_endpoint():
    session = FakeSession({"/api/dashboard/experiment_value/": (200, [{"code": "E1", "goals": []}])})
    records = _client(session).fetch_goal_records({"exp_name": "E1", "goal_type": None})
    assert records == [{"code": "E1", "goals": []}]
    assert session.urls[0].endswith("/api/dashboard/experiment_value/?exp_name=E1")


def test_error_status_raises_source_error_with_payload():
    session = FakeSession({"/api/fulltests/": (500, {"detail": "kaput"})})
    with pytest.raises(SourceError) as info:
        _client(session).list_fulltests()
    assert info.value.status == 500
    assert info.value.payload == {"detail": "kaput"}


def test_transport_failure_raises_source_error():
    session = FakeSession(exc=requests.ConnectionError("refused"))
    with pytest.raises(SourceError, match="refused"):
        _client(session).list_experiments()


def test_fulltest_logs_quote_the_id_and_return_text():
    session = FakeSession({"/api/fulltests/a%2Fb/logs/": (200, "line 1\nline 2")})
    assert _client(session).get_fulltest_logs("a/b") == "line 1\nline 2"


def test_list_fulltests_keeps_paging_links():
    body = {"results": [{"id": 1}], "count": 1, "next": None, "previous": None}
    session = FakeSession({"/api/fulltests/": (200, body)})
    assert _client(session).list_fulltests() == {
        "results": [{"id": 1}],
        "count": 1,
        "next": None,
        "previous": None,
    }


@pytest.mark.parametrize(
    "raw, expected",
    [
        ([{"a": 1}], ([{"a": 1}], 1)),
        ({"results": [{"a": 1}], "count": "7"}, ([{"a": 1}], 7)),
        ({"results": [{"a": 1}], "count": "many"}, ([{"a": 1}], 1)),
        ({"data": [{"a": 1}]}, ([{"a": 1}], 1)),
        ("oops", ([], 0)),
    ],
)
def test_extract_results(raw, expected):
    assert _extract_results(raw) == expected


SUITE_PAGE = {
    "success": True,
    "data": [{"asset": "BTC", "suite": "s1", "path": "/suites/s1", "progress": 0.5}],
    "pagination": {"currentPage": 1, "itemsPerPage": 20, "totalItems": 1, "totalPages": 1},
}


def test_list_test_suites_reads_data_and_pagination():
    session = FakeSession({"/api/fulltests/testsuites/": (200, SUITE_PAGE)})
    out = _client(session).list_test_suites({"page": 1, "limit": 20, "search": None})
    assert out == {"results": SUITE_PAGE["data"], "pagination": SUITE_PAGE["pagination"]}
    assert session.urls[0].endswith("/api/fulltests/testsuites/?page=1&limit=20")


def test_list_test_suite_tests_forwards_suite_path():
    body = {"success": True, "data": [{"name": "t1"}, {"name": "t2"}]}
    session = FakeSession({"/api/fulltests/testsuites/tests/": (200, body)})
    out = _client(session).list_test_suite_tests("/suites/s1", {"page": 2, "limit": 5})
    assert out == {"results": [{"name": "t1"}, {"name": "t2"}], "pagination": {"totalItems": 2}}
    assert session.urls[0].endswith("?suite_path=%2Fsuites%2Fs1&page=2&limit=5")


def test_test_suite_failure_envelope_raises():
    session = FakeSession({"/api/fulltests/testsuites/": (200, {"success": False, "error": "index offline"})})
    with pytest.raises(SourceError, match="index offline"):
        _client(session).list_test_suites()


def test_test_suite_plot_returns_content():
    session = FakeSession({"/api/fulltests/testsuites/plot/": (200, {"content": "<div>plot</div>"})})
    assert _client(session).get_test_suite_plot("/plots/s1.html") == "<div>plot</div>"
    assert session.urls[0].endswith("/api/fulltests/testsuites/plot/?path=%2Fplots%2Fs1.html")
