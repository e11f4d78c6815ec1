from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import quote

import requests

from ..utils.http import build_query_string, create_retry_session
from .base import ExperimentSource, SourceError

logger = logging.getLogger("expdash.api")


def _extract_results(raw: Any) -> tuple[list[dict[str, Any]], int]:
    """Pull the record list and total count out of the backend's list envelopes.

    The backend answers either DRF-style (``{results, count}``) or with a
    ``{data: {experiments, pagination: {totalItems}}}`` envelope; a bare list
    is accepted too.
    """
    if isinstance(raw, list):
        return raw, len(raw)
    if not isinstance(raw, Mapping):
        return [], 0
    data = raw.get("data")
    results: Any = raw.get("results")
    if results is None and isinstance(data, Mapping):
        results = data.get("experiments")
    if results is None:
        results = data
    if not isinstance(results, list):
        results = []
    count = raw.get("count")
    if count is None and isinstance(data, Mapping):
        count = (data.get("pagination") or {}).get("totalItems")
    try:
        return results, int(count)
    except (TypeError, ValueError):
        return results, len(results)


class ExperimentApiClient(ExperimentSource):
    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or create_retry_session(token=token)

    def _get(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        url = f"{url}{build_query_string(params)}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SourceError(f"Request to {path} failed: {exc}") from exc

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                data = response.json()
            except ValueError:
                data = response.text
        else:
            data = response.text

        if not response.ok:
            logger.warning("api %s returned %s", path, response.status_code)
            raise SourceError(
                f"API error {response.status_code}", status=response.status_code, payload=data
            )
        return data

    def list_experiments(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        raw = self._get("/api/fulltests/frontend_list/", params)
        results, count = _extract_results(raw)
        return {"results": results, "count": count}

    def fetch_candidates(
        self, query: str, limit: int = 10, page: int = 1, exclude: Sequence[str] = ()
    ) -> list[dict[str, Any]]:
        params = {
            "search": query,
            "limit": limit,
            "page": page,
            "exclude": ",".join(str(x) for x in exclude) or None,
        }
        return self.list_experiments(params)["results"]

    def fetch_comparison_document(self, id_a: str, id_b: str) -> dict[str, Any]:
        raw = self._get("/api/fulltests/compare/", {"exp_a": id_a, "exp_b": id_b})
        if not isinstance(raw, Mapping):
            raise SourceError("Comparison response is not a JSON object", payload=raw)
        return dict(raw)

    def fetch_goal_records(self, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        raw = self._get("/api/dashboard/experiment_value/", filters)
        results, _ = _extract_results(raw)
        return results

    def list_fulltests(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        raw = self._get("/api/fulltests/", params)
        results, count = _extract_results(raw)
        out: dict[str, Any] = {"results": results, "count": count}
        if isinstance(raw, Mapping):
            out["next"] = raw.get("next")
            out["previous"] = raw.get("previous")
        return out

    def get_fulltest_logs(self, fulltest_id: str) -> Any:
        return self._get(f"/api/fulltests/{quote(str(fulltest_id), safe='')}/logs/")

    def _suite_page(self, raw: Any) -> dict[str, Any]:
        # Test-suite endpoints answer {success, data: [...], pagination: {...}}.
        if isinstance(raw, Mapping) and raw.get("success") is False:
            raise SourceError(str(raw.get("error") or "Test suite request failed"), payload=raw)
        results, count = _extract_results(raw)
        pagination = raw.get("pagination") if isinstance(raw, Mapping) else None
        if not isinstance(pagination, Mapping):
            pagination = {"totalItems": count}
        return {"results": results, "pagination": dict(pagination)}

    def list_test_suites(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        return self._suite_page(self._get("/api/fulltests/testsuites/", params))

    def get_test_suite_plot(self, plot_path: str) -> str:
        raw = self._get("/api/fulltests/testsuites/plot/", {"path": plot_path})
        if isinstance(raw, Mapping):
            if raw.get("success") is False:
                raise SourceError(str(raw.get("error") or "Plot unavailable"), payload=raw)
            return str(raw.get("content") or "")
        return raw if isinstance(raw, str) else ""

    def list_test_suite_tests(
        self, suite_path: str, params: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        query = {"suite_path": suite_path, **(params or {})}
        return self._suite_page(self._get("/api/fulltests/testsuites/tests/", query))
