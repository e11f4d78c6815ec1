from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any


class SourceError(Exception):
    """A backend/source call failed; carries the HTTP status and body when known."""

    def __init__(self, message: str, status: int | None = None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.payload = payload


class ExperimentSource(ABC):
    @abstractmethod
    def list_experiments(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Return ``{"results": [...raw records], "count": int}``."""

    @abstractmethod
    def fetch_candidates(
        self, query: str, limit: int = 10, page: int = 1, exclude: Sequence[str] = ()
    ) -> list[dict[str, Any]]:
        """Ranked experiment records matching ``query``, minus ``exclude`` ids."""

    @abstractmethod
    def fetch_comparison_document(self, id_a: str, id_b: str) -> dict[str, Any]:
        """Return ``{"success": bool, "docA": {params, summary}|None, "docB": ...}``."""

    @abstractmethod
    def fetch_goal_records(self, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Raw experiment records, each carrying zero or more goal samples."""

    async def fetch_candidates_async(
        self, query: str, limit: int = 10, page: int = 1, exclude: Sequence[str] = ()
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self.fetch_candidates, query, limit, page, exclude)

    def list_fulltests(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        raise SourceError("Fulltests are only available from the experiment API", status=404)

    def get_fulltest_logs(self, fulltest_id: str) -> Any:
        raise SourceError("Fulltests are only available from the experiment API", status=404)

    def list_test_suites(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Return ``{"results": [...suites], "pagination": {...}}``."""
        raise SourceError("Test suites are only available from the experiment API", status=404)

    def get_test_suite_plot(self, plot_path: str) -> str:
        raise SourceError("Test suites are only available from the experiment API", status=404)

    def list_test_suite_tests(
        self, suite_path: str, params: Mapping[str, Any] | None = None
    ) -> dict[str, Any]:
        raise SourceError("Test suites are only available from the experiment API", status=404)
