from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from ..core.normalize import normalize
from ..reporting.listing import matches_search, sort_experiments
from .base import ExperimentSource, SourceError

logger = logging.getLogger("expdash.reports")

RUN_ID_RE = re.compile(r"^[A-Za-z0-9._-]+$")


class ReportsDirectorySource(ExperimentSource):
    """Experiments stored as one folder per run under ``root``.

    Each folder may hold ``record.json`` (metadata, tags, metric groups),
    ``params.json``, ``summary.json`` and ``goals.json``. The folder name is
    the experiment code unless ``record.json`` provides one.
    """

    def __init__(self, root: Path):
        self.root = Path(root).resolve()

    def _runs(self) -> list[Path]:
        if not self.root.exists():
            return []
        return sorted([p for p in self.root.iterdir() if p.is_dir()], key=lambda p: p.name)

    def _load_json(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text())
        except (OSError, ValueError) as exc:
            logger.debug("reports: unreadable %s: %s", path, exc)
            return default

    def run_dir(self, run_id: str) -> Path | None:
        if not RUN_ID_RE.fullmatch(run_id or ""):
            raise SourceError(f"Invalid run id: {run_id!r}", status=400)
        run_dir = (self.root / run_id).resolve()
        try:
            relative = run_dir.relative_to(self.root)
        except ValueError as exc:
            raise SourceError(f"Invalid run id: {run_id!r}", status=400) from exc
        # A run is a folder below the root, never the root itself.
        if not relative.parts:
            raise SourceError(f"Invalid run id: {run_id!r}", status=400)
        if not run_dir.is_dir():
            return None
        return run_dir

    def _load_record(self, run_dir: Path) -> dict[str, Any]:
        raw = self._load_json(run_dir / "record.json", {})
        record: dict[str, Any] = dict(raw) if isinstance(raw, Mapping) else {}
        record.setdefault("id", run_dir.name)
        record.setdefault("code", run_dir.name)
        if "params" not in record:
            record["params"] = self._load_json(run_dir / "params.json", {})
        if "summary" not in record:
            record["summary"] = self._load_json(run_dir / "summary.json", {})
        if "goals" not in record:
            record["goals"] = self._load_json(run_dir / "goals.json", [])
        return record

    def records(self) -> list[dict[str, Any]]:
        return [self._load_record(d) for d in self._runs()]

    def list_experiments(self, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        search = str((params or {}).get("search") or "")
        results = [r for r in self.records() if matches_search(normalize(r), search)]
        return {"results": results, "count": len(results)}

    def fetch_candidates(
        self, query: str, limit: int = 10, page: int = 1, exclude: Sequence[str] = ()
    ) -> list[dict[str, Any]]:
        excluded = {str(x) for x in exclude}
        matches = [
            r
            for r in self.list_experiments({"search": query})["results"]
            if str(r.get("id")) not in excluded and str(r.get("code")) not in excluded
        ]
        # Most recent first, so the freshest runs lead the suggestions.
        ranked = sort_experiments([normalize(r) for r in matches], key="date", direction="desc")
        start = max(0, (page - 1) * limit)
        return [dict(r) for r in ranked[start : start + limit]]

    def _comparison_side(self, run_id: str) -> dict[str, Any] | None:
        run_dir = self.run_dir(run_id)
        if run_dir is None:
            return None
        record = self._load_record(run_dir)
        return {"params": record.get("params"), "summary": record.get("summary")}

    def fetch_comparison_document(self, id_a: str, id_b: str) -> dict[str, Any]:
        doc_a = self._comparison_side(id_a)
        doc_b = self._comparison_side(id_b)
        payload: dict[str, Any] = {
            "success": doc_a is not None and doc_b is not None,
            "docA": doc_a,
            "docB": doc_b,
        }
        missing = [rid for rid, doc in ((id_a, doc_a), (id_b, doc_b)) if doc is None]
        if missing:
            payload["error"] = f"Run not found: {', '.join(missing)}"
        return payload

    def fetch_goal_records(self, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        filters = filters or {}
        exp_name = filters.get("exp_name")
        goal_type = str(filters.get("goal_type") or "").lower()
        out = []
        for record in self.records():
            if exp_name and exp_name not in (record.get("code"), record.get("id")):
                continue
            doc = normalize(record)
            if goal_type:
                doc["goals"] = [
                    g
                    for g in doc["goals"]
                    if isinstance(g, Mapping) and str(g.get("goal_type") or "").lower() == goal_type
                ]
            out.append(doc)
        return out
