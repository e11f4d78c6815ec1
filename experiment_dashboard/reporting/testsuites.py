from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any


def _int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Pagination:
    page: int
    per_page: int
    total_items: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any] | None, page: int, per_page: int) -> Pagination:
        """Read the backend's camelCase pagination block, filling gaps from the request."""
        raw = raw or {}
        per_page = max(1, _int(raw.get("itemsPerPage"), per_page))
        page = max(1, _int(raw.get("currentPage"), page))
        total_items = max(0, _int(raw.get("totalItems"), 0))
        total_pages = _int(raw.get("totalPages"), math.ceil(total_items / per_page))
        total_pages = max(1, total_pages)
        has_next = raw.get("hasNextPage")
        has_prev = raw.get("hasPrevPage")
        return cls(
            page=page,
            per_page=per_page,
            total_items=total_items,
            total_pages=total_pages,
            has_next=bool(has_next) if has_next is not None else page < total_pages,
            has_prev=bool(has_prev) if has_prev is not None else page > 1,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def progress_percent(value: Any) -> int:
    """Completion fraction (0..1) as a whole percentage clamped to 0..100."""
    try:
        fval = float(value or 0)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(fval):
        return 0
    return max(0, min(100, round(fval * 100)))


def runs_label(item: Mapping[str, Any]) -> str:
    """``done/started/total``; started falls back to done when the backend omits it."""
    done = item.get("completed_runs")
    started = item.get("started_runs")
    if started is None:
        started = done
    return "/".join("-" if v is None else str(v) for v in (done, started, item.get("total_runs")))


def in_progress_count(item: Mapping[str, Any]) -> int:
    return max(0, _int(item.get("in_progress_count"), 0))


def plot_url(plot_path: str | None, path_prefix: str = "", base_url: str = "") -> str | None:
    """Public URL of a stored plot; paths under ``path_prefix`` are re-rooted at ``base_url``.

    Only http(s) URLs and absolute paths are returned.
    """
    if not plot_path:
        return None
    url = plot_path
    if path_prefix and base_url and plot_path.startswith(path_prefix):
        url = base_url.rstrip("/") + "/" + plot_path[len(path_prefix) :].lstrip("/")
    if url.startswith(("http://", "https://", "/")) and not url.startswith("//"):
        return url
    return None


def suite_row(item: Mapping[str, Any], path_prefix: str = "", base_url: str = "") -> dict[str, Any]:
    """Suite or test record with the derived display fields attached."""
    row = dict(item)
    row["progress_pct"] = progress_percent(item.get("progress"))
    row["runs"] = runs_label(item)
    row["in_progress"] = in_progress_count(item)
    row["plot_url"] = (
        plot_url(item.get("plot_path"), path_prefix, base_url) if item.get("plot_available", True) else None
    )
    return row
