from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_GOAL_CATEGORIES: tuple[str, ...] = ("open", "close", "reg")


@dataclass
class DashboardConfig:
    api_base_url: str | None = None
    api_token: str | None = None
    reports_dir: str = "reports"
    diff_max_items: int = 300
    diff_max_depth: int = 32
    chart_max_points: int = 50
    goal_categories: list[str] = field(default_factory=lambda: list(DEFAULT_GOAL_CATEGORIES))
    suggestion_limit: int = 10
    suggestion_debounce_sec: float = 0.25
    page_size: int = 10
    request_timeout: float = 10.0
    suite_page_size: int = 20
    plot_path_prefix: str = ""
    plot_base_url: str = ""

    @property
    def uses_api(self) -> bool:
        return bool(self.api_base_url)


def _positive_int(raw: Mapping[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    try:
        ivalue = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be an integer, got {value!r}") from exc
    if ivalue < 1:
        raise ValueError(f"{key} must be >= 1, got {ivalue}")
    return ivalue


def _non_negative_float(raw: Mapping[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        fvalue = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{key} must be a number, got {value!r}") from exc
    if fvalue < 0:
        raise ValueError(f"{key} must be >= 0, got {fvalue}")
    return fvalue


def config_from_mapping(raw: Mapping[str, Any] | None) -> DashboardConfig:
    raw = raw or {}
    categories = raw.get("goal_categories", list(DEFAULT_GOAL_CATEGORIES))
    if isinstance(categories, str):
        categories = [c.strip() for c in categories.split(",") if c.strip()]
    if not isinstance(categories, list) or not categories:
        raise ValueError("goal_categories must be a non-empty list")
    if len(categories) > 3:
        raise ValueError("goal_categories supports at most three categories")

    base_url = raw.get("api_base_url") or None
    if base_url:
        base_url = str(base_url).rstrip("/")

    return DashboardConfig(
        api_base_url=base_url,
        api_token=raw.get("api_token") or None,
        reports_dir=str(raw.get("reports_dir", "reports")),
        diff_max_items=_positive_int(raw, "diff_max_items", 300),
        diff_max_depth=_positive_int(raw, "diff_max_depth", 32),
        chart_max_points=_positive_int(raw, "chart_max_points", 50),
        goal_categories=[str(c) for c in categories],
        suggestion_limit=_positive_int(raw, "suggestion_limit", 10),
        suggestion_debounce_sec=_non_negative_float(raw, "suggestion_debounce_sec", 0.25),
        page_size=_positive_int(raw, "page_size", 10),
        request_timeout=_non_negative_float(raw, "request_timeout", 10.0),
        suite_page_size=_positive_int(raw, "suite_page_size", 20),
        plot_path_prefix=str(raw.get("plot_path_prefix") or ""),
        plot_base_url=str(raw.get("plot_base_url") or ""),
    )


def load_config(path: str | Path | None = None) -> DashboardConfig:
    raw: dict[str, Any] = {}
    if path is not None:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config root must be a mapping: {path}")
    return apply_env_overrides(config_from_mapping(raw))


def apply_env_overrides(cfg: DashboardConfig) -> DashboardConfig:
    env_url = os.environ.get("EXPDASH_API_BASE_URL")
    if env_url:
        cfg.api_base_url = env_url.rstrip("/")
    env_token = os.environ.get("EXPDASH_API_TOKEN")
    if env_token:
        cfg.api_token = env_token
    env_reports = os.environ.get("EXPDASH_REPORTS_DIR")
    if env_reports:
        cfg.reports_dir = env_reports
    return cfg
