"""Experiment sources: the HTTP backend client and a local reports directory."""

from __future__ import annotations

from pathlib import Path

from ..config import DashboardConfig
from .api_client import ExperimentApiClient
from .base import ExperimentSource, SourceError
from .reports_dir import ReportsDirectorySource


def source_from_config(cfg: DashboardConfig) -> ExperimentSource:
    if cfg.uses_api:
        return ExperimentApiClient(
            cfg.api_base_url or "", token=cfg.api_token, timeout=cfg.request_timeout
        )
    return ReportsDirectorySource(Path(cfg.reports_dir))


__all__ = [
    "ExperimentApiClient",
    "ExperimentSource",
    "ReportsDirectorySource",
    "SourceError",
    "source_from_config",
]
