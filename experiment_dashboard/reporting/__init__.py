"""Listing, export and log helpers behind the dashboard pages."""

from __future__ import annotations

from .csv_export import ExperimentCSVExporter

__all__ = ["ExperimentCSVExporter"]
