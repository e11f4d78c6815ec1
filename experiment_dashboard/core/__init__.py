"""Comparison, charting and search primitives shared by the dashboard views."""

from __future__ import annotations

from .diff import MISSING, ChangeEntry, SectionDiff, compare_documents, diff, render_value
from .normalize import normalize, normalize_comparison
from .suggestions import SuggestionSearchController, SuggestionState
from .timeseries import AlignedSeries, Sample, align, collect_samples

__all__ = [
    "MISSING",
    "AlignedSeries",
    "ChangeEntry",
    "Sample",
    "SectionDiff",
    "SuggestionSearchController",
    "SuggestionState",
    "align",
    "collect_samples",
    "compare_documents",
    "diff",
    "normalize",
    "normalize_comparison",
    "render_value",
]
