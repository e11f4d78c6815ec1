"""Canonicalize experiment records whose fields may arrive JSON-encoded.

The backend serves some fields either as native JSON structures or as
strings holding encoded JSON (and, for list fields, sometimes as a bare
comma-joined string). ``normalize`` resolves every designated field to its
native shape so downstream code never has to branch on type.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..utils.json_utils import parse_json_or_default

SEQUENCE_FIELDS: tuple[str, ...] = ("tags", "improvements", "goals")
MAPPING_FIELDS: tuple[str, ...] = ("metrics", "financial", "mlMetrics", "params", "summary")


def _split_csv(text: str) -> list[str]:
    return [token.strip() for token in text.split(",") if token.strip()]


def coerce_sequence(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, (str, bytes, bytearray)):
        text = value.decode("utf-8", "replace") if not isinstance(value, str) else value
        stripped = text.strip()
        if not stripped:
            return []
        if stripped.startswith("["):
            parsed = parse_json_or_default(stripped, None)
            return parsed if isinstance(parsed, list) else []
        return _split_csv(stripped)
    return []


def coerce_mapping(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, (str, bytes, bytearray)):
        parsed = parse_json_or_default(value, None)
        return parsed if isinstance(parsed, dict) else {}
    return {}


def normalize(record: Any) -> dict[str, Any]:
    """Return a normalized copy of ``record``. Never raises.

    Non-mapping input (including ``None`` and undecodable strings) yields a
    document holding only the designated fields at their defaults.
    """
    if isinstance(record, (str, bytes, bytearray)):
        record = parse_json_or_default(record, None)
    doc: dict[str, Any] = dict(record) if isinstance(record, Mapping) else {}
    for key in SEQUENCE_FIELDS:
        doc[key] = coerce_sequence(doc.get(key))
    for key in MAPPING_FIELDS:
        doc[key] = coerce_mapping(doc.get(key))
    return doc


def normalize_comparison(payload: Any) -> dict[str, Any]:
    """Normalize both sides of a ``{success, docA, docB}`` comparison payload.

    A missing side stays ``None`` so the view can still render the other one.
    """
    raw = payload if isinstance(payload, Mapping) else {}
    out: dict[str, Any] = {"success": bool(raw.get("success", False))}
    for side in ("docA", "docB"):
        value = raw.get(side)
        out[side] = normalize(value) if value is not None else None
    if raw.get("error"):
        out["error"] = str(raw["error"])
    return out
