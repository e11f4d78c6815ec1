from __future__ import annotations

import json
import math
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any


def json_default(obj: Any) -> Any:
    if is_dataclass(obj):
        return asdict(obj)
    if isinstance(obj, (set, tuple)):
        return list(obj)
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj)} is not JSON serializable")


def _sanitize_scalar(data: Any) -> Any:
    if isinstance(data, float):
        if math.isnan(data) or math.isinf(data):
            return None
        return data
    if isinstance(data, Path):
        return str(data)
    return data


def sanitize_for_json(data: Any) -> Any:
    # Explicit stack of (value, container, slot) so deep documents do not recurse.
    root: list[Any] = [None]
    pending: list[tuple[Any, Any, Any]] = [(data, root, 0)]
    while pending:
        value, parent, slot = pending.pop()
        if is_dataclass(value) and not isinstance(value, type):
            value = asdict(value)
        if isinstance(value, dict):
            items = [(str(key), item) for key, item in value.items()]
            out: dict[str, Any] = dict.fromkeys(key for key, _ in items)
            parent[slot] = out
            pending.extend((item, out, key) for key, item in reversed(items))
        elif isinstance(value, (list, tuple, set)):
            seq: list[Any] = [None] * len(value)
            parent[slot] = seq
            pending.extend((item, seq, i) for i, item in reversed(list(enumerate(value))))
        else:
            parent[slot] = _sanitize_scalar(value)
    return root[0]


def safe_json_dumps(data: Any, **kwargs: Any) -> str:
    sanitized = sanitize_for_json(data)
    return json.dumps(sanitized, default=json_default, allow_nan=False, **kwargs)


def parse_json_or_default(text: Any, default: Any) -> Any:
    """Parse ``text`` as JSON, returning ``default`` when it is not valid JSON."""
    if isinstance(text, (bytes, bytearray)):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError:
            return default
    if not isinstance(text, str):
        return default
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return default


def script_safe_json(data: Any) -> str:
    """JSON for embedding inside an inline ``<script>`` block."""
    return safe_json_dumps(data).replace("</", "<\\/")
