from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

import pandas as pd

# Box-drawing characters left behind by rich/tqdm style log output.
_BOX_PREFIX_RE = re.compile(r"^[─-╿]+\s*")
_PIPE_PREFIX_RE = re.compile(r"^[│▏]\s*")
_INDENT_RE = re.compile(r"^\s{2,}")
_NAME_STAMP_RE = re.compile(r"^(.*)_([0-9]{12})$")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def logs_to_text(content: Any) -> str:
    if isinstance(content, list):
        return "\n".join(str(line) for line in content)
    if isinstance(content, str):
        return content
    if content is None:
        return ""
    return json.dumps(content, indent=2, default=str)


def format_logs(raw: str) -> str:
    """Strip box-drawing gutters and collapse runs of blank lines."""
    if not raw or not isinstance(raw, str):
        return ""
    collapsed: list[str] = []
    blank = 0
    for line in raw.splitlines():
        s = _BOX_PREFIX_RE.sub("", line)
        s = _PIPE_PREFIX_RE.sub("", s)
        s = _INDENT_RE.sub("  ", s)
        if not s.strip():
            blank += 1
            if blank <= 1:
                collapsed.append("")
        else:
            blank = 0
            collapsed.append(s)
    return "\n".join(collapsed)


def normalize_pod_logs(content: Any) -> dict[str, str]:
    """Map pod name -> log text from the several shapes the log endpoint returns."""
    parsed = content
    if isinstance(content, str):
        try:
            parsed = json.loads(content)
        except ValueError:
            return {}
    if not isinstance(parsed, Mapping) or not parsed:
        return {}
    if all(isinstance(v, Mapping) for v in parsed.values()):
        merged: dict[str, Any] = {}
        for value in parsed.values():
            merged.update(value)
        parsed = merged
    out: dict[str, str] = {}
    for pod, val in parsed.items():
        if isinstance(val, list):
            out[str(pod)] = "\n".join(str(v) for v in val)
        elif isinstance(val, str):
            out[str(pod)] = val
        elif isinstance(val, Mapping):
            s = val.get("content") or val.get("logs") or val.get("message") or json.dumps(val)
            out[str(pod)] = "\n".join(str(v) for v in s) if isinstance(s, list) else str(s)
        else:
            out[str(pod)] = str(val)
    return out


def derive_fulltest_date(test: Mapping[str, Any]) -> datetime:
    """Run date from an ``Author_YYYYMMDDHHMM`` name, else ``created_at``, else the epoch."""
    name = str(test.get("name") or test.get("code") or "")
    match = _NAME_STAMP_RE.match(name)
    if match:
        try:
            return datetime.strptime(match.group(2), "%Y%m%d%H%M").replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    created = test.get("created_at")
    if created:
        ts = pd.to_datetime(created, utc=True, errors="coerce")
        if not pd.isna(ts):
            return ts.to_pydatetime()
    return EPOCH


def sort_fulltests(tests: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    return sorted(tests, key=derive_fulltest_date, reverse=True)
