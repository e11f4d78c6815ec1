from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


class LoggingHTTPAdapter(HTTPAdapter):
    """HTTPAdapter that logs request attempts and durations."""

    def __init__(
        self,
        *args,
        logger: logging.Logger | None = None,
        log_level: int = logging.DEBUG,
        **kwargs,
    ):
        self.logger = logger or logging.getLogger("expdash.http")
        self.log_level = log_level
        super().__init__(*args, **kwargs)

    def send(self, request, **kwargs):  # type: ignore[override]
        start = time.perf_counter()
        try:
            response = super().send(request, **kwargs)
        except Exception as exc:
            self.logger.log(
                self.log_level,
                "http-error %s %s after %.3fs: %s",
                getattr(request, "method", "UNKNOWN"),
                getattr(request, "url", "<unknown>"),
                time.perf_counter() - start,
                exc,
            )
            raise

        attempts = 1
        history = getattr(getattr(getattr(response, "raw", None), "retries", None), "history", None)
        if history:
            attempts = len(history) + 1

        self.logger.log(
            self.log_level,
            "http %s %s -> %s in %.3fs (attempt=%s)",
            getattr(request, "method", "UNKNOWN"),
            getattr(request, "url", "<unknown>"),
            getattr(response, "status_code", "?"),
            time.perf_counter() - start,
            attempts,
        )
        return response


def create_retry_session(
    total: int = 3,
    backoff_factor: float = 0.5,
    status_forcelist: tuple = (429, 500, 502, 503, 504),
    token: str | None = None,
) -> requests.Session:
    # Only idempotent reads are retried at the transport level.
    retry = Retry(
        total=total,
        read=total,
        connect=total,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=frozenset(["HEAD", "GET", "OPTIONS"]),
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = LoggingHTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
    if token:
        session.headers["Authorization"] = f"Token {token}"
    return session


def build_query_string(params: Mapping[str, Any] | None = None) -> str:
    """Encode ``params`` as ``?k=v&...``, skipping None and empty-string values."""
    pairs = []
    for key, value in (params or {}).items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        pairs.append((key, str(value)))
    qs = urlencode(pairs)
    return f"?{qs}" if qs else ""


__all__ = ["LoggingHTTPAdapter", "build_query_string", "create_retry_session"]
