from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from typing import Any


def get_logger(name: str = "expdash") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers and not logging.getLogger().handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
        logger.addHandler(handler)
    level = os.environ.get("LOG_LEVEL")
    if level:
        logger.setLevel(level.upper())
    return logger


def log_json(logger: logging.Logger, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, **kwargs}
    logger.log(level, json.dumps(payload, default=str))


@contextmanager
def time_block(logger: logging.Logger, event: str, level: int = logging.DEBUG, **kwargs: Any):
    """Log ``event`` with its wall-clock duration once the block exits.

    Extra fields can be attached from inside the block by mutating the
    yielded dict, e.g. ``fields["entries"] = len(result)``.
    """
    start = time.perf_counter()
    fields: dict[str, Any] = dict(kwargs)
    try:
        yield fields
    finally:
        dur = time.perf_counter() - start
        log_json(logger, event, level=level, duration_sec=round(dur, 4), **fields)
