"""Asynchronous suggestion search that only ever shows the latest answer.

Every non-empty query bumps ``request_epoch`` and starts a lookup tagged
with that epoch. When a lookup settles, its tag is compared with the
controller's current epoch; a mismatch means a newer keystroke superseded
it and the outcome is dropped without touching visible state. The
underlying I/O is not required to be cancellable.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger("expdash.suggest")

IDLE = "idle"
SEARCHING = "searching"
RESOLVED = "resolved"
FAILED = "failed"

Lookup = Callable[[str, int, int, Sequence[str]], Awaitable[Sequence[Mapping[str, Any]]]]


@dataclass
class SuggestionState:
    query: str = ""
    candidates: list[dict[str, Any]] = field(default_factory=list)
    request_epoch: int = 0
    status: str = IDLE
    error: str | None = None
    highlighted_index: int = -1

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "candidates": list(self.candidates),
            "request_epoch": self.request_epoch,
            "status": self.status,
            "error": self.error,
            "highlighted_index": self.highlighted_index,
        }


def candidate_id(record: Mapping[str, Any]) -> str | None:
    for key in ("id", "code", "name"):
        value = record.get(key)
        if value not in (None, ""):
            return str(value)
    return None


def _is_excluded(record: Mapping[str, Any], excluded: set[str]) -> bool:
    if not excluded:
        return False
    return any(
        str(record.get(key)) in excluded for key in ("id", "code") if record.get(key) is not None
    )


class SuggestionSearchController:
    def __init__(
        self,
        lookup: Lookup,
        *,
        limit: int = 10,
        page: int = 1,
        exclude: Iterable[str] = (),
        debounce: float = 0.0,
        on_change: Callable[[SuggestionState], Any] | None = None,
    ):
        self._lookup = lookup
        self.limit = limit
        self.page = page
        self.exclude = {str(x) for x in exclude}
        self.debounce = max(0.0, float(debounce))
        self.on_change = on_change
        self.state = SuggestionState()
        self._task: asyncio.Task | None = None

    # -- network state machine -------------------------------------------------

    def set_query(self, text: str, *, force: bool = False) -> asyncio.Task | None:
        """Handle a change of the query text. Must run inside an event loop.

        Only the empty string clears to idle; any other text, whitespace
        included, is looked up. Unchanged text is a no-op unless ``force`` is
        set, and returns the lookup still in flight, if any.
        """
        text = text or ""
        if text == self.state.query and not force:
            if self._task is not None and not self._task.done():
                return self._task
            return None
        self.state.request_epoch += 1
        self.state.query = text
        if not text:
            self.state.status = IDLE
            self.state.error = None
            self._replace_candidates([])
            self._notify()
            return None
        self.state.status = SEARCHING
        self._notify()
        epoch = self.state.request_epoch
        self._task = asyncio.get_running_loop().create_task(self._run(text, epoch))
        return self._task

    async def search(self, text: str) -> SuggestionState:
        """Set the query and wait for its lookup to settle."""
        task = self.set_query(text)
        if task is not None:
            await task
        return self.state

    def set_exclude(self, exclude: Iterable[str]) -> None:
        self.exclude = {str(x) for x in exclude}

    def cancel_pending(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _is_current(self, epoch: int) -> bool:
        return epoch == self.state.request_epoch

    async def _run(self, text: str, epoch: int) -> None:
        if self.debounce:
            await asyncio.sleep(self.debounce)
            if not self._is_current(epoch):
                logger.debug("suggest: debounce for %r overtaken (epoch=%s)", text, epoch)
                return
        try:
            results = await self._lookup(text, self.limit, self.page, sorted(self.exclude))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if not self._is_current(epoch):
                logger.debug("suggest: stale failure for %r suppressed (epoch=%s)", text, epoch)
                return
            logger.warning("suggest: lookup for %r failed: %s", text, exc)
            self.state.status = FAILED
            self.state.error = str(exc) or exc.__class__.__name__
            self._replace_candidates([])
            self._notify()
            return
        if not self._is_current(epoch):
            logger.debug(
                "suggest: stale result for %r suppressed (epoch=%s, current=%s)",
                text,
                epoch,
                self.state.request_epoch,
            )
            return
        candidates = [dict(r) for r in results or [] if not _is_excluded(r, self.exclude)]
        self.state.status = RESOLVED
        self.state.error = None
        self._replace_candidates(candidates)
        self._notify()

    # -- keyboard navigation ---------------------------------------------------

    def highlight_next(self) -> int:
        count = len(self.state.candidates)
        if count:
            self.state.highlighted_index = (self.state.highlighted_index + 1) % count
            self._notify()
        return self.state.highlighted_index

    def highlight_previous(self) -> int:
        count = len(self.state.candidates)
        if count:
            idx = self.state.highlighted_index
            self.state.highlighted_index = count - 1 if idx <= 0 else idx - 1
            self._notify()
        return self.state.highlighted_index

    def select(self) -> dict[str, Any] | None:
        idx = self.state.highlighted_index
        if 0 <= idx < len(self.state.candidates):
            return self.state.candidates[idx]
        return None

    # -- helpers ---------------------------------------------------------------

    def _replace_candidates(self, candidates: list[dict[str, Any]]) -> None:
        self.state.candidates = candidates
        self.state.highlighted_index = -1

    def _notify(self) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(self.state)
        except Exception:
            logger.exception("suggest: on_change callback failed")


__all__ = [
    "FAILED",
    "IDLE",
    "RESOLVED",
    "SEARCHING",
    "SuggestionSearchController",
    "SuggestionState",
    "candidate_id",
]
