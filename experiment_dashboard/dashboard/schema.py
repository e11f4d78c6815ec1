"""Pydantic models for messages received on the live suggestions socket."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class SuggestionMessage(BaseModel):
    """One client message.

    Attributes:
        action: ``query`` sets the search text; ``next``/``previous`` move the
            highlight; ``select`` asks for the highlighted candidate. Defaults
            to ``query`` when a ``query`` field is present.
        query: Search text for ``query`` actions. Empty text clears the list.
        exclude: Experiment ids or codes to leave out of later results.
    """

    action: Literal["query", "next", "previous", "select"] | None = None
    query: str | None = Field(default=None, max_length=200)
    exclude: list[str] | None = None

    @model_validator(mode="after")
    def _default_action(self) -> SuggestionMessage:
        if self.action is None and self.query is not None:
            self.action = "query"
        return self
