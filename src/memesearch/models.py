"""Data models for meme search results and stream events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

DEFAULT_EVENT_TYPE = "progress"


@dataclass
class ResultEntity:
    """A single matched meme, in the shape every consumer works with."""

    id: str
    url: str
    score: Optional[float] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    is_animated: bool = False
    width: Optional[int] = None
    height: Optional[int] = None

    def is_ranked(self) -> bool:
        return self.score is not None


@dataclass
class ResultPage:
    """One page of results from the plain search or listing endpoints."""

    results: list[ResultEntity] = field(default_factory=list)
    total: int = 0


@dataclass
class StreamEvent:
    """One decoded frame of the streaming search protocol."""

    stage: str
    payload: dict[str, Any] = field(default_factory=dict)
    event_type: str = DEFAULT_EVENT_TYPE

    def _text(self, key: str) -> str:
        # Wrongly typed values read as absent
        value = self.payload.get(key)
        return value if isinstance(value, str) else ""

    @property
    def message(self) -> str:
        return self._text("message")

    @property
    def thinking_text(self) -> str:
        return self._text("thinking_text")

    @property
    def is_delta(self) -> bool:
        return self.payload.get("is_delta") is True

    @property
    def expanded_query(self) -> str:
        return self._text("expanded_query")

    @property
    def results(self) -> Optional[list]:
        return self.payload.get("results")

    @property
    def total(self) -> Optional[int]:
        return self.payload.get("total")

    @property
    def error(self) -> str:
        return self._text("error")


@dataclass
class SearchState:
    """Progress of one streaming search, as shown to the user."""

    stage: str
    message: str = ""
    thinking_text: str = ""
    expanded_query: str = ""
    results: Optional[list[ResultEntity]] = None
    total: int = 0
    error: Optional[str] = None
    finished: bool = False

    @property
    def succeeded(self) -> bool:
        return self.finished and self.error is None


@dataclass
class SearchOutcome:
    """What a finished (or abandoned) search session produced."""

    query: str
    results: list[ResultEntity] = field(default_factory=list)
    total: int = 0
    error: Optional[str] = None
    used_fallback: bool = False
    cancelled: bool = False
