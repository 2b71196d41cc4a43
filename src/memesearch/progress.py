"""Stage state machine for a streaming search.

The server walks through query expansion, embedding, vector search and
enrichment before it sends ``complete`` (or ``error``). ProgressTracker
folds those events into a SearchState that a renderer can show at any
point.
"""

from __future__ import annotations

import logging

from memesearch.models import SearchState, StreamEvent
from memesearch.normalize import normalize_results

logger = logging.getLogger(__name__)

QUERY_EXPANSION_START = "query_expansion_start"
THINKING = "thinking"
QUERY_EXPANSION_DONE = "query_expansion_done"
EMBEDDING = "embedding"
SEARCHING = "searching"
ENRICHING = "enriching"
COMPLETE = "complete"
ERROR = "error"

STAGES = (
    QUERY_EXPANSION_START,
    THINKING,
    QUERY_EXPANSION_DONE,
    EMBEDDING,
    SEARCHING,
    ENRICHING,
    COMPLETE,
    ERROR,
)
TERMINAL_STAGES = frozenset({COMPLETE, ERROR})

# Visible progress steps and their labels
PROGRESS_STEPS = (
    (QUERY_EXPANSION_START, "理解意图"),
    (EMBEDDING, "生成向量"),
    (SEARCHING, "搜索"),
    (ENRICHING, "加载"),
)

DEFAULT_ERROR_MESSAGE = "search failed"


def stage_index(stage: str) -> int:
    """Index of the progress step a stage belongs to."""
    if stage in (THINKING, QUERY_EXPANSION_DONE):
        return 0
    for i, (key, _) in enumerate(PROGRESS_STEPS):
        if key == stage:
            return i
    return 0


def is_thinking(stage: str) -> bool:
    return stage in (THINKING, QUERY_EXPANSION_START)


def initial_state() -> SearchState:
    return SearchState(stage=QUERY_EXPANSION_START)


class ProgressTracker:
    """Applies stream events to one session's SearchState."""

    def __init__(self, state: SearchState | None = None) -> None:
        self.state = state if state is not None else initial_state()

    @property
    def finished(self) -> bool:
        return self.state.finished

    def apply(self, event: StreamEvent) -> bool:
        """Apply one event. Returns True if the state changed."""
        if self.state.finished:
            logger.debug("Ignoring %r event after terminal stage", event.stage)
            return False

        if event.stage not in STAGES:
            logger.debug("Unknown stage %r, tracking it as-is", event.stage)

        if event.stage == THINKING:
            return self._apply_thinking(event)
        if event.stage in TERMINAL_STAGES:
            if event.stage == COMPLETE:
                return self._apply_complete(event)
            return self._apply_error(event)

        state = self.state
        state.stage = event.stage
        if event.message:
            state.message = event.message
        if event.expanded_query:
            state.expanded_query = event.expanded_query
        return True

    def _apply_thinking(self, event: StreamEvent) -> bool:
        # Only deltas carry text; full snapshots and empty frames are repeats
        if not (event.is_delta and event.thinking_text):
            return False
        self.state.stage = THINKING
        self.state.thinking_text += event.thinking_text
        return True

    def _apply_complete(self, event: StreamEvent) -> bool:
        # Raises ValueError on a bad record before any state is touched
        results = normalize_results(event.results)
        total = event.total
        state = self.state
        state.stage = COMPLETE
        state.finished = True
        state.results = results
        state.total = total if isinstance(total, int) and not isinstance(total, bool) else len(results)
        if event.message:
            state.message = event.message
        return True

    def _apply_error(self, event: StreamEvent) -> bool:
        state = self.state
        state.stage = ERROR
        state.finished = True
        state.error = event.error or event.message or DEFAULT_ERROR_MESSAGE
        return True
