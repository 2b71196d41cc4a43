"""Streaming search session controller.

A SearchSession runs at most one search at a time. Every search gets its
own handle; starting a new search rebinds ``_current`` to a fresh handle,
and a running read loop checks ``handle is self._current`` before it
touches any visible attribute. A superseded stream can keep draining in
the background, but nothing it decodes reaches the caller.

Usage::

    session = SearchSession()
    outcome = await session.start_search("一只无语的猫", limit=20)
    for meme in outcome.results:
        ...

``cancel()`` abandons the running search without an error and without
the local fallback. Any other failure (connection refused, non-2xx
status, broken stream, an ``error`` frame) publishes the curated fallback
results instead.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator, Optional, Sequence

import httpx

from memesearch.config import DEFAULT_STREAM_TIMEOUT, auth_headers, get_api_base, get_timeout
from memesearch.decoder import decode_stream
from memesearch.fallback import match_fallback
from memesearch.models import ResultEntity, SearchOutcome, SearchState, StreamEvent
from memesearch.progress import ProgressTracker

logger = logging.getLogger(__name__)

INCOMPLETE_STREAM_ERROR = "stream ended before the search completed"


class SessionListener:
    """Receives session lifecycle notifications. Override what you need."""

    def session_started(self, query: str, limit: int) -> None:
        pass

    def event_received(self, event: StreamEvent) -> None:
        pass

    def state_changed(self, state: SearchState) -> None:
        pass

    def session_finished(self, outcome: SearchOutcome) -> None:
        pass

    def session_cancelled(self, query: str) -> None:
        pass

    def fallback_used(self, query: str, error: str, results: list[ResultEntity]) -> None:
        pass


class _SessionHandle:
    """Identity of one search attempt, plus its cancellation signal."""

    def __init__(self, query: str) -> None:
        self.query = query
        self.cancelled = False
        self.task: Optional[asyncio.Future] = None

    def cancel(self) -> None:
        self.cancelled = True
        if self.task is not None and not self.task.done():
            self.task.cancel()


class SearchSession:
    """Owns the in-flight streaming search and its visible state."""

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        listener: Optional[SessionListener] = None,
        fallback_dataset: Optional[Sequence[ResultEntity]] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._base_url = base_url
        self._token = token
        self._client = client
        self._timeout = timeout
        self._fallback_dataset = fallback_dataset
        self.listener = listener or SessionListener()

        self._current: Optional[_SessionHandle] = None

        # Visible state
        self.state: Optional[SearchState] = None
        self.results: list[ResultEntity] = []
        self.total = 0
        self.error: Optional[str] = None
        self.used_fallback = False

    @property
    def is_searching(self) -> bool:
        return self._current is not None

    def _is_current(self, handle: _SessionHandle) -> bool:
        return handle is self._current and not handle.cancelled

    # --- Public operations ---

    async def start_search(self, query: str, limit: int = 20) -> SearchOutcome:
        """Run a streaming search until it finishes or is cancelled."""
        self.cancel()

        handle = _SessionHandle(query)
        tracker = ProgressTracker()
        self._current = handle
        self.state = tracker.state
        self.error = None
        self.used_fallback = False
        logger.debug("Starting search %r (limit=%d)", query, limit)
        self.listener.session_started(query, limit)
        self.listener.state_changed(tracker.state)

        handle.task = asyncio.ensure_future(self._run(handle, tracker, query, limit))
        try:
            await handle.task
        except asyncio.CancelledError:
            if handle.cancelled:
                logger.debug("Search %r cancelled", query)
                return SearchOutcome(query=query, cancelled=True)
            # The caller's own task was cancelled: end the session, re-raise
            if handle is self._current:
                self._current = None
                self.state = None
            raise
        except Exception as e:
            if not self._is_current(handle):
                logger.debug("Ignoring failure of superseded search %r: %s", query, e)
                return SearchOutcome(query=query, cancelled=True)
            return self._fail(handle, str(e) or type(e).__name__)

        if not self._is_current(handle):
            return SearchOutcome(query=query, cancelled=True)

        state = tracker.state
        if not state.finished:
            return self._fail(handle, INCOMPLETE_STREAM_ERROR)
        if state.error is not None:
            return self._fail(handle, state.error)
        return self._succeed(handle, state)

    def cancel(self) -> None:
        """Abandon the current search. Not an error: no fallback is shown."""
        handle = self._current
        if handle is None:
            return
        self._current = None
        handle.cancel()
        self.state = None
        self.listener.session_cancelled(handle.query)

    # --- Stream handling ---

    def _stream_url(self) -> str:
        return f"{(self._base_url or get_api_base()).rstrip('/')}/search/stream"

    def _headers(self) -> dict[str, str]:
        if self._token is None:
            headers = auth_headers("application/json")
        else:
            headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self._token}"}
        headers["Accept"] = "text/event-stream"
        return headers

    @contextlib.asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        timeout = self._timeout if self._timeout is not None else get_timeout(DEFAULT_STREAM_TIMEOUT)
        async with httpx.AsyncClient(timeout=timeout) as client:
            yield client

    async def _chunks(
        self, handle: _SessionHandle, response: httpx.Response
    ) -> AsyncIterator[bytes]:
        async for chunk in response.aiter_bytes():
            if not self._is_current(handle):
                return
            yield chunk

    async def _run(
        self,
        handle: _SessionHandle,
        tracker: ProgressTracker,
        query: str,
        limit: int,
    ) -> None:
        async with self._http() as client:
            async with client.stream(
                "POST",
                self._stream_url(),
                json={"query": query, "top_k": limit},
                headers=self._headers(),
            ) as response:
                response.raise_for_status()
                events = decode_stream(self._chunks(handle, response))
                async with contextlib.aclosing(events):
                    async for event in events:
                        if not self._is_current(handle):
                            return
                        self.listener.event_received(event)
                        if tracker.apply(event):
                            self.listener.state_changed(tracker.state)
                        if tracker.finished:
                            return

    # --- Terminal states ---

    def _succeed(self, handle: _SessionHandle, state: SearchState) -> SearchOutcome:
        results = list(state.results or [])
        self._current = None
        self.state = None
        self.results = results
        self.total = state.total
        self.error = None
        self.used_fallback = False
        logger.debug("Search %r finished with %d results", handle.query, len(results))
        outcome = SearchOutcome(query=handle.query, results=results, total=state.total)
        self.listener.session_finished(outcome)
        return outcome

    def _fail(self, handle: _SessionHandle, error: str) -> SearchOutcome:
        logger.warning("Search %r failed, showing local results: %s", handle.query, error)
        results = match_fallback(handle.query, self._fallback_dataset)
        self._current = None
        self.state = None
        self.results = results
        self.total = len(results)
        self.error = error
        self.used_fallback = True
        self.listener.fallback_used(handle.query, error, results)
        outcome = SearchOutcome(
            query=handle.query,
            results=results,
            total=len(results),
            error=error,
            used_fallback=True,
        )
        self.listener.session_finished(outcome)
        return outcome
