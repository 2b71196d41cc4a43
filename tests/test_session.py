"""Tests for the streaming search session controller, using httpx.MockTransport."""

import asyncio
import json

import httpx

from memesearch.models import ResultEntity
from memesearch.session import INCOMPLETE_STREAM_ERROR, SearchSession, SessionListener

BASE = "http://memes.test/api/v1"

FALLBACK = [
    ResultEntity(id="f1", url="u/f1", description="橘猫", tags=["猫"], category="猫咪"),
    ResultEntity(id="f2", url="u/f2", description="柴犬", tags=["狗"], category="狗狗"),
]


def _frame(payload: dict, event: str | None = None) -> bytes:
    text = f"event: {event}\n" if event else ""
    text += "data: " + json.dumps(payload, ensure_ascii=False) + "\n\n"
    return text.encode("utf-8")


FULL_STREAM = [
    _frame({"message": "正在理解"}, event="query_expansion_start"),
    _frame({"thinking_text": "用户想要", "is_delta": True}, event="thinking"),
    _frame({"thinking_text": "一只猫", "is_delta": True}, event="thinking"),
    _frame({"message": "理解完成", "expanded_query": "猫 无语"}, event="query_expansion_done"),
    _frame({"message": "生成向量"}, event="embedding"),
    _frame({"message": "搜索中"}, event="searching"),
    _frame({"message": "加载中"}, event="enriching"),
    _frame({
        "results": [
            {"id": "m1", "url": "https://cdn.test/m1.gif", "score": 0.92,
             "vlm_description": "翻白眼的猫", "tags": ["猫"], "is_animated": True},
            {"id": "m2", "url": "https://cdn.test/m2.png", "score": 0.81,
             "description": "无语的猫", "tags": ["猫", "无语"]},
        ],
        "total": 2,
    }, event="complete"),
]


class RecordingListener(SessionListener):
    def __init__(self):
        self.calls = []
        self.stages = []
        self.thinking = []
        self.fallback = None

    def session_started(self, query, limit):
        self.calls.append(("started", query, limit))

    def state_changed(self, state):
        self.stages.append(state.stage)
        self.thinking.append(state.thinking_text)

    def session_finished(self, outcome):
        self.calls.append(("finished", outcome.query))

    def session_cancelled(self, query):
        self.calls.append(("cancelled", query))

    def fallback_used(self, query, error, results):
        self.fallback = (query, error, [m.id for m in results])


def _stream_handler(chunks, requests=None, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)

        async def body():
            for chunk in chunks:
                yield chunk

        return httpx.Response(status_code, content=body(), headers={"content-type": "text/event-stream"})

    return handler


def _run_search(handler, query="猫", limit=20, **kwargs):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            session = SearchSession(base_url=BASE, client=client, fallback_dataset=FALLBACK, **kwargs)
            outcome = await session.start_search(query, limit)
            return session, outcome

    return asyncio.run(run())


class TestSuccessfulSearch:
    def test_full_stream(self):
        listener = RecordingListener()
        session, outcome = _run_search(_stream_handler(FULL_STREAM), listener=listener)

        assert not outcome.cancelled
        assert not outcome.used_fallback
        assert outcome.error is None
        assert [m.id for m in outcome.results] == ["m1", "m2"]
        assert outcome.results[0].description == "翻白眼的猫"
        assert outcome.results[0].is_animated
        assert outcome.total == 2

        assert session.state is None
        assert session.results == outcome.results
        assert not session.is_searching

        assert listener.stages[0] == "query_expansion_start"
        assert listener.stages[-1] == "complete"
        assert "用户想要一只猫" in listener.thinking
        assert listener.calls[0] == ("started", "猫", 20)
        assert listener.calls[-1] == ("finished", "猫")

    def test_request_shape(self):
        requests = []
        _run_search(_stream_handler(FULL_STREAM, requests), query="无语", limit=5, token="secret")

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE}/search/stream"
        assert json.loads(request.content) == {"query": "无语", "top_k": 5}
        assert request.headers["authorization"] == "Bearer secret"

    def test_no_token_no_auth_header(self, monkeypatch):
        monkeypatch.delenv("MEMESEARCH_API_TOKEN", raising=False)
        requests = []
        _run_search(_stream_handler(FULL_STREAM, requests))
        assert "authorization" not in requests[0].headers

    def test_token_from_environment(self, monkeypatch):
        monkeypatch.setenv("MEMESEARCH_API_TOKEN", "env-token")
        requests = []
        _run_search(_stream_handler(FULL_STREAM, requests))
        assert requests[0].headers["authorization"] == "Bearer env-token"

    def test_empty_results_are_not_an_error(self):
        listener = RecordingListener()
        chunks = [_frame({"message": "搜索中"}, event="searching"), _frame({"results": [], "total": 0}, event="complete")]
        session, outcome = _run_search(_stream_handler(chunks), listener=listener)

        assert outcome.results == []
        assert outcome.error is None
        assert not outcome.used_fallback
        assert session.results == []
        assert listener.fallback is None

    def test_stream_split_into_tiny_chunks(self):
        data = b"".join(FULL_STREAM)
        chunks = [data[i:i + 7] for i in range(0, len(data), 7)]
        _, outcome = _run_search(_stream_handler(chunks))
        assert [m.id for m in outcome.results] == ["m1", "m2"]

    def test_malformed_frame_does_not_abort(self):
        chunks = [b"data: {broken\n\n"] + FULL_STREAM
        _, outcome = _run_search(_stream_handler(chunks))
        assert not outcome.used_fallback
        assert len(outcome.results) == 2

    def test_frames_after_complete_ignored(self):
        chunks = FULL_STREAM + [_frame({"error": "late"}, event="error")]
        _, outcome = _run_search(_stream_handler(chunks))
        assert outcome.error is None
        assert len(outcome.results) == 2


class TestFailures:
    def test_error_frame_uses_fallback(self):
        listener = RecordingListener()
        chunks = [
            _frame({"message": "正在理解"}, event="query_expansion_start"),
            _frame({"error": "embedding service down"}, event="error"),
        ]
        session, outcome = _run_search(_stream_handler(chunks), query="猫", listener=listener)

        assert outcome.used_fallback
        assert outcome.error == "embedding service down"
        assert [m.id for m in outcome.results] == ["f1"]
        assert session.state is None
        assert session.error == "embedding service down"
        assert session.used_fallback
        assert listener.fallback == ("猫", "embedding service down", ["f1"])

    def test_http_error_status_uses_fallback(self):
        _, outcome = _run_search(_stream_handler([], status_code=503), query="不存在的词零匹配")
        assert outcome.used_fallback
        assert "503" in outcome.error
        assert [m.id for m in outcome.results] == ["f1", "f2"]

    def test_connection_error_uses_fallback(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        session, outcome = _run_search(handler, query="狗")
        assert outcome.used_fallback
        assert outcome.error == "connection refused"
        assert [m.id for m in outcome.results] == ["f2"]
        assert session.state is None

    def test_read_error_mid_stream_uses_fallback(self):
        def handler(request):
            async def body():
                yield FULL_STREAM[0]
                raise httpx.ReadError("connection reset")

            return httpx.Response(200, content=body())

        _, outcome = _run_search(handler)
        assert outcome.used_fallback
        assert outcome.error == "connection reset"

    def test_stream_ending_early_uses_fallback(self):
        _, outcome = _run_search(_stream_handler(FULL_STREAM[:4]))
        assert outcome.used_fallback
        assert outcome.error == INCOMPLETE_STREAM_ERROR


def _gated_handler(gate_holder, early, late):
    """Stream ``early`` frames, wait for the gate, then stream ``late``."""

    def handler(request):
        async def body():
            for chunk in early:
                yield chunk
            await gate_holder["gate"].wait()
            for chunk in late:
                yield chunk

        return httpx.Response(200, content=body())

    return handler


class TestCancellation:
    def test_cancel_mid_stream(self, monkeypatch):
        fallback_calls = []
        monkeypatch.setattr(
            "memesearch.session.match_fallback",
            lambda *args, **kwargs: fallback_calls.append(args) or [],
        )
        holder = {}
        listener = RecordingListener()
        late = [_frame({"results": [{"id": "late", "url": "u"}]}, event="complete")]
        handler = _gated_handler(holder, FULL_STREAM[:2], late)

        async def run():
            holder["gate"] = asyncio.Event()
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                session = SearchSession(base_url=BASE, client=client, listener=listener)
                task = asyncio.ensure_future(session.start_search("猫"))
                while "thinking" not in listener.stages:
                    await asyncio.sleep(0)
                assert session.state is not None
                assert session.is_searching

                session.cancel()
                assert session.state is None
                holder["gate"].set()
                outcome = await task
                return session, outcome

        session, outcome = asyncio.run(run())

        assert outcome.cancelled
        assert not outcome.used_fallback
        assert fallback_calls == []
        assert session.state is None
        assert session.results == []
        assert session.error is None
        assert not session.is_searching
        assert listener.fallback is None
        assert ("cancelled", "猫") in listener.calls
        assert "complete" not in listener.stages

    def test_cancel_without_search_is_noop(self):
        session = SearchSession(base_url=BASE)
        session.cancel()
        assert session.state is None
        assert not session.is_searching

    def test_new_search_supersedes_old(self):
        holder = {}
        messages = []

        class MessageListener(RecordingListener):
            def state_changed(self, state):
                messages.append(state.message)

        old_early = [_frame({"message": "old-start"}, event="query_expansion_start")]
        old_late = [
            _frame({"message": "old-late"}, event="searching"),
            _frame({"results": [{"id": "old", "url": "u"}]}, event="complete"),
        ]
        new_frames = [
            _frame({"message": "new-start"}, event="query_expansion_start"),
            _frame({"results": [{"id": "new", "url": "u"}], "total": 1}, event="complete"),
        ]
        old_handler = _gated_handler(holder, old_early, old_late)
        new_handler = _stream_handler(new_frames)

        def handler(request):
            if json.loads(request.content)["query"] == "old":
                return old_handler(request)
            return new_handler(request)

        async def run():
            holder["gate"] = asyncio.Event()
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                session = SearchSession(base_url=BASE, client=client, listener=MessageListener())
                old_task = asyncio.ensure_future(session.start_search("old"))
                while "old-start" not in messages:
                    await asyncio.sleep(0)

                new_outcome = await session.start_search("new")
                holder["gate"].set()
                old_outcome = await old_task
                return session, old_outcome, new_outcome

        session, old_outcome, new_outcome = asyncio.run(run())

        assert old_outcome.cancelled
        assert [m.id for m in new_outcome.results] == ["new"]
        assert [m.id for m in session.results] == ["new"]
        assert "old-late" not in messages
        assert session.state is None
        assert not session.used_fallback
