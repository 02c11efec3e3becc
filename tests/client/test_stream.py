"""NotificationStream 测试

使用 httpx.MockTransport 模拟 SSE 端点，sleep 替换为只记录延迟的实现。
"""

import json

import httpx
import pytest
from atelier.client import (
    Backoff,
    NotificationStream,
    ReconnectExhausted,
    SSEParser,
    StreamRejected,
)

URL = "http://test/api/stream/notifications"


def _sse(*seqs: int) -> str:
    chunks = [": connected\n\n"]
    for seq in seqs:
        data = json.dumps({"seq": seq, "kind": "CREDITS_ADDED"})
        chunks.append(f"id: {seq}\nevent: CREDITS_ADDED\ndata: {data}\n\n")
    return "".join(chunks)


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _stream(handler, sleep: FakeSleep, **kwargs) -> tuple[NotificationStream, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    stream = NotificationStream(
        client,
        URL,
        backoff=Backoff(rng=lambda: 0.5),
        sleep=sleep,
        **kwargs,
    )
    return stream, client


class TestSSEParser:
    def test_single_event(self):
        parser = SSEParser()
        assert parser.feed("id: 7") is None
        assert parser.feed("event: TASK_ASSIGNED") is None
        assert parser.feed('data: {"seq": 7}') is None
        event = parser.feed("")
        assert event.id == "7"
        assert event.event == "TASK_ASSIGNED"
        assert event.json() == {"seq": 7}

    def test_multiline_data_and_crlf(self):
        parser = SSEParser()
        parser.feed("data: first\r")
        parser.feed("data: second\r")
        event = parser.feed("\r")
        assert event.data == "first\nsecond"
        assert event.event == "message"
        assert event.id is None

    def test_comments_and_empty_dispatch(self):
        parser = SSEParser()
        assert parser.feed(": heartbeat") is None
        assert parser.feed("") is None
        parser.feed("event: ignored")
        assert parser.feed("") is None
        parser.feed("data:x")
        assert parser.feed("").event == "message"


class TestNotificationStream:
    async def test_resumes_with_last_event_id(self):
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Last-Event-ID"))
            if len(seen) == 1:
                return httpx.Response(200, text=_sse(1, 2))
            if len(seen) == 2:
                return httpx.Response(200, text=_sse(3))
            return httpx.Response(401, json={"error": {"code": "UNAUTHENTICATED"}})

        sleep = FakeSleep()
        stream, client = _stream(handler, sleep)
        received = []
        with pytest.raises(StreamRejected) as exc_info:
            async for event in stream:
                received.append(event.json()["seq"])

        assert received == [1, 2, 3]
        assert seen == [None, "2", "3"]
        assert stream.connections == 2
        assert exc_info.value.status_code == 401
        assert "UNAUTHENTICATED" in exc_info.value.body
        # 每次连接成功都会重置退避
        assert sleep.delays == [1.0, 1.0]
        await client.aclose()

    async def test_initial_last_event_id_sent(self):
        seen: list[str | None] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Last-Event-ID"))
            return httpx.Response(403)

        stream, client = _stream(handler, FakeSleep(), last_event_id="41")
        with pytest.raises(StreamRejected):
            async for _ in stream:
                pass
        assert seen == ["41"]
        await client.aclose()

    async def test_gives_up_after_max_attempts(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            raise httpx.ConnectError("connection refused", request=request)

        sleep = FakeSleep()
        stream, client = _stream(handler, sleep, max_attempts=3)
        with pytest.raises(ReconnectExhausted) as exc_info:
            async for _ in stream:
                pass

        assert calls["n"] == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, httpx.ConnectError)
        assert sleep.delays == [1.0, 2.0]
        assert stream.connections == 0
        await client.aclose()

    async def test_server_error_is_retried(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                return httpx.Response(503)
            if calls["n"] == 2:
                return httpx.Response(200, text=_sse(9))
            return httpx.Response(401)

        sleep = FakeSleep()
        stream, client = _stream(handler, sleep)
        received = []
        with pytest.raises(StreamRejected):
            async for event in stream:
                received.append(event.id)

        assert received == ["9"]
        assert stream.last_event_id == "9"
        assert sleep.delays == [1.0, 1.0]
        await client.aclose()
