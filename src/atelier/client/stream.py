"""NotificationStream -- 带自动重连的 SSE 通知流消费者

断线后按 Backoff 等待再重连，重连请求携带 Last-Event-ID，
服务端补发断线期间产生的通知；连接成功即重置退避计数。

静默断线（网络中断但 TCP 未关闭）依赖 httpx 读超时发现：
调用方应让 read timeout 大于服务端心跳间隔。
"""

import asyncio
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from .backoff import Backoff

log = structlog.get_logger()

# 这些状态码重连也不会成功
_FATAL_STATUS = {400, 401, 403, 404}


class StreamRejected(Exception):
    """服务端拒绝订阅（认证失败等），不再重连"""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(f"Notification stream rejected with HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class ReconnectExhausted(Exception):
    """连续失败次数达到 max_attempts"""

    def __init__(self, attempts: int, last_error: Exception | None) -> None:
        super().__init__(f"Gave up after {attempts} failed connection attempts")
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class StreamEvent:
    """一条 SSE 事件"""

    event: str
    data: str
    id: str | None = None

    def json(self) -> Any:
        return json.loads(self.data)


class SSEParser:
    """增量 SSE 解析器：逐行喂入，遇到空行产出事件"""

    def __init__(self) -> None:
        self._event = ""
        self._data: list[str] = []
        self._id: str | None = None

    def feed(self, line: str) -> StreamEvent | None:
        line = line.rstrip("\r")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            self._event = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            self._id = value
        return None

    def _dispatch(self) -> StreamEvent | None:
        if not self._data:
            self._event = ""
            return None
        event = StreamEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self._id,
        )
        self._event = ""
        self._data = []
        return event


class NotificationStream:
    """通知流异步迭代器

    Args:
        client: httpx.AsyncClient（认证头等由调用方配置）
        url: SSE 端点地址
        backoff: 重连退避策略
        sleep: 等待函数，测试中可替换为不真正休眠的实现
        max_attempts: 连续失败上限，None 表示无限重连
        last_event_id: 从该通知序号之后开始
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        backoff: Backoff | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_attempts: int | None = None,
        last_event_id: str | None = None,
    ) -> None:
        self._client = client
        self._url = url
        self._backoff = backoff or Backoff()
        self._sleep = sleep
        self._max_attempts = max_attempts
        self.last_event_id = last_event_id
        self.connections = 0

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamEvent]:
        failures = 0
        while True:
            error: Exception | None = None
            connections_before = self.connections
            try:
                async for event in self._connect_once():
                    yield event
            except httpx.HTTPError as e:
                error = e

            # 本轮连上过则重新计数
            if self.connections > connections_before:
                failures = 0
            failures += 1
            log.info(
                "notification_stream_disconnected",
                url=self._url,
                failures=failures,
                error=str(error) if error else "",
            )
            if self._max_attempts is not None and failures >= self._max_attempts:
                raise ReconnectExhausted(failures, error)

            await self._sleep(self._backoff.next_delay())

    async def _connect_once(self) -> AsyncIterator[StreamEvent]:
        headers = {"Accept": "text/event-stream"}
        if self.last_event_id:
            headers["Last-Event-ID"] = self.last_event_id

        async with self._client.stream("GET", self._url, headers=headers) as response:
            if response.status_code in _FATAL_STATUS:
                body = (await response.aread()).decode(errors="replace")
                raise StreamRejected(response.status_code, body)
            response.raise_for_status()

            self.connections += 1
            self._backoff.reset()
            log.info(
                "notification_stream_connected",
                url=self._url,
                last_event_id=self.last_event_id,
            )

            parser = SSEParser()
            async for line in response.aiter_lines():
                event = parser.feed(line)
                if event is None:
                    continue
                if event.id:
                    self.last_event_id = event.id
                yield event
