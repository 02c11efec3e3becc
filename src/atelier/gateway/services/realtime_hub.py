"""RealtimeHub -- 按账户的内存通知广播器

每个在线会话持有一个 asyncio.Queue，支持 subscribe/unsubscribe/broadcast。
推送只是低延迟便利层：没有在线连接时通知照样落盘，
客户端下次连接时通过 Last-Event-ID 补齐。
"""

import asyncio
from collections import defaultdict

import structlog
from atelier.core.models import Notification

log = structlog.get_logger()


class RealtimeHub:
    """实时通知广播器 -- 基于 asyncio.Queue 的发布/订阅模式"""

    def __init__(self, queue_maxsize: int = 100) -> None:
        # account_id -> set of asyncio.Queue
        self._subscribers: dict[str, set[asyncio.Queue]] = defaultdict(set)
        self._queue_maxsize = queue_maxsize

    async def subscribe(self, account_id: str) -> asyncio.Queue:
        """订阅指定账户的通知流

        Returns:
            asyncio.Queue 实例，新通知会被推送到此队列
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_maxsize)
        self._subscribers[account_id].add(queue)
        return queue

    async def unsubscribe(self, account_id: str, queue: asyncio.Queue) -> None:
        self._subscribers[account_id].discard(queue)
        if not self._subscribers[account_id]:
            del self._subscribers[account_id]

    def has_subscribers(self, account_id: str) -> bool:
        return bool(self._subscribers.get(account_id))

    def is_subscribed(self, account_id: str, queue: asyncio.Queue) -> bool:
        """会话是否仍在订阅中（被丢弃的会话应断开，让客户端重连补齐）"""
        return queue in self._subscribers.get(account_id, set())

    def connection_count(self) -> int:
        return sum(len(queues) for queues in self._subscribers.values())

    async def broadcast(self, account_id: str, notification: Notification) -> int:
        """向账户的所有在线会话推送通知

        队列已满的会话视为失联并移除（客户端重连后通过 Last-Event-ID 补齐）。

        Returns:
            成功推送的会话数
        """
        delivered = 0
        dead_queues = []
        for queue in self._subscribers.get(account_id, set()):
            try:
                queue.put_nowait(notification)
                delivered += 1
            except asyncio.QueueFull:
                dead_queues.append(queue)

        # 清理已满的队列
        for q in dead_queues:
            self._subscribers[account_id].discard(q)
            log.warning("realtime_subscriber_dropped", account_id=account_id)
        if account_id in self._subscribers and not self._subscribers[account_id]:
            del self._subscribers[account_id]
        return delivered
