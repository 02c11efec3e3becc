"""站内通知路由

GET  /api/notifications: 通知列表（after 为通知序号游标）
POST /api/notifications/{notification_id}/read: 标记已读
POST /api/notifications/read-all: 全部标记已读
GET  /api/stream/notifications: SSE 实时通知流

SSE 流先推送 Last-Event-ID 之后的已存通知，再切换为实时推送；
事件 id 为通知序号，断线重连时客户端回传即可补齐。
"""

import asyncio
import json
from collections.abc import AsyncIterator

from atelier.core.config import SSE_HEARTBEAT_INTERVAL
from atelier.core.errors import NotFound
from atelier.core.models import Actor, Notification
from atelier.core.store import StoreGroup
from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from ..deps import get_actor, get_hub, get_store_group
from ..services.realtime_hub import RealtimeHub

router = APIRouter()

# 单次补发的最大条数，超出部分分批读取
_REPLAY_BATCH = 200


def notification_to_sse(notification: Notification) -> dict:
    """Notification -> SSE 事件"""
    return {
        "id": str(notification.seq),
        "event": notification.kind.value,
        "data": json.dumps(notification.model_dump(mode="json"), ensure_ascii=False),
    }


def parse_last_event_id(value: str | None) -> int:
    """解析 Last-Event-ID，无法识别时从头补发"""
    if value and value.strip().isdigit():
        return int(value.strip())
    return 0


async def notification_event_stream(
    store_group: StoreGroup,
    hub: RealtimeHub,
    account_id: str,
    last_seq: int = 0,
    heartbeat_interval: float = SSE_HEARTBEAT_INTERVAL,
) -> AsyncIterator[dict]:
    """单个会话的通知事件流

    先订阅再补发，补发期间到达的实时通知按序号去重，不会遗漏也不会重复。
    会话因积压被 RealtimeHub 丢弃时结束流，由客户端重连补齐。
    """
    queue = await hub.subscribe(account_id)
    try:
        while True:
            batch = await store_group.reads.notification_store.list_notifications(
                account_id, after_seq=last_seq, limit=_REPLAY_BATCH
            )
            for notification in batch:
                yield notification_to_sse(notification)
                last_seq = notification.seq
            if len(batch) < _REPLAY_BATCH:
                break

        while True:
            try:
                notification = await asyncio.wait_for(
                    queue.get(), timeout=heartbeat_interval
                )
            except TimeoutError:
                if not hub.is_subscribed(account_id, queue):
                    return
                yield {"comment": "heartbeat"}
                continue
            if notification.seq <= last_seq:
                continue
            yield notification_to_sse(notification)
            last_seq = notification.seq
    finally:
        await hub.unsubscribe(account_id, queue)


@router.get("/api/notifications")
async def list_notifications(
    after: int = Query(default=0, ge=0, description="通知序号游标"),
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    store_group: StoreGroup = Depends(get_store_group),
):
    notifications = await store_group.reads.notification_store.list_notifications(
        actor.id, after_seq=after, unread_only=unread_only, limit=limit
    )
    return {
        "notifications": [n.model_dump(mode="json") for n in notifications],
        "unread_count": await store_group.reads.notification_store.unread_count(actor.id),
    }


@router.post("/api/notifications/read-all")
async def mark_all_read(
    actor: Actor = Depends(get_actor),
    store_group: StoreGroup = Depends(get_store_group),
):
    async with store_group.unit_of_work():
        updated = await store_group.notification_store.mark_all_read(actor.id)
    return {"updated": updated}


@router.post("/api/notifications/{notification_id}/read")
async def mark_read(
    notification_id: str,
    actor: Actor = Depends(get_actor),
    store_group: StoreGroup = Depends(get_store_group),
):
    """标记单条通知已读（他人的通知按不存在处理）"""
    notification = await store_group.reads.notification_store.get_notification(notification_id)
    if notification is None or notification.recipient_id != actor.id:
        raise NotFound("Notification", notification_id)
    async with store_group.unit_of_work():
        await store_group.notification_store.mark_read(notification_id, actor.id)
    return {"notification_id": notification_id, "read": True}


@router.get("/api/stream/notifications")
async def stream_notifications(
    request: Request,
    actor: Actor = Depends(get_actor),
    store_group: StoreGroup = Depends(get_store_group),
    hub: RealtimeHub = Depends(get_hub),
):
    """SSE 通知流端点（心跳间隔 ATELIER_SSE_HEARTBEAT_INTERVAL 秒）"""
    last_seq = parse_last_event_id(request.headers.get("last-event-id"))
    return EventSourceResponse(
        notification_event_stream(store_group, hub, actor.id, last_seq)
    )
