"""TaskEvent Domain Model

task_events 表 append-only，每次提交的流转写入一行，
与 Task 行、账本分录在同一事务内提交。
同时作为 EffectDispatcher 的 outbox：dispatched_at 为空表示副作用尚未派发。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import AccountRole, EventType, TaskStatus


class TaskEvent(BaseModel):
    """任务事件"""

    event_id: str = Field(description="唯一标识，ULID 格式")
    task_id: str
    task_seq: int = Field(description="任务内序号，严格单调递增")
    ts: datetime
    type: EventType
    from_status: TaskStatus | None = None
    to_status: TaskStatus
    actor_id: str
    actor_role: AccountRole
    payload: dict[str, Any] = Field(default_factory=dict)
    idempotency_key: str | None = None
    dispatched_at: datetime | None = None
