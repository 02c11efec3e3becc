"""Notification Domain Model

通知 payload 是按 kind 区分的 tagged variants；落盘为 JSON，
读取时经 TypeAdapter 校验还原为具体模型。
通知行由 EffectDispatcher 在外部投递之前写入，除已读标记外不再修改。
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter

from .enums import Channel, DeliveryStatus, NotificationKind


class _NoticeBase(BaseModel):
    title: str
    message: str
    task_id: str | None = None


class TaskCreatedNotice(_NoticeBase):
    kind: Literal["TASK_CREATED"] = "TASK_CREATED"
    task_title: str
    category: str
    credits: int


class TaskAssignedNotice(_NoticeBase):
    kind: Literal["TASK_ASSIGNED"] = "TASK_ASSIGNED"
    task_title: str
    freelancer_id: str


class TaskReassignedNotice(_NoticeBase):
    kind: Literal["TASK_REASSIGNED"] = "TASK_REASSIGNED"
    task_title: str


class TaskStartedNotice(_NoticeBase):
    kind: Literal["TASK_STARTED"] = "TASK_STARTED"
    task_title: str


class ReadyForReviewNotice(_NoticeBase):
    kind: Literal["READY_FOR_REVIEW"] = "READY_FOR_REVIEW"
    task_title: str
    deliverable_count: int = 0


class TaskApprovedNotice(_NoticeBase):
    kind: Literal["TASK_APPROVED"] = "TASK_APPROVED"
    task_title: str


class RevisionRequestedNotice(_NoticeBase):
    kind: Literal["REVISION_REQUESTED"] = "REVISION_REQUESTED"
    task_title: str
    feedback_excerpt: str
    revisions_used: int
    max_revisions: int


class ExtraScopeChargedNotice(_NoticeBase):
    kind: Literal["EXTRA_SCOPE_CHARGED"] = "EXTRA_SCOPE_CHARGED"
    task_title: str
    credits: int


class TaskEscalatedNotice(_NoticeBase):
    kind: Literal["TASK_ESCALATED"] = "TASK_ESCALATED"
    task_title: str
    reason: str


class EscalationResolvedNotice(_NoticeBase):
    kind: Literal["ESCALATION_RESOLVED"] = "ESCALATION_RESOLVED"
    task_title: str


class TaskCancelledNotice(_NoticeBase):
    kind: Literal["TASK_CANCELLED"] = "TASK_CANCELLED"
    task_title: str
    refunded_credits: int


class LowCreditsNotice(_NoticeBase):
    kind: Literal["LOW_CREDITS"] = "LOW_CREDITS"
    balance: int
    threshold: int


class CreditsAddedNotice(_NoticeBase):
    kind: Literal["CREDITS_ADDED"] = "CREDITS_ADDED"
    credits: int
    balance: int


NotificationPayload = Annotated[
    TaskCreatedNotice
    | TaskAssignedNotice
    | TaskReassignedNotice
    | TaskStartedNotice
    | ReadyForReviewNotice
    | TaskApprovedNotice
    | RevisionRequestedNotice
    | ExtraScopeChargedNotice
    | TaskEscalatedNotice
    | EscalationResolvedNotice
    | TaskCancelledNotice
    | LowCreditsNotice
    | CreditsAddedNotice,
    Field(discriminator="kind"),
]

notification_payload_adapter: TypeAdapter[NotificationPayload] = TypeAdapter(
    NotificationPayload
)


class Notification(BaseModel):
    """站内通知记录（durable，即使外部投递失败也存在）"""

    notification_id: str = Field(description="唯一标识，ULID 格式")
    seq: int = Field(default=0, description="全局创建序号，SSE 事件 id")
    recipient_id: str
    kind: NotificationKind
    payload: NotificationPayload
    source_key: str = Field(description="来源（task_events.event_id 或账本分录 ID）")
    task_id: str | None = None
    created_at: datetime
    read_at: datetime | None = None


class Delivery(BaseModel):
    """外部渠道投递记录，dedupe_key 唯一"""

    dedupe_key: str
    notification_id: str | None = None
    recipient_id: str
    channel: Channel
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_error: str = ""
    updated_at: datetime
