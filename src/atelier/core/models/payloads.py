"""TaskEvent Payload 子类型

所有 task_events 行的结构化 payload 定义。
Dispatcher 从 payload 重建已提交流转的上下文（outbox 恢复时使用），
所以副作用需要的信息都必须写入 payload。
"""

from pydantic import BaseModel, Field

from .enums import TaskAction, TaskStatus


class TaskCreatedPayload(BaseModel):
    """TASK_CREATED 事件 payload"""

    title: str
    category: str
    credits_charged: int
    max_revisions: int
    balance_after: int = Field(description="扣费后委托方余额")


class StateTransitionPayload(BaseModel):
    """STATE_TRANSITION 事件 payload"""

    action: TaskAction
    from_status: TaskStatus
    to_status: TaskStatus
    reason: str = Field(default="")
    freelancer_id: str | None = Field(default=None, description="流转后的设计师")
    previous_freelancer_id: str | None = Field(default=None, description="流转前的设计师")
    feedback: str = Field(default="", description="修改意见（REQUEST_REVISION）")
    deliverables: list[str] = Field(default_factory=list)
    refunded_credits: int = Field(default=0)
    balance_after: int | None = Field(default=None, description="有积分变动时委托方余额")


class ExtraScopeChargedPayload(BaseModel):
    """EXTRA_SCOPE_CHARGED 事件 payload（状态保持 IN_REVIEW）"""

    credits: int = Field(gt=0)
    reason: str
    flagged_by: str = Field(description="标记额外范围的审核方")
    balance_after: int


class AdminOverridePayload(BaseModel):
    """ADMIN_OVERRIDE 事件 payload"""

    from_status: TaskStatus
    to_status: TaskStatus
    reason: str
    freelancer_id: str | None = None
    previous_freelancer_id: str | None = None
    refunded_credits: int = Field(default=0)
    balance_after: int | None = None
    purge: bool = Field(default=False, description="是否为批量清除前的取消")
