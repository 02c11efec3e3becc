"""Task Domain Model

tasks 表是 task_events 的物化视图，只能由 LifecycleEngine 通过合法流转修改。
version 字段用于乐观并发控制：每次写入 +1。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import TaskStatus
from .requirements import TaskRequirements


class TaskCategory(BaseModel):
    """任务分类（决定创建任务时扣除的积分）"""

    slug: str = Field(description="分类标识")
    name: str = Field(description="分类名称")
    base_credits: int = Field(ge=0, description="创建任务扣除的积分")
    active: bool = Field(default=True)


class Task(BaseModel):
    """Task 数据模型

    不变式：
    - revisions_used <= max_revisions
    - freelancer_id 非空当且仅当 status 属于 ASSIGNED_STATES
    """

    task_id: str = Field(description="唯一标识，ULID 格式")
    client_id: str = Field(description="委托方账户 ID")
    freelancer_id: str | None = Field(default=None, description="设计师账户 ID")
    category: str = Field(description="分类 slug")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    credits_committed: int = Field(default=0, ge=0, description="已为该任务扣除的积分")
    revisions_used: int = Field(default=0, ge=0)
    max_revisions: int = Field(default=2, ge=0)
    requirements: TaskRequirements
    deliverables: list[str] = Field(default_factory=list, description="交付物引用")
    version: int = Field(default=1, description="乐观并发版本号")
    created_at: datetime
    updated_at: datetime
    assigned_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def title(self) -> str:
        return self.requirements.title
