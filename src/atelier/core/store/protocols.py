"""Store Protocol 接口定义

定义 TaskStore、TaskEventStore、LedgerStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
写方法均不提交事务，由 UnitOfWork 管理事务边界。
"""

from datetime import datetime
from typing import Protocol

from ..models.enums import LedgerKind
from ..models.event import TaskEvent
from ..models.ledger import LedgerEntry
from ..models.task import Task, TaskCategory


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks(
        self,
        status: str | None = None,
        client_id: str | None = None,
        freelancer_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Task]:
        """查询任务列表"""
        ...

    async def save_task(self, task: Task, expected_version: int) -> Task:
        """按版本号条件写回任务，版本不符时抛出 StaleTaskVersion"""
        ...

    async def delete_task(self, task_id: str) -> None:
        """物理删除任务（管理员清除）"""
        ...

    async def get_category(self, slug: str) -> TaskCategory | None:
        """查询任务分类"""
        ...


class TaskEventStore(Protocol):
    """任务事件存储接口

    事件表 append-only：只允许插入，不允许更新或删除。
    """

    async def append_event(self, event: TaskEvent) -> None:
        """追加事件（append-only）"""
        ...

    async def get_events_for_task(self, task_id: str) -> list[TaskEvent]:
        """查询指定任务的所有事件"""
        ...

    async def get_next_task_seq(self, task_id: str) -> int:
        """获取指定任务的下一个 task_seq（MAX+1）"""
        ...

    async def find_by_idempotency_key(self, key: str) -> TaskEvent | None:
        """按幂等键查找已提交事件"""
        ...

    async def list_undispatched(self, limit: int = 500) -> list[TaskEvent]:
        """查询副作用尚未派发的事件"""
        ...

    async def mark_dispatched(self, event_id: str, ts: datetime) -> None:
        """标记事件副作用已派发"""
        ...


class LedgerStore(Protocol):
    """账本存储接口（append-only）"""

    async def append(
        self,
        account_id: str,
        amount: int,
        kind: LedgerKind,
        task_id: str | None = None,
        description: str = "",
        external_ref: str | None = None,
    ) -> int:
        """追加分录，返回写入后的余额"""
        ...

    async def balance_of(self, account_id: str) -> int:
        """查询余额"""
        ...

    async def history(self, account_id: str, limit: int = 50) -> list[LedgerEntry]:
        """查询账户流水，最新在前"""
        ...
