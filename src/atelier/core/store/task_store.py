"""TaskStore SQLite 实现

tasks 表是 task_events 的物化视图。
所有状态更新必须由 LifecycleEngine 在事务内触发，此处仅提供数据库操作，
不自动提交事务。
"""

import json
from datetime import datetime

import aiosqlite

from ..errors import StaleTaskVersion
from ..models.requirements import requirements_adapter
from ..models.task import Task, TaskCategory


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        await self._conn.execute(
            """
            INSERT INTO tasks (task_id, client_id, freelancer_id, category, status,
                               credits_committed, revisions_used, max_revisions,
                               requirements, deliverables, version, created_at,
                               updated_at, assigned_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.client_id,
                task.freelancer_id,
                task.category,
                task.status.value,
                task.credits_committed,
                task.revisions_used,
                task.max_revisions,
                task.requirements.model_dump_json(),
                json.dumps(task.deliverables, ensure_ascii=False),
                task.version,
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
                _iso(task.assigned_at),
                _iso(task.completed_at),
            ),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_task(row)

    async def list_tasks(
        self,
        status: str | None = None,
        client_id: str | None = None,
        freelancer_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Task]:
        """查询任务列表，支持按状态/委托方/设计师筛选，按 created_at 倒序"""
        clauses: list[str] = []
        params: list = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if client_id:
            clauses.append("client_id = ?")
            params.append(client_id)
        if freelancer_id:
            clauses.append("freelancer_id = ?")
            params.append(freelancer_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = await self._conn.execute(
            f"SELECT * FROM tasks {where} ORDER BY created_at DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        rows = await cursor.fetchall()
        return [self._row_to_task(row) for row in rows]

    async def save_task(self, task: Task, expected_version: int) -> Task:
        """按版本号条件写回任务（乐观并发）

        Returns:
            version +1 之后的 Task

        Raises:
            StaleTaskVersion: 任务行已被其他写入修改
        """
        saved = task.model_copy(update={"version": expected_version + 1})
        cursor = await self._conn.execute(
            """
            UPDATE tasks
            SET freelancer_id = ?, status = ?, credits_committed = ?,
                revisions_used = ?, max_revisions = ?, deliverables = ?,
                version = ?, updated_at = ?, assigned_at = ?, completed_at = ?
            WHERE task_id = ? AND version = ?
            """,
            (
                saved.freelancer_id,
                saved.status.value,
                saved.credits_committed,
                saved.revisions_used,
                saved.max_revisions,
                json.dumps(saved.deliverables, ensure_ascii=False),
                saved.version,
                saved.updated_at.isoformat(),
                _iso(saved.assigned_at),
                _iso(saved.completed_at),
                saved.task_id,
                expected_version,
            ),
        )
        if cursor.rowcount != 1:
            raise StaleTaskVersion(task.task_id, expected_version)
        return saved

    async def delete_task(self, task_id: str) -> None:
        """物理删除任务（仅管理员清除使用，task_events/notifications 级联删除）"""
        await self._conn.execute("DELETE FROM deliveries WHERE task_id = ?", (task_id,))
        await self._conn.execute("DELETE FROM tasks WHERE task_id = ?", (task_id,))

    async def get_category(self, slug: str) -> TaskCategory | None:
        """查询任务分类"""
        cursor = await self._conn.execute(
            "SELECT slug, name, base_credits, active FROM task_categories WHERE slug = ?",
            (slug,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return TaskCategory(
            slug=row[0], name=row[1], base_credits=row[2], active=bool(row[3])
        )

    async def list_categories(self) -> list[TaskCategory]:
        cursor = await self._conn.execute(
            "SELECT slug, name, base_credits, active FROM task_categories ORDER BY slug"
        )
        rows = await cursor.fetchall()
        return [
            TaskCategory(slug=r[0], name=r[1], base_credits=r[2], active=bool(r[3]))
            for r in rows
        ]

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row[0],
            client_id=row[1],
            freelancer_id=row[2],
            category=row[3],
            status=row[4],
            credits_committed=row[5],
            revisions_used=row[6],
            max_revisions=row[7],
            requirements=requirements_adapter.validate_json(row[8]),
            deliverables=json.loads(row[9]) if row[9] else [],
            version=row[10],
            created_at=datetime.fromisoformat(row[11]),
            updated_at=datetime.fromisoformat(row[12]),
            assigned_at=_parse(row[13]),
            completed_at=_parse(row[14]),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
