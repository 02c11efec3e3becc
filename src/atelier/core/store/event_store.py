"""TaskEventStore SQLite 实现

事件表 append-only：只允许插入，不允许更新或删除（dispatched_at 标记除外）。
task_seq 同一 task 内严格单调递增。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.enums import AccountRole, EventType, TaskStatus
from ..models.event import TaskEvent


class SqliteEventStore:
    """TaskEventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_event(self, event: TaskEvent) -> None:
        """追加事件（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO task_events (event_id, task_id, task_seq, ts, type,
                                     from_status, to_status, actor_id, actor_role,
                                     payload, idempotency_key, dispatched_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, NULL)
            """,
            (
                event.event_id,
                event.task_id,
                event.task_seq,
                event.ts.isoformat(),
                event.type.value,
                event.from_status.value if event.from_status else None,
                event.to_status.value,
                event.actor_id,
                event.actor_role.value,
                json.dumps(event.payload, ensure_ascii=False),
                event.idempotency_key,
            ),
        )

    async def get_events_for_task(self, task_id: str) -> list[TaskEvent]:
        """查询指定任务的所有事件，按 task_seq 正序"""
        cursor = await self._conn.execute(
            "SELECT * FROM task_events WHERE task_id = ? ORDER BY task_seq ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def get_event(self, event_id: str) -> TaskEvent | None:
        cursor = await self._conn.execute(
            "SELECT * FROM task_events WHERE event_id = ?",
            (event_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_event(row) if row else None

    async def get_next_task_seq(self, task_id: str) -> int:
        """获取指定任务的下一个 task_seq（MAX+1）

        在事务内调用以确保原子性。
        """
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(task_seq), 0) FROM task_events WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        return (row[0] if row else 0) + 1

    async def find_by_idempotency_key(self, key: str) -> TaskEvent | None:
        """按幂等键查找已提交的事件

        Returns:
            已提交事件，不存在时返回 None
        """
        cursor = await self._conn.execute(
            "SELECT * FROM task_events WHERE idempotency_key = ? LIMIT 1",
            (key,),
        )
        row = await cursor.fetchone()
        return self._row_to_event(row) if row else None

    async def list_undispatched(self, limit: int = 500) -> list[TaskEvent]:
        """查询尚未派发副作用的事件（outbox 恢复），按写入顺序"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM task_events
            WHERE dispatched_at IS NULL
            ORDER BY ts ASC, task_seq ASC
            LIMIT ?
            """,
            (limit,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(row) for row in rows]

    async def mark_dispatched(self, event_id: str, ts: datetime) -> None:
        """标记事件副作用已派发（不提交事务）"""
        await self._conn.execute(
            "UPDATE task_events SET dispatched_at = ? WHERE event_id = ?",
            (ts.isoformat(), event_id),
        )

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> TaskEvent:
        """将数据库行转换为 TaskEvent 模型"""
        payload = json.loads(row[9]) if row[9] else {}
        return TaskEvent(
            event_id=row[0],
            task_id=row[1],
            task_seq=row[2],
            ts=datetime.fromisoformat(row[3]),
            type=EventType(row[4]),
            from_status=TaskStatus(row[5]) if row[5] else None,
            to_status=TaskStatus(row[6]),
            actor_id=row[7],
            actor_role=AccountRole(row[8]),
            payload=payload,
            idempotency_key=row[10],
            dispatched_at=datetime.fromisoformat(row[11]) if row[11] else None,
        )
