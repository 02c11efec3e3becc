"""平台设置与审计日志 SQLite 实现

platform_settings 为简单 key/value 表（值以 JSON 存储）；
audit_log 记录所有管理员操作，与操作本身在同一事务内写入。
"""

import json
from datetime import UTC, datetime
from typing import Any

import aiosqlite
from ulid import ULID


class SqliteSettingsStore:
    """platform_settings 表读写"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get_all(self) -> dict[str, Any]:
        cursor = await self._conn.execute("SELECT key, value FROM platform_settings")
        rows = await cursor.fetchall()
        return {row[0]: json.loads(row[1]) for row in rows}

    async def put(self, key: str, value: Any) -> None:
        """写入设置（不提交事务）"""
        await self._conn.execute(
            """
            INSERT INTO platform_settings (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(value), datetime.now(UTC).isoformat()),
        )


class SqliteAuditStore:
    """audit_log 表写入（append-only）"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def record(
        self,
        actor_id: str,
        action: str,
        target_type: str,
        target_id: str,
        details: dict[str, Any] | None = None,
    ) -> str:
        """写入审计记录（不提交事务）

        Returns:
            audit_id
        """
        audit_id = str(ULID())
        await self._conn.execute(
            """
            INSERT INTO audit_log (audit_id, ts, actor_id, action, target_type,
                                   target_id, details)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                audit_id,
                datetime.now(UTC).isoformat(),
                actor_id,
                action,
                target_type,
                target_id,
                json.dumps(details or {}, ensure_ascii=False),
            ),
        )
        return audit_id

    async def list_for_target(self, target_type: str, target_id: str) -> list[dict[str, Any]]:
        cursor = await self._conn.execute(
            """
            SELECT audit_id, ts, actor_id, action, details FROM audit_log
            WHERE target_type = ? AND target_id = ?
            ORDER BY ts ASC
            """,
            (target_type, target_id),
        )
        rows = await cursor.fetchall()
        return [
            {
                "audit_id": row[0],
                "ts": row[1],
                "actor_id": row[2],
                "action": row[3],
                "details": json.loads(row[4]),
            }
            for row in rows
        ]
