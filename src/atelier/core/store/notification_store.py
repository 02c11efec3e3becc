"""NotificationStore SQLite 实现

notifications: 站内通知，(source_key, recipient_id, kind) 唯一，
重复派发（outbox 恢复）只会命中已有记录。
deliveries: 外部渠道投递记录，dedupe_key 唯一，记录尝试次数与最终状态。

写方法均不提交事务，由调用方在 UnitOfWork 内调用。
"""

from datetime import UTC, datetime

import aiosqlite

from ..models.enums import Channel, DeliveryStatus, NotificationKind
from ..models.notification import (
    Delivery,
    Notification,
    notification_payload_adapter,
)


class SqliteNotificationStore:
    """NotificationStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_notification(
        self,
        notification: Notification,
    ) -> tuple[Notification, bool]:
        """写入通知；同一来源/收件人/类型已存在时返回已有记录

        Returns:
            (通知, 是否新建)
        """
        cursor = await self._conn.execute(
            """
            INSERT OR IGNORE INTO notifications (notification_id, recipient_id, kind,
                                                 payload, source_key, task_id,
                                                 created_at, read_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, NULL)
            """,
            (
                notification.notification_id,
                notification.recipient_id,
                notification.kind.value,
                notification_payload_adapter.dump_json(notification.payload).decode(),
                notification.source_key,
                notification.task_id,
                notification.created_at.isoformat(),
            ),
        )
        created = cursor.rowcount == 1
        existing = await self._get_by_source(
            notification.source_key,
            notification.recipient_id,
            notification.kind,
        )
        if existing is None:
            raise RuntimeError(
                f"notification for {notification.source_key} vanished after insert"
            )
        return existing, created

    async def get_notification(self, notification_id: str) -> Notification | None:
        cursor = await self._conn.execute(
            "SELECT * FROM notifications WHERE notification_id = ?",
            (notification_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_notification(row) if row else None

    async def list_notifications(
        self,
        recipient_id: str,
        after_seq: int = 0,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        """按创建顺序列出收件人的通知（seq > after_seq）"""
        sql = "SELECT * FROM notifications WHERE recipient_id = ? AND seq > ?"
        if unread_only:
            sql += " AND read_at IS NULL"
        sql += " ORDER BY seq ASC LIMIT ?"
        cursor = await self._conn.execute(sql, (recipient_id, after_seq, limit))
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    async def unread_count(self, recipient_id: str) -> int:
        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM notifications WHERE recipient_id = ? AND read_at IS NULL",
            (recipient_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def mark_read(self, notification_id: str, recipient_id: str) -> bool:
        """标记单条已读；通知不属于该收件人时返回 False"""
        cursor = await self._conn.execute(
            """
            UPDATE notifications SET read_at = COALESCE(read_at, ?)
            WHERE notification_id = ? AND recipient_id = ?
            """,
            (datetime.now(UTC).isoformat(), notification_id, recipient_id),
        )
        return cursor.rowcount == 1

    async def mark_all_read(self, recipient_id: str) -> int:
        cursor = await self._conn.execute(
            "UPDATE notifications SET read_at = ? WHERE recipient_id = ? AND read_at IS NULL",
            (datetime.now(UTC).isoformat(), recipient_id),
        )
        return cursor.rowcount

    # ---- deliveries ----

    async def claim_delivery(
        self,
        dedupe_key: str,
        recipient_id: str,
        channel: Channel,
        notification_id: str | None = None,
        task_id: str | None = None,
    ) -> tuple[Delivery, bool]:
        """登记一次投递；dedupe_key 已存在时返回已有记录

        Returns:
            (投递记录, 是否新登记)
        """
        cursor = await self._conn.execute(
            """
            INSERT OR IGNORE INTO deliveries (dedupe_key, notification_id, task_id,
                                              recipient_id, channel, status, attempts,
                                              last_error, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 0, '', ?)
            """,
            (
                dedupe_key,
                notification_id,
                task_id,
                recipient_id,
                channel.value,
                DeliveryStatus.PENDING.value,
                datetime.now(UTC).isoformat(),
            ),
        )
        created = cursor.rowcount == 1
        delivery = await self.get_delivery(dedupe_key)
        if delivery is None:
            raise RuntimeError(f"delivery {dedupe_key} vanished after insert")
        return delivery, created

    async def get_delivery(self, dedupe_key: str) -> Delivery | None:
        cursor = await self._conn.execute(
            """
            SELECT dedupe_key, notification_id, recipient_id, channel, status,
                   attempts, last_error, updated_at
            FROM deliveries WHERE dedupe_key = ?
            """,
            (dedupe_key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Delivery(
            dedupe_key=row[0],
            notification_id=row[1],
            recipient_id=row[2],
            channel=Channel(row[3]),
            status=DeliveryStatus(row[4]),
            attempts=row[5],
            last_error=row[6],
            updated_at=datetime.fromisoformat(row[7]),
        )

    async def record_attempt(
        self,
        dedupe_key: str,
        status: DeliveryStatus,
        error: str = "",
    ) -> None:
        """记录一次投递尝试的结果（attempts +1）"""
        await self._conn.execute(
            """
            UPDATE deliveries
            SET status = ?, attempts = attempts + 1, last_error = ?, updated_at = ?
            WHERE dedupe_key = ?
            """,
            (status.value, error, datetime.now(UTC).isoformat(), dedupe_key),
        )

    async def set_delivery_status(self, dedupe_key: str, status: DeliveryStatus) -> None:
        """更新状态但不计入尝试次数（如无在线连接时标记 SKIPPED）"""
        await self._conn.execute(
            "UPDATE deliveries SET status = ?, updated_at = ? WHERE dedupe_key = ?",
            (status.value, datetime.now(UTC).isoformat(), dedupe_key),
        )

    async def _get_by_source(
        self,
        source_key: str,
        recipient_id: str,
        kind: NotificationKind,
    ) -> Notification | None:
        cursor = await self._conn.execute(
            """
            SELECT * FROM notifications
            WHERE source_key = ? AND recipient_id = ? AND kind = ?
            """,
            (source_key, recipient_id, kind.value),
        )
        row = await cursor.fetchone()
        return self._row_to_notification(row) if row else None

    @staticmethod
    def _row_to_notification(row: aiosqlite.Row) -> Notification:
        """将数据库行转换为 Notification 模型"""
        return Notification(
            seq=row[0],
            notification_id=row[1],
            recipient_id=row[2],
            kind=NotificationKind(row[3]),
            payload=notification_payload_adapter.validate_json(row[4]),
            source_key=row[5],
            task_id=row[6],
            created_at=datetime.fromisoformat(row[7]),
            read_at=datetime.fromisoformat(row[8]) if row[8] else None,
        )
