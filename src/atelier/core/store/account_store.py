"""AccountStore SQLite 实现

账户由认证协作方通过 upsert 同步；balance 字段只允许 LedgerStore 修改。
设计师档案（审核状态 + 可接单标记）与账户一对一。
"""

from datetime import UTC, datetime

import aiosqlite

from ..models.account import Account, FreelancerProfile
from ..models.enums import AccountRole, FreelancerStatus


class SqliteAccountStore:
    """AccountStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def upsert_account(
        self,
        account_id: str,
        role: AccountRole,
        email: str = "",
        name: str = "",
        email_enabled: bool = True,
    ) -> None:
        """创建或更新账户资料（不触碰 balance，不提交事务）

        设计师账户同时确保存在一条 PENDING 档案。
        """
        now = datetime.now(UTC).isoformat()
        await self._conn.execute(
            """
            INSERT INTO accounts (account_id, role, email, name, email_enabled,
                                  balance, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, 0, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                role = excluded.role,
                email = excluded.email,
                name = excluded.name,
                email_enabled = excluded.email_enabled,
                updated_at = excluded.updated_at
            """,
            (account_id, role.value, email, name, int(email_enabled), now, now),
        )
        if role == AccountRole.FREELANCER:
            await self._conn.execute(
                """
                INSERT OR IGNORE INTO freelancer_profiles (account_id, status, available,
                                                           updated_at)
                VALUES (?, ?, 1, ?)
                """,
                (account_id, FreelancerStatus.PENDING.value, now),
            )

    async def get_account(self, account_id: str) -> Account | None:
        cursor = await self._conn.execute(
            """
            SELECT account_id, role, email, name, email_enabled, balance,
                   created_at, updated_at
            FROM accounts WHERE account_id = ?
            """,
            (account_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Account(
            account_id=row[0],
            role=AccountRole(row[1]),
            email=row[2],
            name=row[3],
            email_enabled=bool(row[4]),
            balance=row[5],
            created_at=datetime.fromisoformat(row[6]),
            updated_at=datetime.fromisoformat(row[7]),
        )

    async def list_account_ids(self, role: AccountRole | None = None) -> list[str]:
        if role is None:
            cursor = await self._conn.execute(
                "SELECT account_id FROM accounts ORDER BY account_id"
            )
        else:
            cursor = await self._conn.execute(
                "SELECT account_id FROM accounts WHERE role = ? ORDER BY account_id",
                (role.value,),
            )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def set_cached_balance(self, account_id: str, balance: int) -> None:
        """覆盖缓存余额（仅供对账修复使用）"""
        await self._conn.execute(
            "UPDATE accounts SET balance = ?, updated_at = ? WHERE account_id = ?",
            (balance, datetime.now(UTC).isoformat(), account_id),
        )

    async def get_freelancer_profile(self, account_id: str) -> FreelancerProfile | None:
        cursor = await self._conn.execute(
            """
            SELECT account_id, status, available, updated_at
            FROM freelancer_profiles WHERE account_id = ?
            """,
            (account_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return FreelancerProfile(
            account_id=row[0],
            status=FreelancerStatus(row[1]),
            available=bool(row[2]),
            updated_at=datetime.fromisoformat(row[3]),
        )

    async def set_freelancer_status(
        self,
        account_id: str,
        status: FreelancerStatus,
    ) -> None:
        await self._conn.execute(
            "UPDATE freelancer_profiles SET status = ?, updated_at = ? WHERE account_id = ?",
            (status.value, datetime.now(UTC).isoformat(), account_id),
        )

    async def set_freelancer_availability(self, account_id: str, available: bool) -> None:
        await self._conn.execute(
            """
            UPDATE freelancer_profiles SET available = ?, updated_at = ?
            WHERE account_id = ?
            """,
            (int(available), datetime.now(UTC).isoformat(), account_id),
        )
