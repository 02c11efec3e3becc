"""LedgerStore SQLite 实现

账本 append-only：append 是唯一的写操作，不自动提交事务，
必须在 LifecycleEngine 的 UnitOfWork 内调用，与任务写入同属一个事务。

余额规则：
- 余额恒等于分录之和；accounts.balance 缓存在同一事务内同步刷新，从不延迟更新。
- USAGE 分录导致余额为负时拒绝（InsufficientCredits）。
- MANUAL_ADJUST 允许余额为负（管理员操作，单独写审计日志）。
"""

from datetime import UTC, datetime

import aiosqlite
from ulid import ULID

from ..errors import InsufficientCredits, NotFound, ValidationError
from ..models.enums import LedgerKind
from ..models.ledger import LedgerEntry

# 每种分录允许的金额符号：1 为正，-1 为负，0 为任意非零
_AMOUNT_SIGN: dict[LedgerKind, int] = {
    LedgerKind.PURCHASE: 1,
    LedgerKind.REFUND: 1,
    LedgerKind.USAGE: -1,
    LedgerKind.MANUAL_ADJUST: 0,
}


class SqliteLedgerStore:
    """LedgerStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append(
        self,
        account_id: str,
        amount: int,
        kind: LedgerKind,
        task_id: str | None = None,
        description: str = "",
        external_ref: str | None = None,
    ) -> int:
        """追加一条分录并同步刷新缓存余额

        Args:
            account_id: 账户 ID
            amount: 带符号金额
            kind: 分录类型
            task_id: 关联任务
            description: 描述
            external_ref: 外部幂等键（PURCHASE 为支付方交易号）

        Returns:
            写入后的余额

        Raises:
            ValidationError: 金额为 0 或符号与分录类型不符
            NotFound: 账户不存在
            InsufficientCredits: USAGE 分录导致余额为负
        """
        sign = _AMOUNT_SIGN[kind]
        if amount == 0 or (sign > 0 and amount < 0) or (sign < 0 and amount > 0):
            raise ValidationError(
                f"Invalid amount {amount} for {kind.value} entry",
                details={"amount": amount, "kind": kind.value},
            )

        if not await self._account_exists(account_id):
            raise NotFound("Account", account_id)

        current = await self.computed_balance(account_id)
        new_balance = current + amount
        if kind == LedgerKind.USAGE and new_balance < 0:
            raise InsufficientCredits(account_id, current, -amount)

        now = datetime.now(UTC)
        await self._conn.execute(
            """
            INSERT INTO ledger_entries (entry_id, account_id, amount, kind, task_id,
                                        external_ref, description, balance_after,
                                        created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(ULID()),
                account_id,
                amount,
                kind.value,
                task_id,
                external_ref,
                description,
                new_balance,
                now.isoformat(),
            ),
        )
        await self._conn.execute(
            "UPDATE accounts SET balance = ?, updated_at = ? WHERE account_id = ?",
            (new_balance, now.isoformat(), account_id),
        )
        return new_balance

    async def balance_of(self, account_id: str) -> int:
        """查询缓存余额（与账本之和保持同步）

        Raises:
            NotFound: 账户不存在
        """
        cursor = await self._conn.execute(
            "SELECT balance FROM accounts WHERE account_id = ?",
            (account_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            raise NotFound("Account", account_id)
        return row[0]

    async def computed_balance(self, account_id: str) -> int:
        """从分录重新计算余额"""
        cursor = await self._conn.execute(
            "SELECT COALESCE(SUM(amount), 0) FROM ledger_entries WHERE account_id = ?",
            (account_id,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def history(self, account_id: str, limit: int = 50) -> list[LedgerEntry]:
        """查询账户流水，最新在前"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM ledger_entries
            WHERE account_id = ?
            ORDER BY seq DESC
            LIMIT ?
            """,
            (account_id, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def entries_for_task(self, task_id: str) -> list[LedgerEntry]:
        cursor = await self._conn.execute(
            "SELECT * FROM ledger_entries WHERE task_id = ? ORDER BY seq ASC",
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_entry(row) for row in rows]

    async def find_by_external_ref(
        self,
        kind: LedgerKind,
        external_ref: str,
    ) -> LedgerEntry | None:
        """按外部幂等键查找分录（支付 webhook 重放检测）"""
        cursor = await self._conn.execute(
            "SELECT * FROM ledger_entries WHERE kind = ? AND external_ref = ? LIMIT 1",
            (kind.value, external_ref),
        )
        row = await cursor.fetchone()
        return self._row_to_entry(row) if row else None

    async def latest_entry(self, account_id: str) -> LedgerEntry | None:
        cursor = await self._conn.execute(
            "SELECT * FROM ledger_entries WHERE account_id = ? ORDER BY seq DESC LIMIT 1",
            (account_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_entry(row) if row else None

    async def list_drift(self) -> list[tuple[str, int, int]]:
        """找出缓存余额与账本之和不一致的账户

        Returns:
            (account_id, cached_balance, ledger_sum) 列表
        """
        cursor = await self._conn.execute(
            """
            SELECT a.account_id, a.balance, COALESCE(SUM(l.amount), 0) AS ledger_sum
            FROM accounts a
            LEFT JOIN ledger_entries l ON l.account_id = a.account_id
            GROUP BY a.account_id
            HAVING a.balance != ledger_sum
            """
        )
        rows = await cursor.fetchall()
        return [(row[0], row[1], row[2]) for row in rows]

    async def _account_exists(self, account_id: str) -> bool:
        cursor = await self._conn.execute(
            "SELECT 1 FROM accounts WHERE account_id = ?",
            (account_id,),
        )
        return await cursor.fetchone() is not None

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> LedgerEntry:
        """将数据库行转换为 LedgerEntry 模型"""
        return LedgerEntry(
            seq=row[0],
            entry_id=row[1],
            account_id=row[2],
            amount=row[3],
            kind=LedgerKind(row[4]),
            task_id=row[5],
            external_ref=row[6],
            description=row[7],
            balance_after=row[8],
            created_at=datetime.fromisoformat(row[9]),
        )
