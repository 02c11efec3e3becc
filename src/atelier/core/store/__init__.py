"""Atelier Core Store -- SQLite 持久化实现

提供工厂函数创建 Store 实例组：一个写连接（所有 UnitOfWork 共享，串行化写入），
以及一个只读连接供单元之外的查询使用。WAL 模式下只读连接只能看到已提交的数据，
进行中的写入单元对外不可见。
"""

import asyncio
from pathlib import Path

import aiosqlite

from .account_store import SqliteAccountStore
from .event_store import SqliteEventStore
from .ledger_store import SqliteLedgerStore
from .notification_store import SqliteNotificationStore
from .settings_store import SqliteAuditStore, SqliteSettingsStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import UnitOfWork, run_atomic


class ReadStores:
    """只读连接上的 Store 视图"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.task_store = SqliteTaskStore(conn)
        self.event_store = SqliteEventStore(conn)
        self.ledger_store = SqliteLedgerStore(conn)
        self.account_store = SqliteAccountStore(conn)
        self.notification_store = SqliteNotificationStore(conn)


class StoreGroup:
    """Store 实例组 -- 写 Store 共享同一个连接与写锁，读取走 reads"""

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self.conn = conn
        self.read_conn = read_conn if read_conn is not None else conn
        self.write_lock = asyncio.Lock()
        self.task_store = SqliteTaskStore(conn)
        self.event_store = SqliteEventStore(conn)
        self.ledger_store = SqliteLedgerStore(conn)
        self.account_store = SqliteAccountStore(conn)
        self.notification_store = SqliteNotificationStore(conn)
        self.settings_store = SqliteSettingsStore(conn)
        self.audit_store = SqliteAuditStore(conn)
        self.reads = ReadStores(self.read_conn)

    def unit_of_work(self) -> UnitOfWork:
        """创建一个原子写入单元"""
        return UnitOfWork(self.conn, self.write_lock)

    async def close(self) -> None:
        if self.read_conn is not self.conn:
            await self.read_conn.close()
        await self.conn.close()


async def open_read_connection(db_path: str) -> aiosqlite.Connection:
    """打开只读连接（query_only），数据库需已由写连接初始化为 WAL"""
    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA query_only = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")
    return conn


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径（":memory:" 时读写共用一个连接）

    Returns:
        StoreGroup 实例
    """
    if db_path == ":memory:":
        conn = await aiosqlite.connect(db_path)
        conn.row_factory = aiosqlite.Row
        await init_db(conn)
        return StoreGroup(conn=conn)

    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(db_path)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    read_conn = await open_read_connection(db_path)

    return StoreGroup(conn=conn, read_conn=read_conn)


__all__ = [
    "ReadStores",
    "StoreGroup",
    "create_store_group",
    "open_read_connection",
    "SqliteTaskStore",
    "SqliteEventStore",
    "SqliteLedgerStore",
    "SqliteAccountStore",
    "SqliteNotificationStore",
    "SqliteSettingsStore",
    "SqliteAuditStore",
    "UnitOfWork",
    "run_atomic",
    "init_db",
]
