"""SQLite 存储层测试

测试内容：
1. PRAGMA 与建表幂等、默认分类
2. 任务行乐观并发写回
3. UnitOfWork 异常回滚
"""

from pathlib import Path

import aiosqlite
import pytest
from atelier.core.errors import StaleTaskVersion
from atelier.core.store.sqlite_init import init_db, verify_wal_mode


class TestInit:
    async def test_wal_mode_enabled(self, tmp_path: Path):
        conn = await aiosqlite.connect(str(tmp_path / "wal.db"))
        await init_db(conn)
        assert await verify_wal_mode(conn) is True
        await conn.close()

    async def test_init_is_idempotent(self, tmp_path: Path):
        db_path = str(tmp_path / "twice.db")
        conn = await aiosqlite.connect(db_path)
        await init_db(conn)
        await init_db(conn)
        cursor = await conn.execute("SELECT slug, base_credits FROM task_categories ORDER BY slug")
        rows = await cursor.fetchall()
        await conn.close()

        assert dict(rows) == {
            "social-media": 10,
            "static-ads": 10,
            "ui-ux": 50,
            "video-motion": 30,
        }

    async def test_foreign_keys_enabled(self, store_group):
        cursor = await store_group.conn.execute("PRAGMA foreign_keys;")
        row = await cursor.fetchone()
        assert row[0] == 1


class TestTaskStore:
    async def test_stale_version_rejected(
        self, engine, store_group, accounts, fund, requirements
    ):
        await fund(accounts["client"].id, 20)
        created = await engine.create_task(accounts["client"], "static-ads", requirements())
        task = created.task

        async with store_group.unit_of_work():
            saved = await store_group.task_store.save_task(task, task.version)
        assert saved.version == task.version + 1

        with pytest.raises(StaleTaskVersion):
            async with store_group.unit_of_work():
                await store_group.task_store.save_task(task, task.version)

    async def test_unit_of_work_rolls_back(self, store_group, accounts):
        with pytest.raises(RuntimeError):
            async with store_group.unit_of_work():
                await store_group.account_store.set_cached_balance("client-1", 500)
                raise RuntimeError("abort")

        account = await store_group.account_store.get_account("client-1")
        assert account.balance == 0
        assert not store_group.write_lock.locked()
