"""原子提交测试

测试内容：
1. 单元内任一步失败时任务、账本、事件全部回滚
2. 存储层错误有限重试后抛出 TransitionFailed
3. 版本冲突自动重跑整个单元
4. 进行中的写入单元对读取方不可见
"""

import asyncio

import aiosqlite
import pytest
from atelier.core.errors import StaleTaskVersion, TransitionFailed
from atelier.core.models import LedgerKind, TaskStatus


class TestRollback:
    """失败回滚"""

    async def test_storage_error_rolls_back_refund(
        self, engine, store_group, accounts, in_review_task, monkeypatch
    ):
        """事件写入失败 -> 退款分录与任务状态都不落盘"""
        task = await in_review_task()
        client = accounts["client"]
        calls = {"n": 0}

        async def failing_append(event):
            calls["n"] += 1
            raise aiosqlite.OperationalError("database is locked")

        monkeypatch.setattr(store_group.event_store, "append_event", failing_append)

        with pytest.raises(TransitionFailed):
            await engine.cancel_task(task.task_id, client, "Stop")

        assert calls["n"] == 3
        current = await engine.get_task(task.task_id)
        assert current.status == TaskStatus.IN_REVIEW
        assert current.version == task.version
        kinds = [e.kind for e in await store_group.ledger_store.entries_for_task(task.task_id)]
        assert LedgerKind.REFUND not in kinds
        assert await engine.balance_of(client.id) == 90
        assert await store_group.ledger_store.computed_balance(client.id) == 90

    async def test_unexpected_error_not_retried(
        self, engine, store_group, accounts, in_review_task, monkeypatch
    ):
        task = await in_review_task()
        calls = {"n": 0}

        async def broken_append(event):
            calls["n"] += 1
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(store_group.event_store, "append_event", broken_append)

        with pytest.raises(RuntimeError):
            await engine.charge_extra_scope(task.task_id, accounts["client"], 5, "More")

        assert calls["n"] == 1
        assert await engine.balance_of(accounts["client"].id) == 90
        current = await engine.get_task(task.task_id)
        assert current.credits_committed == 10

    async def test_failed_create_leaves_nothing(
        self, engine, store_group, accounts, fund, requirements, monkeypatch
    ):
        client = accounts["client"]
        await fund(client.id, 50)

        async def failing_append(event):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(store_group.event_store, "append_event", failing_append)

        with pytest.raises(TransitionFailed):
            await engine.create_task(client, "static-ads", requirements())

        assert await engine.list_tasks(client_id=client.id) == []
        assert await engine.balance_of(client.id) == 50
        assert [e.kind for e in await store_group.ledger_store.history(client.id)] == [
            LedgerKind.PURCHASE
        ]

    async def test_no_effects_for_failed_commit(
        self, engine, effects, store_group, accounts, in_review_task, monkeypatch
    ):
        task = await in_review_task()
        before = len(effects.transitions)

        async def failing_append(event):
            raise aiosqlite.OperationalError("database is locked")

        monkeypatch.setattr(store_group.event_store, "append_event", failing_append)
        with pytest.raises(TransitionFailed):
            await engine.approve_task(task.task_id, accounts["client"])
        assert len(effects.transitions) == before


class TestOptimisticRetry:
    """版本冲突重试"""

    async def test_stale_version_retried(
        self, engine, store_group, accounts, in_review_task, monkeypatch
    ):
        task = await in_review_task()
        original_save = store_group.task_store.save_task
        calls = {"n": 0}

        async def flaky_save(updated, expected_version):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StaleTaskVersion(updated.task_id, expected_version)
            return await original_save(updated, expected_version)

        monkeypatch.setattr(store_group.task_store, "save_task", flaky_save)

        result = await engine.approve_task(task.task_id, accounts["client"])

        assert calls["n"] == 2
        assert result.task.status == TaskStatus.COMPLETED
        assert result.task.version == task.version + 1

    async def test_stale_version_bumps_on_write(self, engine, accounts, in_review_task):
        task = await in_review_task()
        result = await engine.approve_task(task.task_id, accounts["client"])
        assert result.task.version == task.version + 1


class TestReadIsolation:
    """读取只看到已提交数据"""

    async def test_in_flight_debit_not_visible(
        self, engine, store_group, accounts, fund, requirements, monkeypatch
    ):
        """创建任务的扣费已写入但单元未提交时，余额与流水仍是调用前的值"""
        client = accounts["client"]
        await fund(client.id, 100)
        reached = asyncio.Event()
        release = asyncio.Event()

        async def stalled_append(event):
            reached.set()
            await release.wait()
            raise RuntimeError("event log unavailable")

        monkeypatch.setattr(store_group.event_store, "append_event", stalled_append)

        pending = asyncio.create_task(
            engine.create_task(client, "static-ads", requirements())
        )
        await asyncio.wait_for(reached.wait(), timeout=5)

        assert await engine.balance_of(client.id) == 100
        kinds = [e.kind for e in await engine.list_ledger(client.id)]
        assert kinds == [LedgerKind.PURCHASE]
        assert await engine.list_tasks(client_id=client.id) == []

        release.set()
        with pytest.raises(RuntimeError):
            await pending

        assert await engine.balance_of(client.id) == 100
        assert await store_group.ledger_store.computed_balance(client.id) == 100

    async def test_reads_use_separate_connection(self, store_group):
        assert store_group.read_conn is not store_group.conn
        cursor = await store_group.read_conn.execute("PRAGMA query_only")
        row = await cursor.fetchone()
        assert row[0] == 1
