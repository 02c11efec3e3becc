"""余额对账测试

测试内容：
1. 正常写入不产生偏差
2. 缓存余额被篡改后能检测并修复
3. CLI reconcile-balances / init-db
"""

from atelier.core.__main__ import main
from atelier.core.reconcile import find_drift, reconcile_balances


async def _corrupt(store_group, account_id: str, balance: int) -> None:
    async with store_group.unit_of_work():
        await store_group.account_store.set_cached_balance(account_id, balance)


async def test_no_drift_after_normal_writes(store_group, engine, accounts, in_review_task):
    await in_review_task()
    await engine.adjust_credits(accounts["other_client"].id, -3, accounts["admin"], "fee")
    assert await find_drift(store_group) == []


async def test_detect_and_fix(store_group, engine, accounts, fund):
    client = accounts["client"]
    await fund(client.id, 40)
    await _corrupt(store_group, client.id, 999)

    drifts = await reconcile_balances(store_group, fix=True)

    assert len(drifts) == 1
    assert drifts[0].account_id == client.id
    assert drifts[0].cached_balance == 999
    assert drifts[0].ledger_balance == 40
    assert drifts[0].delta == -959
    assert await engine.balance_of(client.id) == 40
    assert await find_drift(store_group) == []


async def test_dry_run_reports_only(store_group, engine, accounts, fund):
    client = accounts["client"]
    await fund(client.id, 10)
    await _corrupt(store_group, client.id, 0)

    drifts = await reconcile_balances(store_group, fix=False)

    assert [d.ledger_balance for d in drifts] == [10]
    assert await engine.balance_of(client.id) == 0


class TestCli:
    """python -m atelier.core"""

    def test_usage_without_command(self, capsys):
        assert main([]) == 1
        assert "init-db" in capsys.readouterr().out

    def test_unknown_command(self, capsys):
        assert main(["explode"]) == 1
        assert "explode" in capsys.readouterr().out

    def test_init_db_creates_categories(self, tmp_path, monkeypatch, capsys):
        db_path = tmp_path / "cli" / "atelier.db"
        monkeypatch.setenv("ATELIER_DB_PATH", str(db_path))

        assert main(["init-db"]) == 0

        assert db_path.exists()
        assert "4" in capsys.readouterr().out

    def test_reconcile_clean_database(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setenv("ATELIER_DB_PATH", str(tmp_path / "clean.db"))
        assert main(["reconcile-balances", "--dry-run"]) == 0
        assert "0" in capsys.readouterr().out
