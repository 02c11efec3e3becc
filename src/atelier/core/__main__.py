"""CLI 入口模块 -- python -m atelier.core <command>

支持的命令：
  init-db              创建数据库表并写入默认分类
  reconcile-balances   从账本重算缓存余额并报告偏差（--dry-run 只报告）
"""

import asyncio
import sys

from .config import get_db_path

_USAGE = """用法: python -m atelier.core <command>
命令:
  init-db              创建数据库表并写入默认分类
  reconcile-balances   从账本重算缓存余额（--dry-run 只报告不修复）"""


def main(argv: list[str] | None = None) -> int:
    """CLI 主入口"""
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print(_USAGE)
        return 1

    command = args[0]

    if command == "init-db":
        asyncio.run(init_database())
        return 0
    if command == "reconcile-balances":
        drift_count = asyncio.run(reconcile(fix="--dry-run" not in args[1:]))
        return 2 if drift_count and "--dry-run" in args[1:] else 0

    print(f"未知命令: {command}")
    print("可用命令: init-db, reconcile-balances")
    return 1


async def init_database() -> None:
    """创建 schema（create_store_group 内部执行 init_db）"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)
    try:
        categories = await store_group.task_store.list_categories()
        print(f"初始化完成，共 {len(categories)} 个任务分类")
    finally:
        await store_group.close()


async def reconcile(fix: bool = True) -> int:
    """执行余额对账

    Returns:
        发现的偏差账户数
    """
    from .reconcile import reconcile_balances
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    print("开始对账..." if fix else "开始对账（仅报告）...")

    store_group = await create_store_group(db_path)
    try:
        drifts = await reconcile_balances(store_group, fix=fix)
        for drift in drifts:
            print(
                f"  {drift.account_id}: 缓存 {drift.cached_balance} -> "
                f"账本 {drift.ledger_balance} (差额 {drift.delta:+d})"
            )
        print(f"对账完成，{len(drifts)} 个账户存在偏差")
        return len(drifts)
    finally:
        await store_group.close()


if __name__ == "__main__":
    sys.exit(main())
