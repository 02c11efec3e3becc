"""余额对账模块

accounts.balance 是 ledger_entries 的缓存汇总。正常情况下两者在同一事务内
同步更新，不会出现偏差；此模块用于运维排查：从账本重新计算每个账户的余额，
报告并修复偏差。
"""

import time

import structlog
from pydantic import BaseModel

from .store import StoreGroup

log = structlog.get_logger()


class BalanceDrift(BaseModel):
    """单个账户的余额偏差"""

    account_id: str
    cached_balance: int
    ledger_balance: int

    @property
    def delta(self) -> int:
        return self.ledger_balance - self.cached_balance


async def find_drift(store_group: StoreGroup) -> list[BalanceDrift]:
    """列出缓存余额与账本汇总不一致的账户"""
    rows = await store_group.ledger_store.list_drift()
    return [
        BalanceDrift(account_id=account_id, cached_balance=cached, ledger_balance=ledger)
        for account_id, cached, ledger in rows
    ]


async def reconcile_balances(store_group: StoreGroup, fix: bool = True) -> list[BalanceDrift]:
    """从账本重算缓存余额

    Args:
        store_group: Store 实例组
        fix: 是否写回修正后的余额

    Returns:
        发现的偏差列表（修复前的值）
    """
    start_time = time.monotonic()

    async with store_group.unit_of_work():
        drifts = await find_drift(store_group)
        if fix:
            for drift in drifts:
                await store_group.account_store.set_cached_balance(
                    drift.account_id, drift.ledger_balance
                )

    for drift in drifts:
        log.warning(
            "balance_drift_detected",
            account_id=drift.account_id,
            cached_balance=drift.cached_balance,
            ledger_balance=drift.ledger_balance,
            fixed=fix,
        )

    elapsed_ms = int((time.monotonic() - start_time) * 1000)
    await log.ainfo(
        "balance_reconcile_completed",
        drift_count=len(drifts),
        fixed=fix,
        elapsed_ms=elapsed_ms,
    )
    return drifts
