"""账本路由

GET /api/ledger: 账户流水（最新在前）
GET /api/ledger/balance: 当前余额
管理员可通过 account_id 查询任意账户，其他角色只能查询自己。
"""

from atelier.core.errors import GuardViolation
from atelier.core.lifecycle import LifecycleEngine
from atelier.core.models import Actor
from fastapi import APIRouter, Depends, Query

from ..deps import get_actor, get_engine

router = APIRouter()


def _target_account(actor: Actor, account_id: str | None) -> str:
    if account_id is None or account_id == actor.id:
        return actor.id
    if not actor.is_admin:
        raise GuardViolation(
            "Only admins can read other accounts' ledgers",
            details={"account_id": account_id},
        )
    return account_id


@router.get("/api/ledger")
async def list_ledger(
    account_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    target = _target_account(actor, account_id)
    entries = await engine.list_ledger(target, limit)
    return {
        "account_id": target,
        "balance": await engine.balance_of(target),
        "entries": [e.model_dump(mode="json") for e in entries],
    }


@router.get("/api/ledger/balance")
async def get_balance(
    account_id: str | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    target = _target_account(actor, account_id)
    return {"account_id": target, "balance": await engine.balance_of(target)}
