"""账户路由

POST /api/accounts: 认证协作方同步账户资料（幂等）
PUT  /api/freelancers/me/availability: 设计师切换可接单状态
"""

from atelier.core.errors import GuardViolation, NotFound
from atelier.core.lifecycle import LifecycleEngine
from atelier.core.models import AccountRole, Actor
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_actor, get_engine, get_store_group

router = APIRouter()


class UpsertAccountRequest(BaseModel):
    account_id: str = Field(min_length=1)
    role: AccountRole
    email: str = ""
    name: str = ""
    email_enabled: bool = True


class AvailabilityRequest(BaseModel):
    available: bool


@router.post("/api/accounts")
async def upsert_account(
    body: UpsertAccountRequest,
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    """创建或更新账户（余额不受影响）

    只能同步自己的账户；管理员可同步任意账户。
    """
    if not actor.is_admin and (actor.id != body.account_id or actor.role != body.role):
        raise GuardViolation(
            "Accounts can only be synced by their owner or an admin",
            details={"account_id": body.account_id},
        )
    account = await engine.upsert_account(
        body.account_id, body.role, body.email, body.name, body.email_enabled
    )
    return account.model_dump(mode="json")


@router.get("/api/accounts/me")
async def get_my_account(
    actor: Actor = Depends(get_actor),
    store_group=Depends(get_store_group),
):
    account = await store_group.reads.account_store.get_account(actor.id)
    if account is None:
        raise NotFound("Account", actor.id)
    data = account.model_dump(mode="json")
    if account.role == AccountRole.FREELANCER:
        profile = await store_group.reads.account_store.get_freelancer_profile(actor.id)
        data["freelancer_profile"] = profile.model_dump(mode="json") if profile else None
    return data


@router.put("/api/freelancers/me/availability")
async def set_availability(
    body: AvailabilityRequest,
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    await engine.set_availability(actor, body.available)
    return {"account_id": actor.id, "available": body.available}
