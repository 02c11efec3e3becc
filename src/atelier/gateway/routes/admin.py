"""管理员路由

POST /api/admin/tasks/{task_id}/force: 强制流转（经同一原子提交路径）
POST /api/admin/tasks/{task_id}/resolve: 处理升级（approve -> IN_REVIEW，reject -> REVISION_REQUESTED）
POST /api/admin/tasks/purge: 批量清除任务
POST /api/admin/credits: 手动调整积分
POST /api/admin/freelancers/{freelancer_id}/status: 审核设计师
GET  /api/admin/settings: 当前平台设置
PUT  /api/admin/settings/{key}: 修改平台设置

角色校验在引擎内完成，非管理员返回 409 GUARD_VIOLATION。
"""

from typing import Any

from atelier.core.lifecycle import LifecycleEngine
from atelier.core.models import Actor, EscalationOutcome, FreelancerStatus, TaskStatus
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..deps import get_actor, get_engine, get_idempotency_key
from .tasks import result_response

router = APIRouter(prefix="/api/admin")


class ForceTransitionRequest(BaseModel):
    to_status: TaskStatus
    reason: str
    freelancer_id: str | None = Field(default=None, description="重新指派的设计师")


class ResolveEscalationRequest(BaseModel):
    outcome: EscalationOutcome = EscalationOutcome.APPROVE
    reason: str = ""
    feedback: str = Field(default="", description="驳回时发给设计师的修改意见")


class PurgeRequest(BaseModel):
    task_ids: list[str] = Field(min_length=1)


class AdjustCreditsRequest(BaseModel):
    account_id: str
    amount: int = Field(description="带符号金额，可使余额为负")
    reason: str


class FreelancerStatusRequest(BaseModel):
    status: FreelancerStatus


class SettingValue(BaseModel):
    value: Any


@router.post("/tasks/purge")
async def purge_tasks(
    body: PurgeRequest,
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    purged = await engine.admin_purge_tasks(body.task_ids, actor)
    return {"purged": purged}


@router.post("/tasks/{task_id}/force")
async def force_transition(
    task_id: str,
    body: ForceTransitionRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    result = await engine.admin_force_transition(
        task_id,
        body.to_status,
        actor,
        body.reason,
        freelancer_id=body.freelancer_id,
        idempotency_key=idempotency_key,
    )
    return result_response(result)


@router.post("/tasks/{task_id}/resolve")
async def resolve_escalation(
    task_id: str,
    body: ResolveEscalationRequest | None = None,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    body = body or ResolveEscalationRequest()
    result = await engine.resolve_escalation(
        task_id,
        actor,
        body.reason,
        idempotency_key,
        outcome=body.outcome,
        feedback=body.feedback,
    )
    return result_response(result)


@router.post("/credits")
async def adjust_credits(
    body: AdjustCreditsRequest,
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    balance = await engine.adjust_credits(body.account_id, body.amount, actor, body.reason)
    return {"account_id": body.account_id, "balance": balance}


@router.post("/freelancers/{freelancer_id}/status")
async def set_freelancer_status(
    freelancer_id: str,
    body: FreelancerStatusRequest,
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    await engine.set_freelancer_status(freelancer_id, body.status, actor)
    return {"freelancer_id": freelancer_id, "status": body.status.value}


@router.get("/settings")
async def get_settings(
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    settings = await engine.get_settings(actor)
    return settings.model_dump()


@router.put("/settings/{key}")
async def update_setting(
    key: str,
    body: SettingValue,
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    settings = await engine.update_settings(key, body.value, actor)
    return settings.model_dump()
