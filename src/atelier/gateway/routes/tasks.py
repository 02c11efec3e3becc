"""任务路由

POST /api/tasks: 创建任务（扣除分类积分）
GET  /api/tasks: 任务列表（按操作者角色限定可见范围）
GET  /api/tasks/{task_id}: 任务详情，含事件历史
POST /api/tasks/{task_id}/{action}: 生命周期流转

所有写操作支持 Idempotency-Key 请求头；重放返回 200 与 replayed=true。
"""

from typing import Any

from atelier.core.errors import NotFound
from atelier.core.lifecycle import LifecycleEngine, TransitionResult
from atelier.core.models import AccountRole, Actor, Task, TaskStatus
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..deps import get_actor, get_engine, get_idempotency_key

router = APIRouter()


class CreateTaskRequest(BaseModel):
    """创建任务请求体（requirements 在引擎内按 kind 校验）"""

    category: str = Field(description="分类 slug")
    requirements: dict[str, Any]


class SubmitRequest(BaseModel):
    deliverables: list[str] = Field(min_length=1, description="交付物引用（URL/路径）")


class RevisionRequest(BaseModel):
    feedback: str


class ExtraScopeRequest(BaseModel):
    credits: int
    reason: str


class ReasonRequest(BaseModel):
    reason: str = ""


def task_to_dict(task: Task) -> dict[str, Any]:
    data = task.model_dump(mode="json")
    data["title"] = task.title
    return data


def result_response(result: TransitionResult, created: bool = False) -> JSONResponse:
    """流转结果 -> 响应（新建 201，其余 200）"""
    return JSONResponse(
        status_code=201 if created and not result.replayed else 200,
        content={
            "task": task_to_dict(result.task),
            "balance": result.balance,
            "event_id": result.event_id,
            "replayed": result.replayed,
        },
    )


def _is_visible(task: Task, actor: Actor) -> bool:
    if actor.role == AccountRole.ADMIN:
        return True
    if actor.role == AccountRole.CLIENT:
        return task.client_id == actor.id
    return task.status == TaskStatus.PENDING or task.freelancer_id == actor.id


@router.post("/api/tasks")
async def create_task(
    body: CreateTaskRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    """创建任务

    - 201: 新建成功
    - 200: 幂等键重放
    - 402: 余额不足（不创建任务，不写分录）
    """
    result = await engine.create_task(
        actor, body.category, body.requirements, idempotency_key
    )
    return result_response(result, created=True)


@router.get("/api/tasks")
async def list_tasks(
    status: TaskStatus | None = Query(default=None, description="按状态筛选"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    """任务列表，按 created_at 倒序

    委托方只看到自己的任务；设计师看到待认领任务和自己负责的任务。
    """
    client_id = None
    freelancer_id = None
    if actor.role == AccountRole.CLIENT:
        client_id = actor.id
    elif actor.role == AccountRole.FREELANCER and status != TaskStatus.PENDING:
        freelancer_id = actor.id

    tasks = await engine.list_tasks(
        status.value if status else None, client_id, freelancer_id, limit, offset
    )
    return {"tasks": [task_to_dict(t) for t in tasks]}


@router.get("/api/tasks/{task_id}")
async def get_task_detail(
    task_id: str,
    actor: Actor = Depends(get_actor),
    engine: LifecycleEngine = Depends(get_engine),
):
    """任务详情 + 事件历史（无权查看的任务按不存在处理）"""
    task = await engine.get_task(task_id)
    if not _is_visible(task, actor):
        raise NotFound("Task", task_id)
    events = await engine.get_task_events(task_id)
    return {
        "task": task_to_dict(task),
        "events": [e.model_dump(mode="json", exclude={"dispatched_at"}) for e in events],
    }


@router.post("/api/tasks/{task_id}/claim")
async def claim_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    return result_response(await engine.claim_task(task_id, actor, idempotency_key))


@router.post("/api/tasks/{task_id}/start")
async def start_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    return result_response(await engine.start_task(task_id, actor, idempotency_key))


@router.post("/api/tasks/{task_id}/submit")
async def submit_deliverable(
    task_id: str,
    body: SubmitRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    result = await engine.submit_deliverable(
        task_id, actor, body.deliverables, idempotency_key
    )
    return result_response(result)


@router.post("/api/tasks/{task_id}/approve")
async def approve_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    return result_response(await engine.approve_task(task_id, actor, idempotency_key))


@router.post("/api/tasks/{task_id}/revision")
async def request_revision(
    task_id: str,
    body: RevisionRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    """请求修改 -- 达到修改次数上限时返回 409 GUARD_VIOLATION"""
    result = await engine.request_revision(task_id, actor, body.feedback, idempotency_key)
    return result_response(result)


@router.post("/api/tasks/{task_id}/resume")
async def resume_task(
    task_id: str,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    return result_response(await engine.resume_task(task_id, actor, idempotency_key))


@router.post("/api/tasks/{task_id}/extra-scope")
async def charge_extra_scope(
    task_id: str,
    body: ExtraScopeRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    """审核阶段追加范围扣费（状态保持 IN_REVIEW）"""
    result = await engine.charge_extra_scope(
        task_id, actor, body.credits, body.reason, idempotency_key
    )
    return result_response(result)


@router.post("/api/tasks/{task_id}/escalate")
async def escalate_task(
    task_id: str,
    body: ReasonRequest,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    result = await engine.escalate_task(task_id, actor, body.reason, idempotency_key)
    return result_response(result)


@router.post("/api/tasks/{task_id}/cancel")
async def cancel_task(
    task_id: str,
    body: ReasonRequest | None = None,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    engine: LifecycleEngine = Depends(get_engine),
):
    """取消任务并退还已扣积分

    - 200: 取消成功（或幂等重放）
    - 404: 任务不存在
    - 409: 任务已在终态
    """
    reason = body.reason if body else ""
    result = await engine.cancel_task(task_id, actor, reason, idempotency_key)
    return result_response(result)
