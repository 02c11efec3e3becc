"""LifecycleEngine -- 任务状态机与积分账本的唯一写入方

每个流转在一个 UnitOfWork 内完成：
1. 读取任务并校验 guard（状态、操作者、参数）
2. 写入账本分录（如有积分变动），同步刷新缓存余额
3. 按版本号写回任务行
4. 追加 task_events 行（同时作为副作用 outbox）

任一步失败整个单元回滚，调用方看到的任务与账本与调用前完全一致。
提交成功后才通知 EffectSink，副作用派发不阻塞调用方。

幂等：调用方提供的 idempotency_key 写入 task_events 唯一索引，
同一键的重放直接返回已提交结果，不会重复产生积分变动。
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import aiosqlite
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from ulid import ULID

from .config import COMMIT_MAX_ATTEMPTS
from .errors import (
    AlreadyAssigned,
    GuardViolation,
    InsufficientCredits,
    NotFound,
    ValidationError,
)
from .models import (
    ASSIGNED_STATES,
    TERMINAL_STATES,
    Account,
    AccountRole,
    Actor,
    AdminOverridePayload,
    EscalationOutcome,
    EventType,
    ExtraScopeChargedPayload,
    FreelancerStatus,
    LedgerEntry,
    LedgerKind,
    StateTransitionPayload,
    Task,
    TaskAction,
    TaskCreatedPayload,
    TaskEvent,
    TaskStatus,
    requirements_adapter,
    validate_transition,
)
from .models.requirements import matches_category
from .settings_cache import SETTING_KEYS, PlatformSettings, SettingsCache
from .store import StoreGroup, run_atomic
from .store.protocols import LedgerStore, TaskEventStore, TaskStore

log = structlog.get_logger()

# 每个动作的目标状态（幂等重放时用于校验同一请求）
ACTION_TARGETS: dict[TaskAction, TaskStatus] = {
    TaskAction.CLAIM: TaskStatus.ASSIGNED,
    TaskAction.START: TaskStatus.IN_PROGRESS,
    TaskAction.SUBMIT: TaskStatus.IN_REVIEW,
    TaskAction.APPROVE: TaskStatus.COMPLETED,
    TaskAction.REQUEST_REVISION: TaskStatus.REVISION_REQUESTED,
    TaskAction.RESUME: TaskStatus.IN_PROGRESS,
    TaskAction.CHARGE_EXTRA_SCOPE: TaskStatus.IN_REVIEW,
    TaskAction.ESCALATE: TaskStatus.PENDING_ADMIN_REVIEW,
    TaskAction.RESOLVE_ESCALATION: TaskStatus.IN_REVIEW,
    TaskAction.REJECT_ESCALATION: TaskStatus.REVISION_REQUESTED,
    TaskAction.CANCEL: TaskStatus.CANCELLED,
}


class TransitionResult(BaseModel):
    """流转结果：最新任务状态 + 委托方余额"""

    task: Task
    balance: int
    event_id: str | None = None
    replayed: bool = False


class PurchaseResult(BaseModel):
    entry: LedgerEntry
    balance: int
    replayed: bool = False


@dataclass
class CreditChange:
    """不依附于任务流转的积分变动（充值、管理员调整、清除退款）"""

    account_id: str
    kind: LedgerKind
    amount: int
    balance: int
    source_key: str
    description: str = ""


class EffectSink(Protocol):
    """已提交变更的副作用接收方（EffectDispatcher 实现）

    两个方法都只入队，不得阻塞或抛出。
    """

    def on_transition_committed(self, task: Task, event: TaskEvent) -> None: ...

    def on_credits_committed(self, change: CreditChange) -> None: ...


@dataclass
class _Plan:
    """单个流转的待写入内容"""

    task: Task
    event_type: EventType
    payload: StateTransitionPayload | ExtraScopeChargedPayload | AdminOverridePayload
    ledger: tuple[int, LedgerKind, str] | None = None
    audit: dict[str, Any] = field(default_factory=dict)


class LifecycleEngine:
    """任务生命周期引擎"""

    def __init__(
        self,
        store_group: StoreGroup,
        settings: SettingsCache,
        effects: EffectSink | None = None,
        max_attempts: int = COMMIT_MAX_ATTEMPTS,
    ) -> None:
        self._stores = store_group
        self._tasks: TaskStore = store_group.task_store
        self._events: TaskEventStore = store_group.event_store
        self._ledger: LedgerStore = store_group.ledger_store
        # 单元之外的查询走只读连接，只看到已提交数据
        self._reads = store_group.reads
        self._settings = settings
        self._effects = effects
        self._max_attempts = max_attempts

    def set_effects(self, effects: EffectSink | None) -> None:
        self._effects = effects

    # ============================================================
    # 任务创建
    # ============================================================

    async def create_task(
        self,
        actor: Actor,
        category: str,
        requirements: dict[str, Any] | BaseModel,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """创建任务并扣除分类积分（(none) -> PENDING）

        Raises:
            GuardViolation: 操作者不是委托方
            ValidationError: 分类无效或需求结构不合法
            InsufficientCredits: 余额不足，不创建任务也不写入分录
        """
        if actor.role != AccountRole.CLIENT:
            raise GuardViolation(
                "Only clients can create tasks",
                details={"actor_role": actor.role.value},
            )
        parsed = self._parse_requirements(requirements)
        task_category = await self._tasks.get_category(category)
        if task_category is None or not task_category.active:
            raise ValidationError(
                f"Unknown or inactive category: {category}",
                details={"category": category},
            )
        if not matches_category(parsed, category):
            raise ValidationError(
                f"Requirements of kind {parsed.kind} do not match category {category}",
                details={"kind": parsed.kind, "category": category},
            )

        if idempotency_key:
            replay = await self._replay_creation(idempotency_key, actor)
            if replay is not None:
                return replay

        settings = await self._settings.get()
        now = datetime.now(UTC)
        task = Task(
            task_id=str(ULID()),
            client_id=actor.id,
            category=category,
            status=TaskStatus.PENDING,
            credits_committed=task_category.base_credits,
            max_revisions=settings.default_max_revisions,
            requirements=parsed,
            created_at=now,
            updated_at=now,
        )

        async def work() -> tuple[TaskEvent, int]:
            if task_category.base_credits > 0:
                balance = await self._ledger.append(
                    actor.id,
                    -task_category.base_credits,
                    LedgerKind.USAGE,
                    task_id=task.task_id,
                    description=f"Task created: {task.title}",
                )
            else:
                balance = await self._ledger.balance_of(actor.id)
            await self._tasks.create_task(task)
            event = TaskEvent(
                event_id=str(ULID()),
                task_id=task.task_id,
                task_seq=1,
                ts=now,
                type=EventType.TASK_CREATED,
                to_status=TaskStatus.PENDING,
                actor_id=actor.id,
                actor_role=actor.role,
                payload=TaskCreatedPayload(
                    title=task.title,
                    category=category,
                    credits_charged=task_category.base_credits,
                    max_revisions=task.max_revisions,
                    balance_after=balance,
                ).model_dump(mode="json"),
                idempotency_key=idempotency_key,
            )
            await self._events.append_event(event)
            return event, balance

        try:
            event, balance = await run_atomic(
                self._stores.unit_of_work,
                work,
                self._max_attempts,
                operation="create_task",
            )
        except InsufficientCredits:
            log.info(
                "task_creation_rejected",
                client_id=actor.id,
                category=category,
                reason="insufficient_credits",
            )
            raise
        except aiosqlite.IntegrityError:
            if idempotency_key:
                replay = await self._replay_creation(idempotency_key, actor)
                if replay is not None:
                    return replay
            raise

        await log.ainfo(
            "task_created",
            task_id=task.task_id,
            client_id=actor.id,
            category=category,
            credits=task_category.base_credits,
            balance=balance,
        )
        self._emit_transition(task, event)
        return TransitionResult(task=task, balance=balance, event_id=event.event_id)

    async def _replay_creation(
        self,
        idempotency_key: str,
        actor: Actor,
    ) -> TransitionResult | None:
        existing = await self._events.find_by_idempotency_key(idempotency_key)
        if existing is None:
            return None
        if existing.type != EventType.TASK_CREATED or existing.actor_id != actor.id:
            raise ValidationError(
                "Idempotency key already used for a different request",
                details={"idempotency_key": idempotency_key},
            )
        task = await self._require_task(existing.task_id)
        balance = await self._ledger.balance_of(task.client_id)
        log.info("task_creation_replayed", task_id=task.task_id)
        return TransitionResult(
            task=task, balance=balance, event_id=existing.event_id, replayed=True
        )

    # ============================================================
    # 通用流转入口
    # ============================================================

    async def apply_transition(
        self,
        task_id: str,
        action: TaskAction,
        actor: Actor,
        idempotency_key: str | None = None,
        **params: Any,
    ) -> TransitionResult:
        """执行一次流转

        Args:
            task_id: 任务 ID
            action: 流转动作
            actor: 已认证的操作者
            idempotency_key: 幂等键（webhook 重试、客户端重放）
            **params: 动作参数（deliverables / feedback / credits / reason）

        Raises:
            NotFound / GuardViolation / ValidationError / AlreadyAssigned /
            InsufficientCredits / TransitionFailed
        """
        planner = self._planners[action]
        target = ACTION_TARGETS[action]

        async def work() -> TransitionResult | tuple[Task, TaskEvent, int]:
            task = await self._require_task(task_id)
            if idempotency_key:
                replay = await self._replay_transition(
                    idempotency_key, task, target, actor
                )
                if replay is not None:
                    return replay
            plan = await planner(self, task, actor, params)
            saved, event, balance = await self._commit_plan(
                task, plan, actor, idempotency_key
            )
            return saved, event, balance

        try:
            outcome = await run_atomic(
                self._stores.unit_of_work,
                work,
                self._max_attempts,
                operation=action.value,
            )
        except aiosqlite.IntegrityError:
            if idempotency_key:
                task = await self._require_task(task_id)
                replay = await self._replay_transition(
                    idempotency_key, task, target, actor
                )
                if replay is not None:
                    return replay
            raise

        if isinstance(outcome, TransitionResult):
            return outcome

        saved, event, balance = outcome
        await log.ainfo(
            "task_transition_committed",
            task_id=task_id,
            action=action.value,
            from_status=event.from_status,
            to_status=event.to_status,
            actor_id=actor.id,
        )
        self._emit_transition(saved, event)
        return TransitionResult(task=saved, balance=balance, event_id=event.event_id)

    async def _replay_transition(
        self,
        idempotency_key: str,
        task: Task,
        target: TaskStatus,
        actor: Actor,
    ) -> TransitionResult | None:
        existing = await self._events.find_by_idempotency_key(idempotency_key)
        if existing is None:
            return None
        if (
            existing.task_id != task.task_id
            or existing.to_status != target
            or existing.actor_id != actor.id
        ):
            raise ValidationError(
                "Idempotency key already used for a different transition",
                details={"idempotency_key": idempotency_key},
            )
        balance = await self._ledger.balance_of(task.client_id)
        log.info(
            "task_transition_replayed",
            task_id=task.task_id,
            event_id=existing.event_id,
        )
        return TransitionResult(
            task=task, balance=balance, event_id=existing.event_id, replayed=True
        )

    async def _commit_plan(
        self,
        task: Task,
        plan: _Plan,
        actor: Actor,
        idempotency_key: str | None,
    ) -> tuple[Task, TaskEvent, int]:
        """在当前单元内写入账本、任务行与事件"""
        payload = plan.payload
        if plan.ledger is not None:
            amount, kind, description = plan.ledger
            balance = await self._ledger.append(
                task.client_id,
                amount,
                kind,
                task_id=task.task_id,
                description=description,
            )
            payload = payload.model_copy(update={"balance_after": balance})
        else:
            balance = await self._ledger.balance_of(task.client_id)

        saved = await self._tasks.save_task(plan.task, expected_version=task.version)
        event = TaskEvent(
            event_id=str(ULID()),
            task_id=task.task_id,
            task_seq=await self._events.get_next_task_seq(task.task_id),
            ts=saved.updated_at,
            type=plan.event_type,
            from_status=task.status,
            to_status=saved.status,
            actor_id=actor.id,
            actor_role=actor.role,
            payload=payload.model_dump(mode="json"),
            idempotency_key=idempotency_key,
        )
        await self._events.append_event(event)
        if plan.audit:
            await self._stores.audit_store.record(
                actor.id,
                plan.audit.pop("action"),
                "task",
                task.task_id,
                plan.audit,
            )
        return saved, event, balance

    # ============================================================
    # 具名操作（委托给 apply_transition）
    # ============================================================

    async def claim_task(
        self, task_id: str, actor: Actor, idempotency_key: str | None = None
    ) -> TransitionResult:
        return await self.apply_transition(
            task_id, TaskAction.CLAIM, actor, idempotency_key
        )

    async def start_task(
        self, task_id: str, actor: Actor, idempotency_key: str | None = None
    ) -> TransitionResult:
        return await self.apply_transition(
            task_id, TaskAction.START, actor, idempotency_key
        )

    async def submit_deliverable(
        self,
        task_id: str,
        actor: Actor,
        deliverables: list[str],
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self.apply_transition(
            task_id, TaskAction.SUBMIT, actor, idempotency_key, deliverables=deliverables
        )

    async def approve_task(
        self, task_id: str, actor: Actor, idempotency_key: str | None = None
    ) -> TransitionResult:
        return await self.apply_transition(
            task_id, TaskAction.APPROVE, actor, idempotency_key
        )

    async def request_revision(
        self,
        task_id: str,
        actor: Actor,
        feedback: str,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self.apply_transition(
            task_id,
            TaskAction.REQUEST_REVISION,
            actor,
            idempotency_key,
            feedback=feedback,
        )

    async def resume_task(
        self, task_id: str, actor: Actor, idempotency_key: str | None = None
    ) -> TransitionResult:
        return await self.apply_transition(
            task_id, TaskAction.RESUME, actor, idempotency_key
        )

    async def charge_extra_scope(
        self,
        task_id: str,
        actor: Actor,
        credits: int,
        reason: str,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self.apply_transition(
            task_id,
            TaskAction.CHARGE_EXTRA_SCOPE,
            actor,
            idempotency_key,
            credits=credits,
            reason=reason,
        )

    async def escalate_task(
        self,
        task_id: str,
        actor: Actor,
        reason: str,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self.apply_transition(
            task_id, TaskAction.ESCALATE, actor, idempotency_key, reason=reason
        )

    async def resolve_escalation(
        self,
        task_id: str,
        actor: Actor,
        reason: str = "",
        idempotency_key: str | None = None,
        outcome: EscalationOutcome = EscalationOutcome.APPROVE,
        feedback: str = "",
    ) -> TransitionResult:
        """管理员审核升级任务

        APPROVE: PENDING_ADMIN_REVIEW -> IN_REVIEW，交回委托方审核。
        REJECT: PENDING_ADMIN_REVIEW -> REVISION_REQUESTED，需要 feedback，
        与委托方要求修改一样占用一次修改次数。
        """
        action = (
            TaskAction.REJECT_ESCALATION
            if outcome == EscalationOutcome.REJECT
            else TaskAction.RESOLVE_ESCALATION
        )
        return await self.apply_transition(
            task_id,
            action,
            actor,
            idempotency_key,
            reason=reason,
            feedback=feedback,
        )

    async def cancel_task(
        self,
        task_id: str,
        actor: Actor,
        reason: str = "",
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        return await self.apply_transition(
            task_id, TaskAction.CANCEL, actor, idempotency_key, reason=reason
        )

    # ============================================================
    # Guard + 计划（每个动作一个 planner）
    # ============================================================

    async def _plan_claim(self, task: Task, actor: Actor, params: dict) -> _Plan:
        _require_role(actor, AccountRole.FREELANCER, TaskAction.CLAIM)
        if task.freelancer_id is not None or task.status in ASSIGNED_STATES:
            raise AlreadyAssigned(task.task_id)
        _require_transition(task, TaskStatus.ASSIGNED)
        profile = await self._stores.account_store.get_freelancer_profile(actor.id)
        if profile is None or not profile.can_claim:
            raise GuardViolation(
                "Freelancer must be approved and available to claim tasks",
                details={
                    "freelancer_id": actor.id,
                    "status": profile.status.value if profile else None,
                    "available": profile.available if profile else None,
                },
            )
        now = datetime.now(UTC)
        return _transition_plan(
            task,
            TaskAction.CLAIM,
            TaskStatus.ASSIGNED,
            now,
            freelancer_id=actor.id,
            assigned_at=now,
        )

    async def _plan_start(self, task: Task, actor: Actor, params: dict) -> _Plan:
        _require_assigned_freelancer(task, actor)
        _require_transition(task, TaskStatus.IN_PROGRESS, expected=TaskStatus.ASSIGNED)
        return _transition_plan(
            task, TaskAction.START, TaskStatus.IN_PROGRESS, datetime.now(UTC)
        )

    async def _plan_submit(self, task: Task, actor: Actor, params: dict) -> _Plan:
        _require_assigned_freelancer(task, actor)
        _require_transition(task, TaskStatus.IN_REVIEW, expected=TaskStatus.IN_PROGRESS)
        deliverables = [d.strip() for d in params.get("deliverables") or [] if d.strip()]
        if not deliverables:
            raise ValidationError("At least one deliverable reference is required")
        merged = task.deliverables + [d for d in deliverables if d not in task.deliverables]
        plan = _transition_plan(
            task,
            TaskAction.SUBMIT,
            TaskStatus.IN_REVIEW,
            datetime.now(UTC),
            deliverables=merged,
        )
        plan.payload.deliverables = deliverables
        return plan

    async def _plan_approve(self, task: Task, actor: Actor, params: dict) -> _Plan:
        _require_client(task, actor)
        _require_transition(task, TaskStatus.COMPLETED, expected=TaskStatus.IN_REVIEW)
        now = datetime.now(UTC)
        return _transition_plan(
            task, TaskAction.APPROVE, TaskStatus.COMPLETED, now, completed_at=now
        )

    async def _plan_request_revision(
        self, task: Task, actor: Actor, params: dict
    ) -> _Plan:
        _require_client(task, actor)
        _require_transition(
            task, TaskStatus.REVISION_REQUESTED, expected=TaskStatus.IN_REVIEW
        )
        feedback = _require_feedback(params)
        _require_revision_left(task)
        plan = _transition_plan(
            task,
            TaskAction.REQUEST_REVISION,
            TaskStatus.REVISION_REQUESTED,
            datetime.now(UTC),
            revisions_used=task.revisions_used + 1,
        )
        plan.payload.feedback = feedback
        return plan

    async def _plan_resume(self, task: Task, actor: Actor, params: dict) -> _Plan:
        _require_assigned_freelancer(task, actor)
        _require_transition(
            task, TaskStatus.IN_PROGRESS, expected=TaskStatus.REVISION_REQUESTED
        )
        return _transition_plan(
            task, TaskAction.RESUME, TaskStatus.IN_PROGRESS, datetime.now(UTC)
        )

    async def _plan_charge_extra_scope(
        self, task: Task, actor: Actor, params: dict
    ) -> _Plan:
        if not actor.is_admin:
            _require_client(task, actor)
        _require_transition(task, TaskStatus.IN_REVIEW, expected=TaskStatus.IN_REVIEW)
        credits = params.get("credits")
        reason = (params.get("reason") or "").strip()
        if not isinstance(credits, int) or isinstance(credits, bool) or credits <= 0:
            raise ValidationError(
                "Extra scope credits must be a positive integer",
                details={"credits": credits},
            )
        if not reason:
            raise ValidationError("Extra scope must be flagged with a reason")
        now = datetime.now(UTC)
        return _Plan(
            task=task.model_copy(
                update={
                    "credits_committed": task.credits_committed + credits,
                    "updated_at": now,
                }
            ),
            event_type=EventType.EXTRA_SCOPE_CHARGED,
            payload=ExtraScopeChargedPayload(
                credits=credits, reason=reason, flagged_by=actor.id, balance_after=0
            ),
            ledger=(-credits, LedgerKind.USAGE, f"Extra scope: {reason}"),
        )

    async def _plan_escalate(self, task: Task, actor: Actor, params: dict) -> _Plan:
        if actor.id not in (task.client_id, task.freelancer_id):
            raise GuardViolation(
                "Only the task's client or assigned freelancer can escalate",
                details={"actor_id": actor.id},
            )
        _require_transition(
            task, TaskStatus.PENDING_ADMIN_REVIEW, expected=TaskStatus.IN_REVIEW
        )
        reason = (params.get("reason") or "").strip()
        if not reason:
            raise ValidationError("Escalation reason is required")
        plan = _transition_plan(
            task,
            TaskAction.ESCALATE,
            TaskStatus.PENDING_ADMIN_REVIEW,
            datetime.now(UTC),
        )
        plan.payload.reason = reason
        return plan

    async def _plan_resolve_escalation(
        self, task: Task, actor: Actor, params: dict
    ) -> _Plan:
        if not actor.is_admin:
            raise GuardViolation("Only admins can resolve escalations")
        _require_transition(
            task, TaskStatus.IN_REVIEW, expected=TaskStatus.PENDING_ADMIN_REVIEW
        )
        plan = _transition_plan(
            task,
            TaskAction.RESOLVE_ESCALATION,
            TaskStatus.IN_REVIEW,
            datetime.now(UTC),
        )
        plan.payload.reason = (params.get("reason") or "").strip()
        return plan

    async def _plan_reject_escalation(
        self, task: Task, actor: Actor, params: dict
    ) -> _Plan:
        if not actor.is_admin:
            raise GuardViolation("Only admins can resolve escalations")
        _require_transition(
            task,
            TaskStatus.REVISION_REQUESTED,
            expected=TaskStatus.PENDING_ADMIN_REVIEW,
        )
        feedback = _require_feedback(params)
        _require_revision_left(task)
        plan = _transition_plan(
            task,
            TaskAction.REJECT_ESCALATION,
            TaskStatus.REVISION_REQUESTED,
            datetime.now(UTC),
            revisions_used=task.revisions_used + 1,
        )
        plan.payload.feedback = feedback
        plan.payload.reason = (params.get("reason") or "").strip()
        return plan

    async def _plan_cancel(self, task: Task, actor: Actor, params: dict) -> _Plan:
        if not actor.is_admin:
            _require_client(task, actor)
        _require_transition(task, TaskStatus.CANCELLED)
        refund = task.credits_committed
        plan = _transition_plan(
            task,
            TaskAction.CANCEL,
            TaskStatus.CANCELLED,
            datetime.now(UTC),
            freelancer_id=None,
            credits_committed=0,
        )
        plan.payload.reason = (params.get("reason") or "").strip()
        plan.payload.refunded_credits = refund
        if refund > 0:
            plan.ledger = (refund, LedgerKind.REFUND, f"Task cancelled: {task.title}")
        return plan

    _planners = {
        TaskAction.CLAIM: _plan_claim,
        TaskAction.START: _plan_start,
        TaskAction.SUBMIT: _plan_submit,
        TaskAction.APPROVE: _plan_approve,
        TaskAction.REQUEST_REVISION: _plan_request_revision,
        TaskAction.RESUME: _plan_resume,
        TaskAction.CHARGE_EXTRA_SCOPE: _plan_charge_extra_scope,
        TaskAction.ESCALATE: _plan_escalate,
        TaskAction.RESOLVE_ESCALATION: _plan_resolve_escalation,
        TaskAction.REJECT_ESCALATION: _plan_reject_escalation,
        TaskAction.CANCEL: _plan_cancel,
    }

    # ============================================================
    # 管理员操作
    # ============================================================

    async def admin_force_transition(
        self,
        task_id: str,
        to_status: TaskStatus,
        actor: Actor,
        reason: str,
        freelancer_id: str | None = None,
        idempotency_key: str | None = None,
    ) -> TransitionResult:
        """管理员强制流转

        跳过角色与状态机前置条件，但保持结构不变式：
        终态不可离开；需要设计师的状态必须有设计师；
        强制 CANCELLED 时通过账本退款，与任务写入同属一个单元。
        """
        _require_admin(actor)
        reason = reason.strip()
        if not reason:
            raise ValidationError("A reason is required for admin overrides")

        async def work() -> TransitionResult | tuple[Task, TaskEvent, int]:
            task = await self._require_task(task_id)
            if idempotency_key:
                replay = await self._replay_transition(
                    idempotency_key, task, to_status, actor
                )
                if replay is not None:
                    return replay
            plan = await self._plan_force(task, to_status, reason, freelancer_id)
            return await self._commit_plan(task, plan, actor, idempotency_key)

        try:
            outcome = await run_atomic(
                self._stores.unit_of_work,
                work,
                self._max_attempts,
                operation="admin_force_transition",
            )
        except aiosqlite.IntegrityError:
            if idempotency_key:
                task = await self._require_task(task_id)
                replay = await self._replay_transition(
                    idempotency_key, task, to_status, actor
                )
                if replay is not None:
                    return replay
            raise

        if isinstance(outcome, TransitionResult):
            return outcome

        saved, event, balance = outcome
        log.warning(
            "admin_force_transition",
            task_id=task_id,
            from_status=event.from_status,
            to_status=event.to_status,
            actor_id=actor.id,
            reason=reason,
        )
        self._emit_transition(saved, event)
        return TransitionResult(task=saved, balance=balance, event_id=event.event_id)

    async def _plan_force(
        self,
        task: Task,
        to_status: TaskStatus,
        reason: str,
        freelancer_id: str | None,
    ) -> _Plan:
        if task.status in TERMINAL_STATES:
            raise GuardViolation(
                f"Task is already in terminal state: {task.status}",
                details={"status": task.status.value},
            )
        previous = task.freelancer_id
        now = datetime.now(UTC)
        updates: dict[str, Any] = {"status": to_status, "updated_at": now}

        if to_status in ASSIGNED_STATES:
            new_freelancer = freelancer_id or previous
            if new_freelancer is None:
                raise ValidationError(
                    f"{to_status} requires an assigned freelancer",
                    details={"to_status": to_status.value},
                )
            if freelancer_id is not None:
                account = await self._stores.account_store.get_account(freelancer_id)
                if account is None or account.role != AccountRole.FREELANCER:
                    raise NotFound("Freelancer", freelancer_id)
            updates["freelancer_id"] = new_freelancer
            if new_freelancer != previous:
                updates["assigned_at"] = now
        else:
            updates["freelancer_id"] = None

        if to_status == task.status and updates["freelancer_id"] == previous:
            raise GuardViolation(
                f"Task is already {to_status}",
                details={"status": to_status.value},
            )

        refund = 0
        if to_status == TaskStatus.COMPLETED:
            updates["completed_at"] = now
        elif to_status == TaskStatus.CANCELLED:
            refund = task.credits_committed
            updates["credits_committed"] = 0

        payload = AdminOverridePayload(
            from_status=task.status,
            to_status=to_status,
            reason=reason,
            freelancer_id=updates["freelancer_id"],
            previous_freelancer_id=previous,
            refunded_credits=refund,
        )
        return _Plan(
            task=task.model_copy(update=updates),
            event_type=EventType.ADMIN_OVERRIDE,
            payload=payload,
            ledger=(refund, LedgerKind.REFUND, f"Admin cancelled: {task.title}")
            if refund > 0
            else None,
            audit={
                "action": "force_transition",
                "from_status": task.status.value,
                "to_status": to_status.value,
                "reason": reason,
                "freelancer_id": updates["freelancer_id"],
            },
        )

    async def admin_purge_tasks(self, task_ids: list[str], actor: Actor) -> list[str]:
        """批量清除任务

        未到终态的任务先在同一单元内取消并退款；事件、通知与投递记录级联删除，
        账本分录保留（task_id 仍指向已删除的任务）。

        Returns:
            实际删除的任务 ID 列表（不存在的 ID 被忽略）
        """
        _require_admin(actor)
        unique_ids = list(dict.fromkeys(task_ids))
        if not unique_ids:
            raise ValidationError("No task ids given")

        async def work() -> tuple[list[str], list[CreditChange]]:
            purged: list[str] = []
            refunds: list[CreditChange] = []
            for task_id in unique_ids:
                task = await self._tasks.get_task(task_id)
                if task is None:
                    continue
                refund = 0
                if task.status not in TERMINAL_STATES and task.credits_committed > 0:
                    refund = task.credits_committed
                    balance = await self._ledger.append(
                        task.client_id,
                        refund,
                        LedgerKind.REFUND,
                        task_id=task.task_id,
                        description=f"Task purged: {task.title}",
                    )
                    refunds.append(
                        CreditChange(
                            account_id=task.client_id,
                            kind=LedgerKind.REFUND,
                            amount=refund,
                            balance=balance,
                            source_key=f"purge:{task.task_id}",
                            description=f"Task purged: {task.title}",
                        )
                    )
                await self._stores.audit_store.record(
                    actor.id,
                    "purge_task",
                    "task",
                    task.task_id,
                    {"status": task.status.value, "refunded_credits": refund},
                )
                await self._tasks.delete_task(task.task_id)
                purged.append(task.task_id)
            return purged, refunds

        purged, refunds = await run_atomic(
            self._stores.unit_of_work,
            work,
            self._max_attempts,
            operation="admin_purge_tasks",
        )
        log.warning(
            "admin_tasks_purged",
            actor_id=actor.id,
            requested=len(unique_ids),
            purged=len(purged),
            refunds=len(refunds),
        )
        for change in refunds:
            self._emit_credits(change)
        return purged

    async def adjust_credits(
        self,
        account_id: str,
        amount: int,
        actor: Actor,
        reason: str,
    ) -> int:
        """管理员手动调整积分（MANUAL_ADJUST，允许余额为负）

        Returns:
            调整后的余额
        """
        _require_admin(actor)
        reason = reason.strip()
        if not reason:
            raise ValidationError("A reason is required for manual adjustments")
        if amount == 0:
            raise ValidationError("Adjustment amount must be non-zero")

        async def work() -> tuple[int, str]:
            balance = await self._ledger.append(
                account_id,
                amount,
                LedgerKind.MANUAL_ADJUST,
                description=reason,
            )
            audit_id = await self._stores.audit_store.record(
                actor.id,
                "adjust_credits",
                "account",
                account_id,
                {"amount": amount, "reason": reason, "balance_after": balance},
            )
            return balance, audit_id

        balance, audit_id = await run_atomic(
            self._stores.unit_of_work,
            work,
            self._max_attempts,
            operation="adjust_credits",
        )
        log.warning(
            "credits_manually_adjusted",
            account_id=account_id,
            amount=amount,
            balance=balance,
            actor_id=actor.id,
            audit_id=audit_id,
        )
        self._emit_credits(
            CreditChange(
                account_id=account_id,
                kind=LedgerKind.MANUAL_ADJUST,
                amount=amount,
                balance=balance,
                source_key=f"adjust:{audit_id}",
                description=reason,
            )
        )
        return balance

    async def get_settings(self, actor: Actor) -> PlatformSettings:
        _require_admin(actor)
        return await self._settings.get()

    async def update_settings(self, key: str, value: Any, actor: Actor) -> PlatformSettings:
        """更新平台设置并使缓存失效"""
        _require_admin(actor)
        if key not in SETTING_KEYS:
            raise ValidationError(
                f"Unknown setting: {key}",
                details={"key": key, "allowed": sorted(SETTING_KEYS)},
            )
        try:
            validated = PlatformSettings.model_validate({key: value})
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid value for {key}",
                details={"errors": e.errors(include_url=False)},
            ) from e
        stored = getattr(validated, key)

        async def work() -> None:
            await self._stores.settings_store.put(key, stored)
            await self._stores.audit_store.record(
                actor.id, "update_setting", "setting", key, {"value": stored}
            )

        await run_atomic(
            self._stores.unit_of_work,
            work,
            self._max_attempts,
            operation="update_settings",
        )
        self._settings.invalidate()
        log.info("platform_setting_updated", key=key, value=stored, actor_id=actor.id)
        return await self._settings.get()

    async def set_freelancer_status(
        self,
        freelancer_id: str,
        status: FreelancerStatus,
        actor: Actor,
    ) -> None:
        """审核设计师（通过/拒绝/暂停）"""
        _require_admin(actor)

        async def work() -> None:
            profile = await self._stores.account_store.get_freelancer_profile(
                freelancer_id
            )
            if profile is None:
                raise NotFound("Freelancer", freelancer_id)
            await self._stores.account_store.set_freelancer_status(freelancer_id, status)
            await self._stores.audit_store.record(
                actor.id,
                "set_freelancer_status",
                "account",
                freelancer_id,
                {"from": profile.status.value, "to": status.value},
            )

        await run_atomic(
            self._stores.unit_of_work,
            work,
            self._max_attempts,
            operation="set_freelancer_status",
        )
        log.info(
            "freelancer_status_updated",
            freelancer_id=freelancer_id,
            status=status.value,
            actor_id=actor.id,
        )

    # ============================================================
    # 账户与充值
    # ============================================================

    async def upsert_account(
        self,
        account_id: str,
        role: AccountRole,
        email: str = "",
        name: str = "",
        email_enabled: bool = True,
    ) -> Account:
        """同步认证协作方的账户资料（幂等）"""

        async def work() -> None:
            await self._stores.account_store.upsert_account(
                account_id, role, email, name, email_enabled
            )

        await run_atomic(
            self._stores.unit_of_work,
            work,
            self._max_attempts,
            operation="upsert_account",
        )
        account = await self._stores.account_store.get_account(account_id)
        if account is None:
            raise NotFound("Account", account_id)
        return account

    async def set_availability(self, actor: Actor, available: bool) -> None:
        """设计师切换可接单状态"""
        _require_role(actor, AccountRole.FREELANCER, "set_availability")

        async def work() -> None:
            profile = await self._stores.account_store.get_freelancer_profile(actor.id)
            if profile is None:
                raise NotFound("Freelancer", actor.id)
            await self._stores.account_store.set_freelancer_availability(
                actor.id, available
            )

        await run_atomic(
            self._stores.unit_of_work,
            work,
            self._max_attempts,
            operation="set_availability",
        )

    async def record_purchase(
        self,
        account_id: str,
        credits: int,
        provider_txn_id: str,
    ) -> PurchaseResult:
        """记录支付确认（PURCHASE），支付方交易号作为幂等键

        同一交易号的重放返回首次写入的分录，不会重复入账。
        """
        provider_txn_id = provider_txn_id.strip()
        if not provider_txn_id:
            raise ValidationError("provider_txn_id is required")
        if credits <= 0:
            raise ValidationError(
                "Purchased credits must be positive", details={"credits": credits}
            )

        async def work() -> tuple[LedgerEntry, bool]:
            existing = await self._stores.ledger_store.find_by_external_ref(
                LedgerKind.PURCHASE, provider_txn_id
            )
            if existing is not None:
                return existing, True
            await self._ledger.append(
                account_id,
                credits,
                LedgerKind.PURCHASE,
                description=f"Credit purchase ({credits} credits)",
                external_ref=provider_txn_id,
            )
            entry = await self._stores.ledger_store.find_by_external_ref(
                LedgerKind.PURCHASE, provider_txn_id
            )
            if entry is None:
                raise RuntimeError(f"purchase {provider_txn_id} vanished after insert")
            return entry, False

        try:
            entry, replayed = await run_atomic(
                self._stores.unit_of_work,
                work,
                self._max_attempts,
                operation="record_purchase",
            )
        except aiosqlite.IntegrityError:
            existing = await self._stores.ledger_store.find_by_external_ref(
                LedgerKind.PURCHASE, provider_txn_id
            )
            if existing is None:
                raise
            entry, replayed = existing, True

        if entry.account_id != account_id or entry.amount != credits:
            raise ValidationError(
                "Provider transaction id already recorded with different details",
                details={"provider_txn_id": provider_txn_id},
            )

        balance = await self._ledger.balance_of(account_id)
        if replayed:
            log.info(
                "purchase_replayed",
                account_id=account_id,
                provider_txn_id=provider_txn_id,
            )
        else:
            await log.ainfo(
                "purchase_recorded",
                account_id=account_id,
                credits=credits,
                balance=balance,
                provider_txn_id=provider_txn_id,
            )
            self._emit_credits(
                CreditChange(
                    account_id=account_id,
                    kind=LedgerKind.PURCHASE,
                    amount=credits,
                    balance=entry.balance_after,
                    source_key=f"purchase:{provider_txn_id}",
                    description=entry.description,
                )
            )
        return PurchaseResult(entry=entry, balance=balance, replayed=replayed)

    # ============================================================
    # 读取
    # ============================================================

    async def get_task(self, task_id: str) -> Task:
        task = await self._reads.task_store.get_task(task_id)
        if task is None:
            raise NotFound("Task", task_id)
        return task

    async def list_tasks(
        self,
        status: str | None = None,
        client_id: str | None = None,
        freelancer_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Task]:
        return await self._reads.task_store.list_tasks(
            status, client_id, freelancer_id, limit, offset
        )

    async def get_task_events(self, task_id: str) -> list[TaskEvent]:
        await self.get_task(task_id)
        return await self._reads.event_store.get_events_for_task(task_id)

    async def balance_of(self, account_id: str) -> int:
        return await self._reads.ledger_store.balance_of(account_id)

    async def list_ledger(self, account_id: str, limit: int = 50) -> list[LedgerEntry]:
        """账户流水（最新在前）"""
        await self._reads.ledger_store.balance_of(account_id)
        return await self._reads.ledger_store.history(account_id, limit)

    # ============================================================
    # 内部工具
    # ============================================================

    async def _require_task(self, task_id: str) -> Task:
        task = await self._tasks.get_task(task_id)
        if task is None:
            raise NotFound("Task", task_id)
        return task

    @staticmethod
    def _parse_requirements(requirements: dict[str, Any] | BaseModel) -> Any:
        raw = (
            requirements.model_dump()
            if isinstance(requirements, BaseModel)
            else requirements
        )
        try:
            return requirements_adapter.validate_python(raw)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid task requirements",
                details={"errors": e.errors(include_url=False)},
            ) from e

    def _emit_transition(self, task: Task, event: TaskEvent) -> None:
        if self._effects is not None:
            self._effects.on_transition_committed(task, event)

    def _emit_credits(self, change: CreditChange) -> None:
        if self._effects is not None:
            self._effects.on_credits_committed(change)


def _transition_plan(
    task: Task,
    action: TaskAction,
    to_status: TaskStatus,
    now: datetime,
    **updates: Any,
) -> _Plan:
    """构建普通状态流转计划（STATE_TRANSITION 事件）"""
    updated = task.model_copy(update={"status": to_status, "updated_at": now, **updates})
    return _Plan(
        task=updated,
        event_type=EventType.STATE_TRANSITION,
        payload=StateTransitionPayload(
            action=action,
            from_status=task.status,
            to_status=to_status,
            freelancer_id=updated.freelancer_id,
            previous_freelancer_id=task.freelancer_id,
        ),
    )


def _require_transition(
    task: Task,
    to_status: TaskStatus,
    expected: TaskStatus | None = None,
) -> None:
    if task.status in TERMINAL_STATES:
        raise GuardViolation(
            f"Task is already in terminal state: {task.status}",
            details={"status": task.status.value},
        )
    if (expected is not None and task.status != expected) or not validate_transition(
        task.status, to_status
    ):
        raise GuardViolation(
            f"Cannot transition from {task.status} to {to_status}",
            details={"status": task.status.value, "to_status": to_status.value},
        )


def _require_role(actor: Actor, role: AccountRole, action: str) -> None:
    if actor.role != role:
        raise GuardViolation(
            f"{action} requires role {role}",
            details={"actor_role": actor.role.value},
        )


def _require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise GuardViolation("Admin role required", details={"actor_id": actor.id})


def _require_client(task: Task, actor: Actor) -> None:
    if actor.id != task.client_id:
        raise GuardViolation(
            "Only the task's client can perform this action",
            details={"actor_id": actor.id},
        )


def _require_feedback(params: dict) -> str:
    feedback = (params.get("feedback") or "").strip()
    if not feedback:
        raise ValidationError("Revision feedback is required")
    return feedback


def _require_revision_left(task: Task) -> None:
    if task.revisions_used >= task.max_revisions:
        raise GuardViolation(
            f"Revision limit reached ({task.revisions_used}/{task.max_revisions})",
            details={
                "revisions_used": task.revisions_used,
                "max_revisions": task.max_revisions,
            },
        )


def _require_assigned_freelancer(task: Task, actor: Actor) -> None:
    if task.freelancer_id is None or actor.id != task.freelancer_id:
        raise GuardViolation(
            "Only the assigned freelancer can perform this action",
            details={"actor_id": actor.id},
        )
