"""EffectDispatcher -- 已提交流转的副作用派发

LifecycleEngine 提交成功后调用 on_transition_committed / on_credits_committed，
两者只把任务放入进程内队列，立即返回，不阻塞调用方。

单个 worker 按提交顺序消费队列：
1. 计算 (收件人, 通知类型) 列表
2. 先写站内通知（durable），再尝试外部投递
3. 实时推送在 worker 内同步完成，保证同一收件人按创建顺序收到
4. 邮件 / 团队频道作为独立后台任务发送，失败只记录，不影响其他渠道和已提交的流转

幂等：
- notifications (source_key, recipient_id, kind) 唯一，重复派发命中已有记录
- deliveries 以 dedupe_key 去重；邮件每个提交最多尝试一次，
  团队频道与实时推送在恢复时重试（已 SENT 的除外）
- task_events.dispatched_at 为 outbox 标记，启动时 recover() 重新派发未完成的事件
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from atelier.channels import EMAIL_KINDS, DeliveryChannel, DeliveryResult, render
from atelier.core.config import FEEDBACK_EXCERPT_LENGTH
from atelier.core.lifecycle import CreditChange
from atelier.core.models import (
    Channel,
    DeliveryStatus,
    EventType,
    LedgerKind,
    Notification,
    NotificationKind,
    Task,
    TaskAction,
    TaskEvent,
    TaskStatus,
)
from atelier.core.models.notification import (
    CreditsAddedNotice,
    EscalationResolvedNotice,
    ExtraScopeChargedNotice,
    LowCreditsNotice,
    ReadyForReviewNotice,
    RevisionRequestedNotice,
    TaskApprovedNotice,
    TaskAssignedNotice,
    TaskCancelledNotice,
    TaskCreatedNotice,
    TaskEscalatedNotice,
    TaskReassignedNotice,
    TaskStartedNotice,
)
from atelier.core.settings_cache import SettingsCache
from atelier.core.store import StoreGroup
from ulid import ULID

from .realtime_hub import RealtimeHub

log = structlog.get_logger()

# 团队频道（逻辑名，写入消息上下文）
TEAM_TASKS = "team:tasks"
TEAM_ESCALATIONS = "team:escalations"
TEAM_PURCHASES = "team:purchases"


@dataclass
class _Notice:
    """一个站内收件人及其通知 payload"""

    recipient_id: str
    payload: object


@dataclass
class _Effects:
    """一次提交产生的全部副作用"""

    source_key: str
    dedupe_prefix: str
    task_id: str | None
    notices: list[_Notice] = field(default_factory=list)
    team: list[tuple[str, object]] = field(default_factory=list)


class EffectDispatcher:
    """副作用派发器"""

    def __init__(
        self,
        store_group: StoreGroup,
        hub: RealtimeHub,
        channels: dict[Channel, DeliveryChannel],
        settings: SettingsCache,
        app_url: str,
    ) -> None:
        self._stores = store_group
        self._hub = hub
        self._channels = channels
        self._settings = settings
        self._app_url = app_url
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._external: set[asyncio.Task] = set()

    # ============================================================
    # EffectSink（由 LifecycleEngine 在提交后调用）
    # ============================================================

    def on_transition_committed(self, task: Task, event: TaskEvent) -> None:
        self._queue.put_nowait(("transition", task, event))

    def on_credits_committed(self, change: CreditChange) -> None:
        self._queue.put_nowait(("credits", change))

    # ============================================================
    # 生命周期
    # ============================================================

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="effect-dispatcher")

    async def stop(self) -> None:
        """停止 worker（未处理的事件保留在 outbox，下次启动时恢复）"""
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if self._external:
            await asyncio.gather(*self._external, return_exceptions=True)

    async def drain(self) -> None:
        """等待队列与后台外发全部完成"""
        await self._queue.join()
        while self._external:
            await asyncio.gather(*list(self._external), return_exceptions=True)

    async def recover(self, limit: int = 500) -> int:
        """重新派发 outbox 中尚未完成的事件

        Returns:
            重新入队的事件数
        """
        events = await self._stores.reads.event_store.list_undispatched(limit)
        for event in events:
            task = await self._stores.reads.task_store.get_task(event.task_id)
            if task is None:
                continue
            self._queue.put_nowait(("transition", task, event))
        if events:
            await log.ainfo("effect_outbox_recovered", event_count=len(events))
        return len(events)

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            except Exception as e:
                # 事件保持未派发状态，下次 recover() 重试
                log.error(
                    "effect_dispatch_failed",
                    job=job[0],
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._queue.task_done()

    async def _process(self, job: tuple) -> None:
        if job[0] == "transition":
            _, task, event = job
            if await self._stores.reads.task_store.get_task(task.task_id) is None:
                # 已被清除，事件随任务级联删除
                log.info("effect_skipped_task_purged", task_id=task.task_id)
                return
            effects = await self._effects_for_event(task, event)
            await self._deliver(effects)
            async with self._stores.unit_of_work():
                await self._stores.event_store.mark_dispatched(
                    event.event_id, datetime.now(UTC)
                )
        else:
            _, change = job
            effects = await self._effects_for_credits(change)
            await self._deliver(effects)

    # ============================================================
    # 收件人与通知内容
    # ============================================================

    async def _effects_for_event(self, task: Task, event: TaskEvent) -> _Effects:
        effects = _Effects(
            source_key=event.event_id,
            dedupe_prefix=f"{task.task_id}:{event.to_status}:{event.task_seq}",
            task_id=task.task_id,
        )
        payload = event.payload
        title = task.title
        tid = task.task_id

        if event.type == EventType.TASK_CREATED:
            effects.team.append(
                (
                    TEAM_TASKS,
                    TaskCreatedNotice(
                        title="New task submitted",
                        message=f"{title} ({payload['category']}, {payload['credits_charged']} credits)",
                        task_id=tid,
                        task_title=title,
                        category=payload["category"],
                        credits=payload["credits_charged"],
                    ),
                )
            )
            await self._maybe_low_credits(effects, task.client_id, payload.get("balance_after"))
            return effects

        if event.type == EventType.EXTRA_SCOPE_CHARGED:
            notice = ExtraScopeChargedNotice(
                title="Extra scope charged",
                message=f"{payload['credits']} extra credits charged for {title}: {payload['reason']}",
                task_id=tid,
                task_title=title,
                credits=payload["credits"],
            )
            effects.notices.append(_Notice(task.client_id, notice))
            if task.freelancer_id:
                effects.notices.append(_Notice(task.freelancer_id, notice))
            await self._maybe_low_credits(effects, task.client_id, payload.get("balance_after"))
            return effects

        if event.type == EventType.ADMIN_OVERRIDE:
            self._admin_override_notices(effects, task, event)
            return effects

        action = TaskAction(payload["action"])
        freelancer_id = payload.get("freelancer_id")
        previous_freelancer_id = payload.get("previous_freelancer_id")

        if action == TaskAction.CLAIM:
            effects.notices.append(
                _Notice(
                    task.client_id,
                    TaskAssignedNotice(
                        title="Designer assigned",
                        message=f"A designer has been assigned to {title}",
                        task_id=tid,
                        task_title=title,
                        freelancer_id=freelancer_id or "",
                    ),
                )
            )
        elif action in (TaskAction.START, TaskAction.RESUME):
            verb = "started" if action == TaskAction.START else "resumed"
            effects.notices.append(
                _Notice(
                    task.client_id,
                    TaskStartedNotice(
                        title=f"Work {verb}",
                        message=f"Your designer {verb} working on {title}",
                        task_id=tid,
                        task_title=title,
                    ),
                )
            )
        elif action == TaskAction.SUBMIT:
            effects.notices.append(
                _Notice(
                    task.client_id,
                    ReadyForReviewNotice(
                        title="Ready for review",
                        message=f"New deliverables were submitted for {title}",
                        task_id=tid,
                        task_title=title,
                        deliverable_count=len(payload.get("deliverables", [])),
                    ),
                )
            )
        elif action == TaskAction.APPROVE:
            if freelancer_id:
                effects.notices.append(
                    _Notice(
                        freelancer_id,
                        TaskApprovedNotice(
                            title="Task approved",
                            message=f"The client approved {title}",
                            task_id=tid,
                            task_title=title,
                        ),
                    )
                )
            effects.team.append(
                (
                    TEAM_TASKS,
                    TaskApprovedNotice(
                        title="Task completed",
                        message=f"{title} was approved by the client",
                        task_id=tid,
                        task_title=title,
                    ),
                )
            )
        elif action == TaskAction.REQUEST_REVISION:
            if freelancer_id:
                effects.notices.append(
                    _Notice(
                        freelancer_id,
                        self._revision_notice(task, payload.get("feedback", "")),
                    )
                )
        elif action == TaskAction.ESCALATE:
            reason = payload.get("reason", "")
            notice = TaskEscalatedNotice(
                title="Task escalated",
                message=f"{title} was escalated for admin review",
                task_id=tid,
                task_title=title,
                reason=reason,
            )
            for recipient in (task.client_id, freelancer_id):
                if recipient and recipient != event.actor_id:
                    effects.notices.append(_Notice(recipient, notice))
            effects.team.append((TEAM_ESCALATIONS, notice))
        elif action == TaskAction.RESOLVE_ESCALATION:
            notice = EscalationResolvedNotice(
                title="Escalation resolved",
                message=f"An admin resolved the escalation on {title}",
                task_id=tid,
                task_title=title,
            )
            for recipient in (task.client_id, freelancer_id):
                if recipient:
                    effects.notices.append(_Notice(recipient, notice))
        elif action == TaskAction.REJECT_ESCALATION:
            if freelancer_id:
                effects.notices.append(
                    _Notice(
                        freelancer_id,
                        self._revision_notice(
                            task, payload.get("feedback", ""), requested_by="An admin"
                        ),
                    )
                )
        elif action == TaskAction.CANCEL:
            self._cancel_notices(
                effects, task, previous_freelancer_id, payload.get("refunded_credits", 0)
            )
        return effects

    def _admin_override_notices(
        self, effects: _Effects, task: Task, event: TaskEvent
    ) -> None:
        payload = event.payload
        title = task.title
        tid = task.task_id
        to_status = event.to_status
        freelancer_id = payload.get("freelancer_id")
        previous = payload.get("previous_freelancer_id")

        if previous and previous != freelancer_id and to_status != TaskStatus.CANCELLED:
            effects.notices.append(
                _Notice(
                    previous,
                    TaskReassignedNotice(
                        title="Task reassigned",
                        message=f"{title} has been reassigned by an admin",
                        task_id=tid,
                        task_title=title,
                    ),
                )
            )

        if to_status == TaskStatus.CANCELLED:
            self._cancel_notices(effects, task, previous, payload.get("refunded_credits", 0))
        elif to_status == TaskStatus.COMPLETED:
            for recipient in (task.client_id, freelancer_id):
                if recipient:
                    effects.notices.append(
                        _Notice(
                            recipient,
                            TaskApprovedNotice(
                                title="Task completed",
                                message=f"{title} was marked completed by an admin",
                                task_id=tid,
                                task_title=title,
                            ),
                        )
                    )
        elif to_status == TaskStatus.ASSIGNED and freelancer_id and freelancer_id != previous:
            assigned = TaskAssignedNotice(
                title="Task assigned",
                message=f"{title} has been assigned by an admin",
                task_id=tid,
                task_title=title,
                freelancer_id=freelancer_id,
            )
            effects.notices.append(_Notice(freelancer_id, assigned))
            effects.notices.append(_Notice(task.client_id, assigned))
        elif to_status == TaskStatus.REVISION_REQUESTED and freelancer_id:
            effects.notices.append(
                _Notice(freelancer_id, self._revision_notice(task, payload.get("reason", "")))
            )
        elif to_status == TaskStatus.PENDING_ADMIN_REVIEW:
            notice = TaskEscalatedNotice(
                title="Task under admin review",
                message=f"{title} was moved to admin review",
                task_id=tid,
                task_title=title,
                reason=payload.get("reason", ""),
            )
            for recipient in (task.client_id, freelancer_id):
                if recipient:
                    effects.notices.append(_Notice(recipient, notice))
        elif to_status == TaskStatus.IN_REVIEW:
            effects.notices.append(
                _Notice(
                    task.client_id,
                    ReadyForReviewNotice(
                        title="Ready for review",
                        message=f"{title} was moved to review by an admin",
                        task_id=tid,
                        task_title=title,
                    ),
                )
            )
        elif to_status in (TaskStatus.IN_PROGRESS, TaskStatus.ASSIGNED):
            effects.notices.append(
                _Notice(
                    task.client_id,
                    TaskStartedNotice(
                        title="Task updated",
                        message=f"{title} was moved to {to_status} by an admin",
                        task_id=tid,
                        task_title=title,
                    ),
                )
            )

    def _cancel_notices(
        self,
        effects: _Effects,
        task: Task,
        previous_freelancer_id: str | None,
        refunded: int,
    ) -> None:
        effects.notices.append(
            _Notice(
                task.client_id,
                TaskCancelledNotice(
                    title="Task cancelled",
                    message=f"{task.title} was cancelled",
                    task_id=task.task_id,
                    task_title=task.title,
                    refunded_credits=refunded,
                ),
            )
        )
        if previous_freelancer_id:
            effects.notices.append(
                _Notice(
                    previous_freelancer_id,
                    TaskCancelledNotice(
                        title="Task cancelled",
                        message=f"{task.title} was cancelled",
                        task_id=task.task_id,
                        task_title=task.title,
                        refunded_credits=0,
                    ),
                )
            )

    @staticmethod
    def _revision_notice(
        task: Task, feedback: str, requested_by: str = "The client"
    ) -> RevisionRequestedNotice:
        excerpt = feedback[:FEEDBACK_EXCERPT_LENGTH]
        if len(feedback) > FEEDBACK_EXCERPT_LENGTH:
            excerpt = excerpt.rstrip() + "..."
        return RevisionRequestedNotice(
            title="Revision requested",
            message=f"{requested_by} requested a revision on {task.title}",
            task_id=task.task_id,
            task_title=task.title,
            feedback_excerpt=excerpt,
            revisions_used=task.revisions_used,
            max_revisions=task.max_revisions,
        )

    async def _maybe_low_credits(
        self,
        effects: _Effects,
        account_id: str,
        balance: int | None,
    ) -> None:
        if balance is None:
            return
        threshold = (await self._settings.get()).low_balance_threshold
        if balance < threshold:
            effects.notices.append(
                _Notice(
                    account_id,
                    LowCreditsNotice(
                        title="Low credit balance",
                        message=f"Your balance is {balance} credits",
                        task_id=effects.task_id,
                        balance=balance,
                        threshold=threshold,
                    ),
                )
            )

    async def _effects_for_credits(self, change: CreditChange) -> _Effects:
        effects = _Effects(
            source_key=change.source_key,
            dedupe_prefix=change.source_key,
            task_id=None,
        )
        if change.amount > 0:
            effects.notices.append(
                _Notice(
                    change.account_id,
                    CreditsAddedNotice(
                        title="Credits added",
                        message=f"{change.amount} credits were added to your account",
                        credits=change.amount,
                        balance=change.balance,
                    ),
                )
            )
        else:
            await self._maybe_low_credits(effects, change.account_id, change.balance)
        if change.kind == LedgerKind.PURCHASE:
            effects.team.append(
                (
                    TEAM_PURCHASES,
                    CreditsAddedNotice(
                        title="Credit purchase",
                        message=f"{change.account_id} purchased {change.amount} credits",
                        credits=change.amount,
                        balance=change.balance,
                    ),
                )
            )
        return effects

    # ============================================================
    # 投递
    # ============================================================

    async def _deliver(self, effects: _Effects) -> None:
        for notice in effects.notices:
            await self._deliver_notice(effects, notice)
        for team_channel, payload in effects.team:
            await self._deliver_team(effects, team_channel, payload)

    async def _deliver_notice(self, effects: _Effects, notice: _Notice) -> None:
        account = await self._stores.reads.account_store.get_account(notice.recipient_id)
        if account is None:
            log.warning(
                "notification_recipient_missing",
                recipient_id=notice.recipient_id,
                source_key=effects.source_key,
            )
            return

        kind = NotificationKind(notice.payload.kind)
        candidate = Notification(
            notification_id=str(ULID()),
            recipient_id=notice.recipient_id,
            kind=kind,
            payload=notice.payload,
            source_key=effects.source_key,
            task_id=effects.task_id,
            created_at=datetime.now(UTC),
        )
        realtime_key = f"{effects.dedupe_prefix}:{notice.recipient_id}:{kind}:realtime"
        email_key = f"{effects.dedupe_prefix}:{notice.recipient_id}:{kind}:email"
        async with self._stores.unit_of_work():
            notification, created = await self._stores.notification_store.create_notification(
                candidate
            )
            realtime, _ = await self._stores.notification_store.claim_delivery(
                realtime_key,
                notice.recipient_id,
                Channel.REALTIME,
                notification_id=notification.notification_id,
                task_id=effects.task_id,
            )
            email_claimed = False
            if kind in EMAIL_KINDS:
                _, email_claimed = await self._stores.notification_store.claim_delivery(
                    email_key,
                    notice.recipient_id,
                    Channel.EMAIL,
                    notification_id=notification.notification_id,
                    task_id=effects.task_id,
                )
        if created:
            log.info(
                "notification_created",
                notification_id=notification.notification_id,
                recipient_id=notice.recipient_id,
                kind=kind.value,
            )

        # 实时推送：同步完成，保持收件人内的创建顺序
        if realtime.status != DeliveryStatus.SENT:
            pushed = await self._hub.broadcast(notice.recipient_id, notification)
            async with self._stores.unit_of_work():
                if pushed:
                    await self._stores.notification_store.record_attempt(
                        realtime_key, DeliveryStatus.SENT
                    )
                else:
                    await self._stores.notification_store.set_delivery_status(
                        realtime_key, DeliveryStatus.SKIPPED
                    )

        # 邮件：每个提交最多尝试一次，已登记过的不再发送
        if email_claimed:
            if not account.email or not account.email_enabled:
                async with self._stores.unit_of_work():
                    await self._stores.notification_store.set_delivery_status(
                        email_key, DeliveryStatus.SKIPPED
                    )
            else:
                self._spawn_external(
                    Channel.EMAIL, email_key, account.email, notification.payload
                )

    async def _deliver_team(
        self,
        effects: _Effects,
        team_channel: str,
        payload: object,
    ) -> None:
        key = f"{effects.dedupe_prefix}:{team_channel}:{Channel.TEAM_CHAT}"
        async with self._stores.unit_of_work():
            delivery, _ = await self._stores.notification_store.claim_delivery(
                key,
                team_channel,
                Channel.TEAM_CHAT,
                task_id=effects.task_id,
            )
        if delivery.status == DeliveryStatus.SENT:
            return
        self._spawn_external(Channel.TEAM_CHAT, key, team_channel, payload)

    def _spawn_external(
        self,
        channel: Channel,
        dedupe_key: str,
        recipient: str,
        payload: object,
    ) -> None:
        adapter = self._channels.get(channel)
        if adapter is None:
            log.warning("channel_not_registered", channel=channel.value)
            return
        task = asyncio.create_task(
            self._send_external(adapter, channel, dedupe_key, recipient, payload)
        )
        self._external.add(task)
        task.add_done_callback(self._external.discard)

    async def _send_external(
        self,
        adapter: DeliveryChannel,
        channel: Channel,
        dedupe_key: str,
        recipient: str,
        payload: object,
    ) -> None:
        try:
            message = render(payload, self._app_url)
            result = await adapter.send(recipient, message)
        except Exception as e:
            # 不符合 send() 约定的渠道：按失败记录，投递行不停留在 PENDING
            result = DeliveryResult.failed(channel.value, f"{type(e).__name__}: {e}")
        status = DeliveryStatus.SENT if result.success else DeliveryStatus.FAILED
        error = result.error.reason if result.error else ""
        async with self._stores.unit_of_work():
            await self._stores.notification_store.record_attempt(dedupe_key, status, error)
        if not result.success:
            log.warning(
                "external_delivery_failed",
                channel=channel.value,
                dedupe_key=dedupe_key,
                error=error,
            )
