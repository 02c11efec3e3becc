"""Atelier Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .account import Account, Actor, FreelancerProfile
from .enums import (
    ASSIGNED_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    AccountRole,
    Channel,
    DeliveryStatus,
    EscalationOutcome,
    EventType,
    FreelancerStatus,
    LedgerKind,
    NotificationKind,
    TaskAction,
    TaskStatus,
    validate_transition,
)
from .event import TaskEvent
from .ledger import LedgerEntry
from .notification import (
    Delivery,
    Notification,
    NotificationPayload,
    notification_payload_adapter,
)
from .payloads import (
    AdminOverridePayload,
    ExtraScopeChargedPayload,
    StateTransitionPayload,
    TaskCreatedPayload,
)
from .requirements import TaskRequirements, requirements_adapter
from .task import Task, TaskCategory

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskAction",
    "EscalationOutcome",
    "EventType",
    "AccountRole",
    "FreelancerStatus",
    "LedgerKind",
    "NotificationKind",
    "Channel",
    "DeliveryStatus",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "ASSIGNED_STATES",
    "validate_transition",
    # Task
    "Task",
    "TaskCategory",
    "TaskRequirements",
    "requirements_adapter",
    # Account
    "Account",
    "Actor",
    "FreelancerProfile",
    # Ledger
    "LedgerEntry",
    # Event
    "TaskEvent",
    # Notification
    "Notification",
    "NotificationPayload",
    "notification_payload_adapter",
    "Delivery",
    # Payloads
    "TaskCreatedPayload",
    "StateTransitionPayload",
    "ExtraScopeChargedPayload",
    "AdminOverridePayload",
]
