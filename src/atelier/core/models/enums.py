"""枚举定义

包含 TaskStatus 状态机、TaskAction 流转动作、EscalationOutcome、LedgerKind、AccountRole、
NotificationKind、Channel 等枚举，以及 VALID_TRANSITIONS 合法流转映射、
TERMINAL_STATES 终态集合和 ASSIGNED_STATES（必须有设计师的状态集合）。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    PENDING = "PENDING"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    PENDING_ADMIN_REVIEW = "PENDING_ADMIN_REVIEW"

    # 终态
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# 合法状态流转（任意非终态 -> CANCELLED 也包含在内）
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.ASSIGNED, TaskStatus.CANCELLED},
    TaskStatus.ASSIGNED: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {TaskStatus.IN_REVIEW, TaskStatus.CANCELLED},
    TaskStatus.IN_REVIEW: {
        TaskStatus.COMPLETED,
        TaskStatus.REVISION_REQUESTED,
        TaskStatus.IN_REVIEW,  # 额外范围扣费，状态不变
        TaskStatus.PENDING_ADMIN_REVIEW,
        TaskStatus.CANCELLED,
    },
    TaskStatus.REVISION_REQUESTED: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED},
    TaskStatus.PENDING_ADMIN_REVIEW: {
        TaskStatus.IN_REVIEW,
        TaskStatus.REVISION_REQUESTED,  # 管理员驳回交付
        TaskStatus.CANCELLED,
    },
    # 终态不可再流转
    TaskStatus.COMPLETED: set(),
    TaskStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.COMPLETED,
    TaskStatus.CANCELLED,
}

# freelancer_id 非空当且仅当任务处于以下状态
ASSIGNED_STATES: set[TaskStatus] = {
    TaskStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.IN_REVIEW,
    TaskStatus.REVISION_REQUESTED,
    TaskStatus.PENDING_ADMIN_REVIEW,
    TaskStatus.COMPLETED,
}


class TaskAction(StrEnum):
    """流转动作（调用方请求的事件）"""

    CLAIM = "claim"
    START = "start"
    SUBMIT = "submit"
    APPROVE = "approve"
    REQUEST_REVISION = "request_revision"
    RESUME = "resume"
    CHARGE_EXTRA_SCOPE = "charge_extra_scope"
    ESCALATE = "escalate"
    RESOLVE_ESCALATION = "resolve_escalation"
    REJECT_ESCALATION = "reject_escalation"
    CANCEL = "cancel"


class EscalationOutcome(StrEnum):
    """管理员审核升级任务的结论"""

    APPROVE = "approve"  # 交付有效，退回委托方审核
    REJECT = "reject"  # 交付无效，要求设计师修改


class EventType(StrEnum):
    """task_events 表中的事件类型"""

    TASK_CREATED = "TASK_CREATED"
    STATE_TRANSITION = "STATE_TRANSITION"
    EXTRA_SCOPE_CHARGED = "EXTRA_SCOPE_CHARGED"
    ADMIN_OVERRIDE = "ADMIN_OVERRIDE"


class AccountRole(StrEnum):
    """账户角色"""

    CLIENT = "client"
    FREELANCER = "freelancer"
    ADMIN = "admin"


class FreelancerStatus(StrEnum):
    """设计师审核状态"""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    SUSPENDED = "SUSPENDED"


class LedgerKind(StrEnum):
    """账本分录类型"""

    PURCHASE = "PURCHASE"
    USAGE = "USAGE"
    REFUND = "REFUND"
    MANUAL_ADJUST = "MANUAL_ADJUST"


class NotificationKind(StrEnum):
    """通知类型"""

    TASK_CREATED = "TASK_CREATED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_REASSIGNED = "TASK_REASSIGNED"
    TASK_STARTED = "TASK_STARTED"
    READY_FOR_REVIEW = "READY_FOR_REVIEW"
    TASK_APPROVED = "TASK_APPROVED"
    REVISION_REQUESTED = "REVISION_REQUESTED"
    EXTRA_SCOPE_CHARGED = "EXTRA_SCOPE_CHARGED"
    TASK_ESCALATED = "TASK_ESCALATED"
    ESCALATION_RESOLVED = "ESCALATION_RESOLVED"
    TASK_CANCELLED = "TASK_CANCELLED"
    LOW_CREDITS = "LOW_CREDITS"
    CREDITS_ADDED = "CREDITS_ADDED"


class Channel(StrEnum):
    """投递渠道"""

    REALTIME = "realtime"
    EMAIL = "email"
    TEAM_CHAT = "team_chat"


class DeliveryStatus(StrEnum):
    """投递状态"""

    PENDING = "PENDING"
    SENT = "SENT"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
