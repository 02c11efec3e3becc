"""引擎异常体系

所有业务错误都继承 EngineError，携带稳定的错误码与 HTTP 状态，
由 gateway 统一映射为 {"error": {"code", "message", "details"}} 响应。

- ValidationError / GuardViolation / InsufficientCredits / AlreadyAssigned / NotFound:
  调用方可修正的错误，抛出时不留下任何部分状态。
- TransitionFailed: 原子提交阶段的存储层错误，已在引擎内有限重试；
  调用方可用同一个幂等键安全重放。
- DeliveryFailed: 外部渠道投递失败，仅作为投递结果返回并记录日志，
  永远不会传播到状态流转的调用方。
"""

from typing import Any


class EngineError(Exception):
    """引擎基础异常"""

    code: str = "ENGINE_ERROR"
    http_status: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """
        Args:
            message: 错误描述（面向调用方，可直接展示）
            details: 附加结构化信息，帮助调用方修正请求
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(EngineError):
    """请求结构不合法（从不落盘）"""

    code = "VALIDATION_ERROR"
    http_status = 400


class GuardViolation(EngineError):
    """当前状态或操作者不允许该流转"""

    code = "GUARD_VIOLATION"
    http_status = 409


class InsufficientCredits(EngineError):
    """账户余额不足以支付本次扣费"""

    code = "INSUFFICIENT_CREDITS"
    http_status = 402

    def __init__(self, account_id: str, balance: int, required: int) -> None:
        super().__init__(
            f"Account {account_id} has {balance} credits, {required} required",
            details={"account_id": account_id, "balance": balance, "required": required},
        )
        self.account_id = account_id
        self.balance = balance
        self.required = required


class AlreadyAssigned(EngineError):
    """并发认领竞争失败：任务已被其他设计师认领"""

    code = "ALREADY_ASSIGNED"
    http_status = 409

    def __init__(self, task_id: str) -> None:
        super().__init__(
            f"Task {task_id} has already been claimed",
            details={"task_id": task_id},
        )
        self.task_id = task_id


class NotFound(EngineError):
    """资源不存在"""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            f"{resource} with id {resource_id} does not exist",
            details={"resource": resource, "id": resource_id},
        )
        self.resource = resource
        self.resource_id = resource_id


class TransitionFailed(EngineError):
    """原子提交失败（重试耗尽），可使用同一幂等键重放"""

    code = "TRANSITION_FAILED"
    http_status = 503


class DeliveryFailed(EngineError):
    """外部渠道投递失败（非致命）"""

    code = "DELIVERY_FAILED"
    http_status = 502

    def __init__(self, channel: str, reason: str) -> None:
        super().__init__(
            f"Delivery via {channel} failed: {reason}",
            details={"channel": channel},
        )
        self.channel = channel
        self.reason = reason


class StaleTaskVersion(Exception):
    """乐观并发冲突：任务行在读取后已被修改（引擎内部重试使用）"""

    def __init__(self, task_id: str, expected_version: int) -> None:
        super().__init__(f"Task {task_id} changed since version {expected_version}")
        self.task_id = task_id
        self.expected_version = expected_version
