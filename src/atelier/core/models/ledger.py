"""LedgerEntry Domain Model

账本 append-only：分录写入后不可修改或删除，更正通过新的冲销分录完成。
账户余额恒等于其全部分录金额之和。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import LedgerKind


class LedgerEntry(BaseModel):
    """账本分录"""

    entry_id: str = Field(description="唯一标识，ULID 格式")
    seq: int = Field(default=0, description="全局写入序号（用于排序）")
    account_id: str
    amount: int = Field(description="带符号金额：扣费为负，入账为正")
    kind: LedgerKind
    task_id: str | None = Field(default=None, description="关联任务")
    external_ref: str | None = Field(
        default=None,
        description="外部幂等键（PURCHASE 使用支付方交易号）",
    )
    description: str = Field(default="")
    balance_after: int = Field(description="写入后余额")
    created_at: datetime
