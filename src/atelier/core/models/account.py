"""Account / Actor / FreelancerProfile Domain Model

balance 是 ledger_entries 的缓存汇总，只在账本写入的同一事务内刷新。
Actor 由认证协作方提供（id + role），引擎本身不做凭证校验。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import AccountRole, FreelancerStatus


class Actor(BaseModel):
    """已认证的操作者"""

    id: str = Field(min_length=1)
    role: AccountRole

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN


class Account(BaseModel):
    """账户"""

    account_id: str
    role: AccountRole
    email: str = Field(default="")
    name: str = Field(default="")
    email_enabled: bool = Field(default=True, description="是否接收邮件通知")
    balance: int = Field(default=0, description="缓存余额（账本汇总）")
    created_at: datetime
    updated_at: datetime


class FreelancerProfile(BaseModel):
    """设计师档案：认领任务前必须已审核通过且处于可接单状态"""

    account_id: str
    status: FreelancerStatus = Field(default=FreelancerStatus.PENDING)
    available: bool = Field(default=True)
    updated_at: datetime

    @property
    def can_claim(self) -> bool:
        return self.status == FreelancerStatus.APPROVED and self.available
