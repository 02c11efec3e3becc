"""渠道数据模型 -- RenderedMessage + DeliveryResult"""

from dataclasses import dataclass

from pydantic import BaseModel, Field

from atelier.core.errors import DeliveryFailed


class RenderedMessage(BaseModel):
    """渲染后的外发消息（与具体渠道无关）"""

    subject: str = Field(description="标题（邮件主题 / 团队消息首行）")
    text: str = Field(description="纯文本正文")
    html: str = Field(default="", description="HTML 正文（仅邮件使用）")
    link: str = Field(default="", description="相关页面链接")


@dataclass
class DeliveryResult:
    """一次 send() 的结果；失败时 error 为 DeliveryFailed，不会抛出"""

    success: bool
    channel: str
    provider_id: str = ""
    error: DeliveryFailed | None = None

    @classmethod
    def ok(cls, channel: str, provider_id: str = "") -> "DeliveryResult":
        return cls(success=True, channel=channel, provider_id=provider_id)

    @classmethod
    def failed(cls, channel: str, reason: str) -> "DeliveryResult":
        return cls(
            success=False,
            channel=channel,
            error=DeliveryFailed(channel, reason),
        )
