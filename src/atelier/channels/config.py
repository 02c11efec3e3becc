"""ChannelConfig -- 外部投递渠道配置加载

从环境变量加载配置；密钥以 SecretStr 保存，日志中不会泄漏。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class ChannelConfig(BaseModel):
    """外部渠道配置 -- 从环境变量加载

    环境变量:
        ATELIER_CHANNEL_MODE: 运行模式（live/echo），echo 只记录不外发
        RESEND_API_KEY: Resend 邮件 API key
        EMAIL_FROM: 发件人地址
        ADMIN_NOTIFICATION_EMAIL: 管理员邮箱（所有邮件 BCC）
        SLACK_WEBHOOK_URL: 团队频道 incoming webhook 地址
        ATELIER_CHANNEL_TIMEOUT_S: 外发请求超时（秒，默认 10）
    """

    mode: Literal["live", "echo"] = Field(
        default="echo",
        description="运行模式：live 真实外发 / echo 仅记录",
    )
    resend_api_key: SecretStr = Field(default=SecretStr(""))
    resend_base_url: str = Field(default="https://api.resend.com")
    email_from: str = Field(default="Atelier <notifications@atelier.local>")
    admin_email: str = Field(default="", description="BCC 监控邮箱")
    slack_webhook_url: SecretStr = Field(default=SecretStr(""))
    timeout_s: float = Field(default=10.0, gt=0, description="外发请求超时（秒）")


def load_channel_config() -> ChannelConfig:
    """从环境变量加载渠道配置

    Returns:
        ChannelConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("ATELIER_CHANNEL_MODE"):
        kwargs["mode"] = val

    if val := os.environ.get("RESEND_API_KEY"):
        kwargs["resend_api_key"] = SecretStr(val)

    if val := os.environ.get("EMAIL_FROM"):
        kwargs["email_from"] = val

    if val := os.environ.get("ADMIN_NOTIFICATION_EMAIL"):
        kwargs["admin_email"] = val

    if val := os.environ.get("SLACK_WEBHOOK_URL"):
        kwargs["slack_webhook_url"] = SecretStr(val)

    if val := os.environ.get("ATELIER_CHANNEL_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = float(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="ATELIER_CHANNEL_TIMEOUT_S",
                value=val,
                fallback=10.0,
            )

    return ChannelConfig(**kwargs)
