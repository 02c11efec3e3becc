"""Atelier Channels -- 外部投递渠道抽象层

所有渠道提供统一的 send(recipient, rendered_message) -> DeliveryResult，
失败以 DeliveryFailed 形式返回，从不抛出。
"""

import httpx

from atelier.core.models import Channel

from .base import BaseChannel, DeliveryChannel
from .config import ChannelConfig, load_channel_config
from .echo import EchoChannel
from .exceptions import ChannelError, ChannelNotConfiguredError
from .models import DeliveryResult, RenderedMessage
from .resend import ResendEmailChannel
from .slack import SlackWebhookChannel
from .templates import EMAIL_KINDS, render


def build_channels(
    config: ChannelConfig,
    http_client: httpx.AsyncClient | None = None,
) -> dict[Channel, DeliveryChannel]:
    """按配置构建外部渠道（实时推送由 gateway 的 RealtimeHub 负责）

    echo 模式下两个渠道都只记录不外发。
    """
    if config.mode == "echo":
        return {
            Channel.EMAIL: EchoChannel(name=Channel.EMAIL.value),
            Channel.TEAM_CHAT: EchoChannel(name=Channel.TEAM_CHAT.value),
        }
    return {
        Channel.EMAIL: ResendEmailChannel(
            api_key=config.resend_api_key,
            email_from=config.email_from,
            admin_email=config.admin_email,
            base_url=config.resend_base_url,
            timeout_s=config.timeout_s,
            http_client=http_client,
        ),
        Channel.TEAM_CHAT: SlackWebhookChannel(
            webhook_url=config.slack_webhook_url,
            timeout_s=config.timeout_s,
            http_client=http_client,
        ),
    }


__all__ = [
    "DeliveryChannel",
    "BaseChannel",
    "DeliveryResult",
    "RenderedMessage",
    "ResendEmailChannel",
    "SlackWebhookChannel",
    "EchoChannel",
    "ChannelConfig",
    "load_channel_config",
    "ChannelError",
    "ChannelNotConfiguredError",
    "EMAIL_KINDS",
    "render",
    "build_channels",
]
