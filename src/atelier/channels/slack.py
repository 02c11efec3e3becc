"""SlackWebhookChannel -- 通过 incoming webhook 推送团队频道消息

recipient 为逻辑频道名（如 team:tasks），写入消息首行，
实际投递地址由 webhook URL 决定。
"""

import httpx
from pydantic import SecretStr

from .base import BaseChannel, raise_for_status
from .exceptions import ChannelNotConfiguredError
from .models import RenderedMessage


class SlackWebhookChannel(BaseChannel):
    """Slack incoming webhook 渠道"""

    name = "team_chat"

    def __init__(
        self,
        webhook_url: SecretStr,
        timeout_s: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._timeout_s = timeout_s
        self._http_client = http_client

    @staticmethod
    def build_payload(recipient: str, message: RenderedMessage) -> dict:
        """构建 Block Kit 消息体"""
        fallback = f"{message.subject}: {message.text}"
        blocks: list[dict] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": message.subject[:150]},
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": message.text}},
        ]
        if message.link:
            blocks.append(
                {
                    "type": "actions",
                    "elements": [
                        {
                            "type": "button",
                            "text": {"type": "plain_text", "text": "Open"},
                            "url": message.link,
                        }
                    ],
                }
            )
        blocks.append(
            {
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": recipient}],
            }
        )
        return {"text": fallback, "blocks": blocks}

    async def _deliver(self, recipient: str, message: RenderedMessage) -> str:
        url = self._webhook_url.get_secret_value()
        if not url:
            raise ChannelNotConfiguredError(self.name, "SLACK_WEBHOOK_URL")

        payload = self.build_payload(recipient, message)
        if self._http_client is not None:
            resp = await self._http_client.post(url, json=payload, timeout=self._timeout_s)
        else:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.post(url, json=payload, timeout=self._timeout_s)

        raise_for_status("Slack", resp)
        return ""
