"""ResendEmailChannel -- 通过 Resend HTTP API 发送邮件

POST {base_url}/emails，Bearer 认证。管理员邮箱作为 BCC 监控所有外发邮件
（收件人本身就是管理员时不重复抄送）。
"""

import httpx
from pydantic import SecretStr

from .base import BaseChannel, raise_for_status
from .exceptions import ChannelError, ChannelNotConfiguredError
from .models import RenderedMessage


class ResendEmailChannel(BaseChannel):
    """Resend 邮件渠道"""

    name = "email"

    def __init__(
        self,
        api_key: SecretStr,
        email_from: str,
        admin_email: str = "",
        base_url: str = "https://api.resend.com",
        timeout_s: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            api_key: Resend API key
            email_from: 发件人
            admin_email: BCC 监控邮箱，空字符串表示不抄送
            base_url: API 地址
            timeout_s: 请求超时（秒）
            http_client: 共享的 httpx 客户端（测试注入 MockTransport），
                None 时每次请求新建
        """
        self._api_key = api_key
        self._email_from = email_from
        self._admin_email = admin_email
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._http_client = http_client

    async def _deliver(self, recipient: str, message: RenderedMessage) -> str:
        api_key = self._api_key.get_secret_value()
        if not api_key:
            raise ChannelNotConfiguredError(self.name, "RESEND_API_KEY")
        if not recipient:
            raise ChannelError("recipient email address is empty", recoverable=False)

        body: dict = {
            "from": self._email_from,
            "to": [recipient],
            "subject": message.subject,
            "text": message.text,
        }
        if message.html:
            body["html"] = message.html
        if self._admin_email and recipient != self._admin_email:
            body["bcc"] = [self._admin_email]

        headers = {"Authorization": f"Bearer {api_key}"}
        url = f"{self._base_url}/emails"
        if self._http_client is not None:
            resp = await self._http_client.post(
                url, json=body, headers=headers, timeout=self._timeout_s
            )
        else:
            async with httpx.AsyncClient() as http_client:
                resp = await http_client.post(
                    url, json=body, headers=headers, timeout=self._timeout_s
                )

        raise_for_status("Resend", resp)
        try:
            data = resp.json()
        except ValueError:
            # 2xx 即视为已受理，响应体不是 JSON 时没有 provider id
            return ""
        return str(data.get("id", "")) if isinstance(data, dict) else ""
