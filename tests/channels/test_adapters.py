"""外部渠道适配器测试

测试内容：
1. Resend 请求体（BCC、Bearer 认证）与响应解析
2. Slack Block Kit 消息体
3. 失败（HTTP 错误、传输错误、缺少配置）返回 DeliveryResult 而不抛出
4. build_channels 按模式构建
"""

import json

import httpx
import pytest
from atelier.channels import (
    ChannelConfig,
    EchoChannel,
    RenderedMessage,
    ResendEmailChannel,
    SlackWebhookChannel,
    build_channels,
    load_channel_config,
)
from atelier.core.errors import DeliveryFailed
from atelier.core.models import Channel
from pydantic import SecretStr


@pytest.fixture
def message() -> RenderedMessage:
    return RenderedMessage(
        subject="[Atelier] Ready for review",
        text="designer-1 submitted Banner",
        html="<p>designer-1 submitted Banner</p>",
        link="https://app.example.com/tasks/t1",
    )


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestResend:
    """Resend 邮件渠道"""

    async def test_send_success(self, message):
        captured: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"id": "email_123"})

        async with _client(handler) as http_client:
            channel = ResendEmailChannel(
                api_key=SecretStr("re_test"),
                email_from="Atelier <noreply@example.com>",
                admin_email="ops@example.com",
                http_client=http_client,
            )
            result = await channel.send("client-1@example.com", message)

        assert result.success is True
        assert result.provider_id == "email_123"
        assert captured["url"] == "https://api.resend.com/emails"
        assert captured["auth"] == "Bearer re_test"
        assert captured["body"]["to"] == ["client-1@example.com"]
        assert captured["body"]["bcc"] == ["ops@example.com"]
        assert captured["body"]["html"] == message.html

    async def test_no_bcc_to_admin_itself(self, message):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "x"})

        async with _client(handler) as http_client:
            channel = ResendEmailChannel(
                api_key=SecretStr("re_test"),
                email_from="noreply@example.com",
                admin_email="ops@example.com",
                http_client=http_client,
            )
            await channel.send("ops@example.com", message)

        assert "bcc" not in bodies[0]

    async def test_http_error_returns_failed_result(self, message):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="upstream down")

        async with _client(handler) as http_client:
            channel = ResendEmailChannel(
                api_key=SecretStr("re_test"),
                email_from="noreply@example.com",
                http_client=http_client,
            )
            result = await channel.send("client-1@example.com", message)

        assert result.success is False
        assert isinstance(result.error, DeliveryFailed)
        assert "503" in result.error.reason
        assert result.error.channel == "email"

    async def test_transport_error_returns_failed_result(self, message):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as http_client:
            channel = ResendEmailChannel(
                api_key=SecretStr("re_test"),
                email_from="noreply@example.com",
                http_client=http_client,
            )
            result = await channel.send("client-1@example.com", message)

        assert result.success is False
        assert "ConnectError" in result.error.reason

    async def test_non_json_success_body(self, message):
        """2xx 但响应体不是 JSON：视为已发送，没有 provider id"""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="OK")

        async with _client(handler) as http_client:
            channel = ResendEmailChannel(
                api_key=SecretStr("re_test"),
                email_from="noreply@example.com",
                http_client=http_client,
            )
            result = await channel.send("client-1@example.com", message)

        assert result.success is True
        assert result.provider_id == ""

    async def test_unexpected_error_returns_failed_result(self, message):
        class BrokenChannel(EchoChannel):
            async def _deliver(self, recipient, message):
                raise KeyError("id")

        result = await BrokenChannel(name="email").send("client-1@example.com", message)

        assert result.success is False
        assert "KeyError" in result.error.reason

    async def test_missing_api_key(self, message):
        channel = ResendEmailChannel(api_key=SecretStr(""), email_from="noreply@example.com")
        result = await channel.send("client-1@example.com", message)
        assert result.success is False
        assert "RESEND_API_KEY" in result.error.reason


class TestSlack:
    """Slack webhook 渠道"""

    async def test_send_success(self, message):
        payloads: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(200, text="ok")

        async with _client(handler) as http_client:
            channel = SlackWebhookChannel(
                webhook_url=SecretStr("https://hooks.slack.test/T000/B000"),
                http_client=http_client,
            )
            result = await channel.send("team:tasks", message)

        assert result.success is True
        payload = payloads[0]
        assert payload["text"].startswith("[Atelier] Ready for review")
        types = [block["type"] for block in payload["blocks"]]
        assert types == ["header", "section", "actions", "context"]
        assert payload["blocks"][-1]["elements"][0]["text"] == "team:tasks"

    def test_payload_without_link(self):
        payload = SlackWebhookChannel.build_payload(
            "team:purchases", RenderedMessage(subject="Purchase", text="25 credits")
        )
        assert [b["type"] for b in payload["blocks"]] == ["header", "section", "context"]

    async def test_missing_webhook(self, message):
        channel = SlackWebhookChannel(webhook_url=SecretStr(""))
        result = await channel.send("team:tasks", message)
        assert result.success is False
        assert "SLACK_WEBHOOK_URL" in result.error.reason


class TestEchoAndFactory:
    """EchoChannel 与 build_channels"""

    async def test_echo_records(self, message):
        channel = EchoChannel(name="email")
        result = await channel.send("client-1@example.com", message)
        assert result.success is True
        assert channel.sent == [("client-1@example.com", message)]

    async def test_echo_failure(self, message):
        channel = EchoChannel(name="email", fail_with="mailbox full")
        result = await channel.send("client-1@example.com", message)
        assert result.success is False
        assert result.error.reason == "mailbox full"
        assert channel.sent == []

    def test_build_echo(self):
        channels = build_channels(ChannelConfig(mode="echo"))
        assert isinstance(channels[Channel.EMAIL], EchoChannel)
        assert isinstance(channels[Channel.TEAM_CHAT], EchoChannel)

    def test_build_live(self):
        channels = build_channels(ChannelConfig(mode="live"))
        assert isinstance(channels[Channel.EMAIL], ResendEmailChannel)
        assert isinstance(channels[Channel.TEAM_CHAT], SlackWebhookChannel)

    def test_load_config_from_env(self, monkeypatch):
        monkeypatch.setenv("ATELIER_CHANNEL_MODE", "live")
        monkeypatch.setenv("RESEND_API_KEY", "re_secret")
        monkeypatch.setenv("ATELIER_CHANNEL_TIMEOUT_S", "not-a-number")

        config = load_channel_config()

        assert config.mode == "live"
        assert config.resend_api_key.get_secret_value() == "re_secret"
        assert "re_secret" not in repr(config)
        assert config.timeout_s == 10.0
