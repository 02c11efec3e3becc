"""gateway 测试配置 -- 绕过 lifespan，手动装配 app.state"""

from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass

import pytest
import pytest_asyncio
from atelier.channels import EchoChannel
from atelier.core.lifecycle import LifecycleEngine
from atelier.core.models import Actor, Channel
from atelier.core.settings_cache import SettingsCache
from atelier.core.store import StoreGroup
from atelier.gateway.main import create_app, wire_services
from atelier.gateway.services.dispatcher import EffectDispatcher
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

APP_URL = "https://app.example.com"


@dataclass
class Gateway:
    app: FastAPI
    engine: LifecycleEngine
    dispatcher: EffectDispatcher
    email: EchoChannel
    team: EchoChannel


@pytest.fixture
def email_channel() -> EchoChannel:
    return EchoChannel(name="email")


@pytest.fixture
def team_channel() -> EchoChannel:
    return EchoChannel(name="team_chat")


@pytest_asyncio.fixture
async def gateway(
    store_group: StoreGroup,
    settings_cache: SettingsCache,
    email_channel: EchoChannel,
    team_channel: EchoChannel,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncGenerator[Gateway, None]:
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    app = create_app()
    dispatcher = wire_services(
        app,
        store_group,
        {Channel.EMAIL: email_channel, Channel.TEAM_CHAT: team_channel},
        settings=settings_cache,
        app_url=APP_URL,
    )
    dispatcher.start()
    yield Gateway(
        app=app,
        engine=app.state.engine,
        dispatcher=dispatcher,
        email=email_channel,
        team=team_channel,
    )
    await dispatcher.stop()


@pytest_asyncio.fixture
async def client(gateway: Gateway) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=gateway.app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def as_actor() -> Callable[..., dict[str, str]]:
    """构造认证协作方注入的请求头"""

    def _headers(actor: Actor, idempotency_key: str | None = None) -> dict[str, str]:
        headers = {"X-Actor-Id": actor.id, "X-Actor-Role": actor.role.value}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    return _headers
