"""FastAPI 应用主文件

app 创建 + lifespan 管理：数据库初始化/关闭、外部渠道、副作用派发器、
生命周期引擎的装配，以及统一错误响应与路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from atelier.channels import DeliveryChannel, build_channels, load_channel_config
from atelier.core.config import SETTINGS_TTL_S, get_app_url, get_db_path
from atelier.core.errors import EngineError
from atelier.core.lifecycle import LifecycleEngine
from atelier.core.models import Channel
from atelier.core.settings_cache import SettingsCache
from atelier.core.store import StoreGroup, create_store_group
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from .deps import AuthenticationRequired
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import accounts, admin, health, ledger, notifications, tasks, webhooks
from .services.dispatcher import EffectDispatcher
from .services.realtime_hub import RealtimeHub

log = structlog.get_logger()


def wire_services(
    app: FastAPI,
    store_group: StoreGroup,
    channels: dict[Channel, DeliveryChannel],
    settings: SettingsCache | None = None,
    app_url: str | None = None,
) -> EffectDispatcher:
    """把共享组件挂到 app.state 上（lifespan 与测试共用）

    Returns:
        未启动的 EffectDispatcher，调用方负责 start()/stop()
    """
    if settings is None:
        settings = SettingsCache(
            loader=store_group.settings_store.get_all,
            ttl_s=SETTINGS_TTL_S,
        )
    hub = RealtimeHub()
    dispatcher = EffectDispatcher(
        store_group,
        hub,
        channels,
        settings,
        app_url or get_app_url(),
    )
    app.state.store_group = store_group
    app.state.settings_cache = settings
    app.state.hub = hub
    app.state.dispatcher = dispatcher
    app.state.engine = LifecycleEngine(store_group, settings, effects=dispatcher)
    return dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """启动时初始化数据库与派发器并恢复未完成的副作用，关闭时依次清理"""
    store_group = await create_store_group(get_db_path())

    channel_config = load_channel_config()
    http_client = httpx.AsyncClient(timeout=channel_config.timeout_s)
    channels = build_channels(channel_config, http_client)

    dispatcher = wire_services(app, store_group, channels)
    dispatcher.start()
    recovered = await dispatcher.recover()
    log.info(
        "gateway_started",
        channel_mode=channel_config.mode,
        recovered_events=recovered,
    )

    yield

    await dispatcher.stop()
    await http_client.aclose()
    await store_group.close()
    log.info("gateway_stopped")


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """EngineError -> {"error": {"code", "message", "details"}}"""
    if exc.http_status >= 500:
        log.error("request_failed", code=exc.code, error=exc.message)
    else:
        log.info("request_rejected", code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"error": jsonable_encoder(exc.to_dict())},
    )


async def authentication_error_handler(
    request: Request, exc: AuthenticationRequired
) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={
            "error": {"code": "UNAUTHENTICATED", "message": exc.message, "details": {}}
        },
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request body or parameters are invalid",
                "details": {"errors": jsonable_encoder(exc.errors())},
            }
        },
    )


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Atelier Gateway",
        version="0.1.0",
        description="Atelier 任务生命周期与积分账本 API",
        lifespan=lifespan,
    )

    # 先 Trace 后 Logging：Logging 在外层，先清理 contextvars 再绑定 request_id
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.add_exception_handler(EngineError, engine_error_handler)
    app.add_exception_handler(AuthenticationRequired, authentication_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    setup_logging()
    setup_logfire(app)

    app.include_router(accounts.router, tags=["accounts"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(admin.router, tags=["admin"])
    app.include_router(ledger.router, tags=["ledger"])
    app.include_router(webhooks.router, tags=["webhooks"])
    app.include_router(notifications.router, tags=["notifications"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
