"""依赖注入模块 -- 通过 FastAPI Depends 注入共享组件

StoreGroup / LifecycleEngine / RealtimeHub / EffectDispatcher 由 lifespan
初始化后挂在 app.state 上；操作者由认证协作方通过请求头提供。
"""

from atelier.core.lifecycle import LifecycleEngine
from atelier.core.models import AccountRole, Actor
from atelier.core.store import StoreGroup
from fastapi import Header, Request

from .services.dispatcher import EffectDispatcher
from .services.realtime_hub import RealtimeHub


class AuthenticationRequired(Exception):
    """请求未携带有效的操作者信息"""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_engine(request: Request) -> LifecycleEngine:
    return request.app.state.engine


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.hub


def get_dispatcher(request: Request) -> EffectDispatcher:
    return request.app.state.dispatcher


def get_actor(
    actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
    actor_role: str | None = Header(default=None, alias="X-Actor-Role"),
) -> Actor:
    """从认证协作方注入的请求头构造 Actor

    Raises:
        AuthenticationRequired: 请求头缺失或角色无法识别
    """
    if not actor_id or not actor_role:
        raise AuthenticationRequired("X-Actor-Id and X-Actor-Role headers are required")
    try:
        role = AccountRole(actor_role.lower())
    except ValueError as e:
        raise AuthenticationRequired(f"Unknown actor role: {actor_role}") from e
    return Actor(id=actor_id, role=role)


def get_idempotency_key(
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
) -> str | None:
    if idempotency_key is None:
        return None
    return idempotency_key.strip() or None
