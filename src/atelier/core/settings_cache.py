"""平台设置缓存

platform_settings 的读穿缓存。TTL 与时钟均由构造方注入，
管理员修改设置后显式调用 invalidate()，测试可以完全控制过期时间。
"""

import time
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from .config import DEFAULT_LOW_BALANCE_THRESHOLD, DEFAULT_MAX_REVISIONS


class PlatformSettings(BaseModel):
    """运行期平台设置（表中无记录时使用默认值）"""

    default_max_revisions: int = Field(default=DEFAULT_MAX_REVISIONS, ge=0)
    low_balance_threshold: int = Field(default=DEFAULT_LOW_BALANCE_THRESHOLD, ge=0)


SETTING_KEYS: frozenset[str] = frozenset(PlatformSettings.model_fields)


class SettingsCache:
    """带 TTL 的设置缓存

    Args:
        loader: 从存储读取全部设置的协程函数
        ttl_s: 缓存有效期（秒）
        clock: 单调时钟，默认 time.monotonic
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[dict[str, Any]]],
        ttl_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl_s = ttl_s
        self._clock = clock
        self._value: PlatformSettings | None = None
        self._loaded_at = 0.0

    async def get(self) -> PlatformSettings:
        now = self._clock()
        if self._value is None or now - self._loaded_at >= self._ttl_s:
            raw = await self._loader()
            self._value = PlatformSettings.model_validate(
                {k: v for k, v in raw.items() if k in SETTING_KEYS}
            )
            self._loaded_at = now
        return self._value

    def invalidate(self) -> None:
        self._value = None
