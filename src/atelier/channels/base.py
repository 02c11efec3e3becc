"""DeliveryChannel 接口与公共 send() 边界

每个渠道只需实现 _deliver()；send() 负责把任何传输层异常转换为
DeliveryResult(success=False)，保证投递失败永远不会抛给派发方。
"""

import time
from typing import Protocol

import httpx
import structlog

from .exceptions import ChannelError
from .models import DeliveryResult, RenderedMessage

log = structlog.get_logger()


class DeliveryChannel(Protocol):
    """外部投递能力：send(recipient, rendered_message)"""

    name: str

    async def send(self, recipient: str, message: RenderedMessage) -> DeliveryResult: ...


class BaseChannel:
    """渠道基类"""

    name = "channel"

    async def send(self, recipient: str, message: RenderedMessage) -> DeliveryResult:
        """投递一条消息，失败时返回带 DeliveryFailed 的结果而不是抛出"""
        start_time = time.monotonic()
        try:
            provider_id = await self._deliver(recipient, message)
        except ChannelError as e:
            log.warning(
                "channel_delivery_failed",
                channel=self.name,
                recipient=recipient,
                error=str(e),
                recoverable=e.recoverable,
            )
            return DeliveryResult.failed(self.name, str(e))
        except httpx.HTTPError as e:
            log.warning(
                "channel_delivery_failed",
                channel=self.name,
                recipient=recipient,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DeliveryResult.failed(self.name, f"{type(e).__name__}: {e}")
        except Exception as e:
            # 渠道响应格式异常等未预期错误同样只作为失败结果返回
            log.error(
                "channel_delivery_error",
                channel=self.name,
                recipient=recipient,
                error=str(e),
                error_type=type(e).__name__,
            )
            return DeliveryResult.failed(self.name, f"{type(e).__name__}: {e}")

        log.info(
            "channel_delivery_sent",
            channel=self.name,
            recipient=recipient,
            provider_id=provider_id,
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )
        return DeliveryResult.ok(self.name, provider_id)

    async def _deliver(self, recipient: str, message: RenderedMessage) -> str:
        """执行投递，返回渠道侧消息 ID

        Raises:
            ChannelError: 渠道返回错误或缺少配置
            httpx.HTTPError: 传输层错误
        """
        raise NotImplementedError


def raise_for_status(channel: str, response: httpx.Response) -> None:
    """将非 2xx 响应转换为 ChannelError（429/5xx 可重试）"""
    if response.is_success:
        return
    recoverable = response.status_code == 429 or response.status_code >= 500
    raise ChannelError(
        f"{channel} returned HTTP {response.status_code}: {response.text[:200]}",
        recoverable=recoverable,
    )
