"""EchoChannel -- 只记录不外发的渠道（本地开发与测试使用）"""

from ulid import ULID

from .base import BaseChannel
from .exceptions import ChannelError
from .models import RenderedMessage


class EchoChannel(BaseChannel):
    """记录每次投递；fail_with 非空时模拟渠道故障"""

    def __init__(self, name: str = "echo", fail_with: str = "") -> None:
        self.name = name
        self.fail_with = fail_with
        self.sent: list[tuple[str, RenderedMessage]] = []

    async def _deliver(self, recipient: str, message: RenderedMessage) -> str:
        if self.fail_with:
            raise ChannelError(self.fail_with)
        self.sent.append((recipient, message))
        return str(ULID())
