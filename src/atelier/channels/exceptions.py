"""Channel 异常体系

适配器内部抛出 ChannelError，在 send() 边界统一转换为
DeliveryResult(success=False, error=DeliveryFailed)，从不传播到派发方。
"""


class ChannelError(Exception):
    """渠道适配器基础异常"""

    def __init__(self, message: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            recoverable: 是否可通过重试恢复（4xx 类错误为 False）
        """
        super().__init__(message)
        self.recoverable = recoverable


class ChannelNotConfiguredError(ChannelError):
    """渠道缺少必要配置（API key / webhook 地址）"""

    def __init__(self, channel: str, missing: str) -> None:
        super().__init__(
            f"{channel} channel is not configured: {missing} missing",
            recoverable=False,
        )
        self.channel = channel
        self.missing = missing
