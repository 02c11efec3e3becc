"""Atelier Client -- 实时通知流消费者"""

from .backoff import Backoff
from .stream import (
    NotificationStream,
    ReconnectExhausted,
    SSEParser,
    StreamEvent,
    StreamRejected,
)

__all__ = [
    "Backoff",
    "NotificationStream",
    "StreamEvent",
    "SSEParser",
    "StreamRejected",
    "ReconnectExhausted",
]
