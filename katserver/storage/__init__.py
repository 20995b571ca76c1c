"""
Message storage for KatServer.
"""

from .message_storage import MessageStorage, MessageTypeRegistry
from .models import UniMessage

__all__ = [
    "MessageStorage",
    "MessageTypeRegistry",
    "UniMessage",
]
