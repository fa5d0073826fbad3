from planchat.models.chat_message import ChatMessageRecord
from planchat.models.chat_session import ChatSession

__all__ = [
    "ChatMessageRecord",
    "ChatSession",
]
