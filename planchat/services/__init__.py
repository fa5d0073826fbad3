from planchat.services.chat_message_service import ChatMessageService
from planchat.services.chat_session_service import ChatSessionService

__all__ = [
    "ChatMessageService",
    "ChatSessionService",
]
