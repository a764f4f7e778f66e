"""Realtime chat core: transport, realtime feed and session controller."""

from .bootstrap import ChatRuntime, build_chat_runtime
from .errors import (
    ChatAPIError,
    ChatAuthenticationError,
    ChatDirectInsertError,
    ChatError,
    ChatPermanentError,
    ChatRoomResolutionError,
    ChatSendError,
    ChatTransientError,
    RealtimeError,
)
from .feed import FeedSubscription, RealtimeFeed
from .models import (
    ChatRoom,
    Message,
    MessageStatus,
    MessageType,
    OutgoingMessage,
    RawRecord,
    RoomMember,
    RoomSummary,
)
from .normalizer import normalize_message, normalize_timestamp
from .service import ChatService
from .session import CancellationToken, ChatSession, ChatSessionState

__all__ = [
    "CancellationToken",
    "ChatAPIError",
    "ChatAuthenticationError",
    "ChatDirectInsertError",
    "ChatError",
    "ChatPermanentError",
    "ChatRoom",
    "ChatRoomResolutionError",
    "ChatRuntime",
    "ChatSendError",
    "ChatService",
    "ChatSession",
    "ChatSessionState",
    "ChatTransientError",
    "FeedSubscription",
    "Message",
    "MessageStatus",
    "MessageType",
    "OutgoingMessage",
    "RawRecord",
    "RealtimeError",
    "RealtimeFeed",
    "RoomMember",
    "RoomSummary",
    "build_chat_runtime",
    "normalize_message",
    "normalize_timestamp",
]
