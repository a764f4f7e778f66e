"""Error hierarchy for the chat transport, realtime feed and session."""

from __future__ import annotations

from typing import Optional, Sequence

from ...core.exceptions import PermanentError, TransientError, VaceiChatError


class ChatError(VaceiChatError):
    """Base chat integration error."""


class ChatAPIError(ChatError):
    """Chat backend request error."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body_preview: Optional[str] = None,
        user_message: Optional[str] = None,
    ) -> None:
        if user_message is None:
            user_message = "Chat service error. Please try again."
        super().__init__(message, user_message=user_message)
        self.status_code = status_code
        self.body_preview = body_preview


class ChatTransientError(ChatAPIError, TransientError):
    """Network failure or server-side error."""


class ChatPermanentError(ChatAPIError, PermanentError):
    """Rejected request (validation, missing resource)."""

    recoverable = PermanentError.recoverable
    severity = PermanentError.severity


class ChatAuthenticationError(ChatError, PermanentError):
    """No usable identity for an operation that requires one."""

    recoverable = PermanentError.recoverable
    severity = PermanentError.severity

    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__(message, user_message="Please sign in again.")


class ChatRoomResolutionError(ChatError):
    """A room could not be resolved for an engagement."""


class ChatDirectInsertError(ChatError):
    """Direct table insert failed or is not configured."""


class ChatSendError(ChatError):
    """Every send path failed."""

    def __init__(self, message: str, *, failures: Sequence[BaseException]) -> None:
        super().__init__(message, user_message="Message could not be sent.")
        self.failures = tuple(failures)


class RealtimeError(ChatError):
    """Realtime channel protocol or connection error."""


__all__ = [
    "ChatAPIError",
    "ChatAuthenticationError",
    "ChatDirectInsertError",
    "ChatError",
    "ChatPermanentError",
    "ChatRoomResolutionError",
    "ChatSendError",
    "ChatTransientError",
    "RealtimeError",
]
