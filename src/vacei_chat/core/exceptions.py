"""Shared error base classes.

Integration layers compose these so retry and severity metadata stays
consistent between the REST transport, the direct insert path and the
realtime feed.
"""

from __future__ import annotations

from typing import Optional


class VaceiChatError(Exception):
    """Base error for the chat client."""

    recoverable: bool = True
    severity: str = "error"

    def __init__(self, message: str, *, user_message: Optional[str] = None) -> None:
        super().__init__(message)
        self.user_message = user_message


class TransientError(VaceiChatError):
    """Failure that may succeed if the caller tries again later."""

    recoverable = True
    severity = "warning"


class PermanentError(VaceiChatError):
    """Failure that will not go away without a configuration or input change."""

    recoverable = False
    severity = "error"


class ConfigError(PermanentError):
    """Invalid or unreadable configuration."""


__all__ = ["ConfigError", "PermanentError", "TransientError", "VaceiChatError"]
