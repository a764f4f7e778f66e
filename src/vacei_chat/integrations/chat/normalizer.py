"""Convert wire message records into ``Message`` values.

The backend mixes camelCase and snake_case field names and sometimes omits
the timezone suffix on timestamps.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from ...core.time_utils import now_epoch_ms, now_iso
from .models import Message, MessageStatus, MessageType

TIMESTAMP_FIELDS = ("sentAt", "sent_at", "created_at")

_OFFSET_SUFFIX_RE = re.compile(r"-\d{2}:\d{2}$")


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def normalize_timestamp(value: Any) -> Optional[str]:
    """Force UTC on timestamps that carry no zone marker.

    A value counts as zoned when it ends with ``Z``, contains ``+`` or ends
    in a ``-HH:MM`` offset. Anything else gets ``Z`` appended. Offsets
    written without a colon (``-0500``) are not recognized and end up
    unparseable; this compensates for the backend and does not replace a
    consistent timestamp contract.
    """
    if value is None or value == "":
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z") or "+" in text or _OFFSET_SUFFIX_RE.search(text):
        return text
    return text + "Z"


def parse_created_at(timestamp: Optional[str]) -> int:
    """Milliseconds since the epoch, or now when the value cannot be parsed."""
    if not timestamp:
        return now_epoch_ms()
    text = timestamp[:-1] + "+00:00" if timestamp.endswith("Z") else timestamp
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return now_epoch_ms()
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def resolve_timestamp(raw: Mapping[str, Any]) -> Optional[str]:
    return normalize_timestamp(_first(raw, *TIMESTAMP_FIELDS))


def _reactions(value: Any) -> dict[str, tuple[str, ...]]:
    if not isinstance(value, dict):
        return {}
    reactions: dict[str, tuple[str, ...]] = {}
    for emoji, user_ids in value.items():
        if isinstance(user_ids, list):
            reactions[str(emoji)] = tuple(str(user_id) for user_id in user_ids)
    return reactions


def normalize_message(
    raw: Mapping[str, Any],
    *,
    status: MessageStatus = MessageStatus.SENT,
) -> Message:
    timestamp = resolve_timestamp(raw)
    created_at = parse_created_at(timestamp)
    if timestamp is None:
        timestamp = now_iso()
    message_id = raw.get("id")
    return Message(
        id=str(message_id) if message_id is not None else "",
        sender_id=_optional_text(_first(raw, "senderId", "sender_id")),
        type=MessageType.parse(_first(raw, "type")),
        timestamp=timestamp,
        created_at=created_at,
        status=status,
        text=_optional_text(_first(raw, "content", "text")),
        file_url=_optional_text(_first(raw, "fileUrl", "file_url", "gifUrl")),
        file_name=_optional_text(_first(raw, "fileName", "file_name")),
        file_size=_optional_text(_first(raw, "fileSize", "file_size")),
        reply_to_message_id=_optional_text(
            _first(raw, "replyToMessageId", "reply_to_message_id")
        ),
        is_edited=bool(_first(raw, "isEdited", "is_edited")),
        is_deleted=bool(_first(raw, "isDeleted", "is_deleted")),
        reactions=_reactions(raw.get("reactions")),
    )


def sort_messages(messages: list[Message]) -> list[Message]:
    return sorted(messages, key=lambda message: message.created_at)


__all__ = [
    "TIMESTAMP_FIELDS",
    "normalize_message",
    "normalize_timestamp",
    "parse_created_at",
    "resolve_timestamp",
    "sort_messages",
]
