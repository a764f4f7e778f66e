"""Chat-domain models shared by the transport, realtime feed and session.

Wire records are untyped JSON objects. ``RawRecord`` documents every field
the normalizer reads; records are converted to ``Message`` at ingestion and
never passed further inward.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, TypedDict


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    GIF = "gif"

    @property
    def wire_value(self) -> str:
        return self.value.upper()

    @classmethod
    def parse(cls, value: Any) -> "MessageType":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.TEXT


class MessageStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


class RawRecord(TypedDict, total=False):
    id: str
    roomId: str
    room_id: str
    senderId: str
    sender_id: str
    content: str
    text: str
    fileUrl: str
    file_url: str
    gifUrl: str
    fileName: str
    file_name: str
    fileSize: Any
    file_size: Any
    type: str
    replyToMessageId: Optional[str]
    reply_to_message_id: Optional[str]
    sentAt: str
    sent_at: str
    created_at: str
    isEdited: bool
    isDeleted: bool
    reactions: dict[str, list[str]]


@dataclass(frozen=True)
class Message:
    id: str
    sender_id: Optional[str]
    type: MessageType
    timestamp: str
    created_at: int
    status: MessageStatus = MessageStatus.SENT
    text: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[str] = None
    reply_to_message_id: Optional[str] = None
    is_edited: bool = False
    is_deleted: bool = False
    reactions: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def is_temporary(self) -> bool:
        return self.status is MessageStatus.SENDING


@dataclass(frozen=True)
class OutgoingMessage:
    """Content of a message a local user is sending."""

    type: MessageType = MessageType.TEXT
    text: Optional[str] = None
    file_url: Optional[str] = None
    gif_url: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[str] = None
    reply_to_message_id: Optional[str] = None

    @property
    def resolved_file_url(self) -> Optional[str]:
        return self.file_url or self.gif_url

    def to_wire(self) -> dict[str, Any]:
        """Fields shared by every send path, with absent values omitted."""
        payload: dict[str, Any] = {
            "content": self.text,
            "fileUrl": self.resolved_file_url,
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "type": self.type.wire_value,
        }
        if self.reply_to_message_id:
            payload["replyToMessageId"] = self.reply_to_message_id
        return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class RoomMember:
    user_id: str
    role: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class RoomSummary:
    id: str
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Optional["RoomSummary"]:
        room_id = payload.get("id")
        if not isinstance(room_id, str) or not room_id:
            return None
        return cls(id=room_id, raw=dict(payload))


@dataclass(frozen=True)
class ChatRoom:
    id: str
    title: Optional[str] = None
    context_type: Optional[str] = None
    member_ids: tuple[str, ...] = ()
    members: tuple[RoomMember, ...] = ()
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def has_member(self, user_id: Optional[str]) -> bool:
        return user_id is not None and user_id in self.member_ids

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChatRoom":
        room_id = payload.get("id")
        if not isinstance(room_id, str) or not room_id:
            raise ValueError("chat room payload is missing an id")
        members: list[RoomMember] = []
        members_raw = payload.get("members")
        if isinstance(members_raw, list):
            for item in members_raw:
                if not isinstance(item, dict):
                    continue
                user_id = item.get("userId") or item.get("user_id")
                if not user_id:
                    user = item.get("user")
                    user_id = user.get("id") if isinstance(user, dict) else None
                if not user_id:
                    continue
                name = item.get("name")
                user = item.get("user")
                if not name and isinstance(user, dict):
                    name = user.get("name")
                members.append(
                    RoomMember(
                        user_id=str(user_id),
                        role=item.get("role"),
                        name=name if isinstance(name, str) else None,
                    )
                )
        member_ids: list[str] = [member.user_id for member in members]
        ids_raw = payload.get("memberIds") or payload.get("member_ids")
        if isinstance(ids_raw, list):
            for item in ids_raw:
                if item and str(item) not in member_ids:
                    member_ids.append(str(item))
        title = payload.get("title") or payload.get("name")
        context_type = payload.get("contextType") or payload.get("context_type")
        return cls(
            id=room_id,
            title=title if isinstance(title, str) else None,
            context_type=context_type if isinstance(context_type, str) else None,
            member_ids=tuple(member_ids),
            members=tuple(members),
            raw=dict(payload),
        )


__all__ = [
    "ChatRoom",
    "Message",
    "MessageStatus",
    "MessageType",
    "OutgoingMessage",
    "RawRecord",
    "RoomMember",
    "RoomSummary",
]
