"""Chat transport facade: rooms, history, sends, uploads and read state."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from ...core.logging_utils import log_event
from ...core.session_store import SessionStore
from .constants import (
    DIRECT_CONTEXT_TYPE,
    ENGAGEMENT_CHAT_ROOM_PATH,
    ROOM_MARK_READ_PATH,
    ROOM_MEMBER_PATH,
    ROOM_MEMBERS_PATH,
    ROOM_MESSAGES_PATH,
    ROOM_NOTIFY_MEMBERS_PATH,
    ROOM_PATH,
    ROOM_UNREAD_COUNT_PATH,
    ROOMS_PATH,
    UNREAD_SUMMARY_PATH,
    UPLOAD_PATH,
)
from .errors import (
    ChatAPIError,
    ChatAuthenticationError,
    ChatError,
    ChatPermanentError,
    ChatRoomResolutionError,
)
from .models import ChatRoom, OutgoingMessage, RawRecord, RoomSummary
from .rest import ChatRestClient, UploadSource, unwrap_data
from .send_strategies import DualPathSender

logger = logging.getLogger(__name__)

DEFAULT_DIRECT_ROOM_TITLE = "Chat with partner"


class ChatService:
    def __init__(
        self,
        *,
        rest: ChatRestClient,
        sender: DualPathSender,
        session_store: SessionStore,
        read_receipts_enabled: bool = False,
        direct_room_title: str = DEFAULT_DIRECT_ROOM_TITLE,
    ) -> None:
        self._rest = rest
        self._sender = sender
        self._session_store = session_store
        self._read_receipts_enabled = read_receipts_enabled
        self._direct_room_title = direct_room_title

    @property
    def session_store(self) -> SessionStore:
        return self._session_store

    def current_user_id(self) -> Optional[str]:
        return self._session_store.resolve_current_user_id()

    def _require_user_id(self) -> str:
        user_id = self.current_user_id()
        if not user_id:
            raise ChatAuthenticationError()
        return user_id

    async def get_room_by_engagement(self, engagement_id: str) -> RoomSummary:
        path = ENGAGEMENT_CHAT_ROOM_PATH.format(engagement_id=engagement_id)
        try:
            payload = await self._rest.get(path)
        except ChatError as exc:
            log_event(
                logger,
                logging.ERROR,
                "chat.room.engagement_lookup_failed",
                engagement_id=engagement_id,
                exc=exc,
            )
            raise
        data = unwrap_data(payload)
        summary = RoomSummary.from_payload(data) if isinstance(data, dict) else None
        if summary is None:
            raise ChatRoomResolutionError(
                f"No chat room is bound to engagement {engagement_id}"
            )
        return summary

    async def get_room_by_id(self, room_id: str) -> ChatRoom:
        try:
            payload = await self._rest.get(ROOM_PATH.format(room_id=room_id))
        except ChatError as exc:
            log_event(
                logger, logging.ERROR, "chat.room.fetch_failed", room_id=room_id, exc=exc
            )
            raise
        data = unwrap_data(payload)
        if not isinstance(data, dict):
            raise ChatAPIError(f"Chat API returned no room for {room_id}")
        try:
            return ChatRoom.from_payload(data)
        except ValueError as exc:
            raise ChatAPIError(f"Chat API returned an invalid room: {exc}") from exc

    async def create_direct_room(
        self, partner_id: str, title: Optional[str] = None
    ) -> ChatRoom:
        current_user_id = self._require_user_id()
        member_ids = sorted([current_user_id, partner_id])
        body = {
            "title": title or self._direct_room_title,
            "contextType": DIRECT_CONTEXT_TYPE,
            "memberIds": member_ids,
        }
        try:
            payload = await self._rest.post(ROOMS_PATH, body)
        except ChatError as exc:
            log_event(
                logger,
                logging.ERROR,
                "chat.room.create_direct_failed",
                partner_id=partner_id,
                exc=exc,
            )
            raise
        data = unwrap_data(payload)
        if not isinstance(data, dict):
            raise ChatAPIError("Chat API returned no room for direct room creation")
        try:
            return ChatRoom.from_payload(data)
        except ValueError as exc:
            raise ChatAPIError(f"Chat API returned an invalid room: {exc}") from exc

    async def add_members(self, room_id: str, user_ids: Sequence[str]) -> Any:
        try:
            return await self._rest.post(
                ROOM_MEMBERS_PATH.format(room_id=room_id), {"userIds": list(user_ids)}
            )
        except ChatError as exc:
            log_event(
                logger,
                logging.ERROR,
                "chat.room.add_members_failed",
                room_id=room_id,
                exc=exc,
            )
            raise

    async def remove_member(self, room_id: str, user_id: str) -> Any:
        try:
            return await self._rest.delete(
                ROOM_MEMBER_PATH.format(room_id=room_id, user_id=user_id)
            )
        except ChatError as exc:
            log_event(
                logger,
                logging.ERROR,
                "chat.room.remove_member_failed",
                room_id=room_id,
                user_id=user_id,
                exc=exc,
            )
            raise

    async def get_messages(self, room_id: str) -> list[RawRecord]:
        try:
            payload = await self._rest.get(ROOM_MESSAGES_PATH.format(room_id=room_id))
        except ChatError as exc:
            log_event(
                logger,
                logging.ERROR,
                "chat.messages.fetch_failed",
                room_id=room_id,
                exc=exc,
            )
            raise
        data = unwrap_data(payload)
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]  # type: ignore[misc]

    async def send_message(
        self, room_id: str, content: OutgoingMessage
    ) -> RawRecord:
        sender_id = self._require_user_id()
        record = await self._sender.send(room_id, content, sender_id=sender_id)
        return record  # type: ignore[return-value]

    async def notify_room_members(
        self, room_id: str, content: str, message_id: Optional[str] = None
    ) -> None:
        try:
            await self._rest.post(
                ROOM_NOTIFY_MEMBERS_PATH.format(room_id=room_id),
                {"content": content, "messageId": message_id},
            )
        except ChatError as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.room.notify_members_failed",
                room_id=room_id,
                exc=exc,
            )

    async def upload_file(
        self,
        source: UploadSource,
        *,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str:
        try:
            payload = await self._rest.post_file(
                UPLOAD_PATH, source, filename=filename, content_type=content_type
            )
        except ChatError as exc:
            log_event(logger, logging.ERROR, "chat.upload.failed", exc=exc)
            raise
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            return ""
        url = data.get("url") or data.get("fileUrl")
        return url if isinstance(url, str) else ""

    async def clear_room(self, room_id: str) -> None:
        try:
            await self._rest.delete(ROOM_MESSAGES_PATH.format(room_id=room_id))
        except ChatError as exc:
            log_event(
                logger, logging.ERROR, "chat.room.clear_failed", room_id=room_id, exc=exc
            )
            raise

    async def get_unread_count(self, room_id: str) -> int:
        payload = await self._rest.get(ROOM_UNREAD_COUNT_PATH.format(room_id=room_id))
        data = unwrap_data(payload)
        if isinstance(data, dict):
            data = data.get("count", data.get("unreadCount"))
        if isinstance(data, bool) or not isinstance(data, (int, float)):
            return 0
        return int(data)

    async def get_unread_summary(self) -> dict[str, Any]:
        payload = await self._rest.get(UNREAD_SUMMARY_PATH)
        data = unwrap_data(payload)
        return data if isinstance(data, dict) else {}

    async def mark_as_read(
        self, room_id: str, up_to_message_id: Optional[str] = None
    ) -> None:
        """Mark the room read, optionally only up to ``up_to_message_id``.

        Idempotent. A no-op until the backend read endpoint is enabled with
        ``read_receipts_enabled``; never raises.
        """
        if not self._read_receipts_enabled:
            return
        body: dict[str, Any] = {}
        if up_to_message_id:
            body["upToMessageId"] = up_to_message_id
        try:
            await self._rest.post(ROOM_MARK_READ_PATH.format(room_id=room_id), body)
        except ChatPermanentError as exc:
            if exc.status_code == 404:
                return
            log_event(
                logger, logging.WARNING, "chat.read.mark_failed", room_id=room_id, exc=exc
            )
        except ChatError as exc:
            log_event(
                logger, logging.WARNING, "chat.read.mark_failed", room_id=room_id, exc=exc
            )


__all__ = ["ChatService", "DEFAULT_DIRECT_ROOM_TITLE"]
