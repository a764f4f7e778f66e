"""Chat session controller.

A ``ChatSession`` binds to one room at a time, loads its history, keeps a
realtime subscription open for it, and reconciles optimistic sends with the
server-confirmed records.

Every ``bind()`` call cancels the token of the previous one. Each step of a
bind re-checks its token after awaiting, so a slow response for a room the
session has already left is dropped instead of overwriting newer state.
"""

from __future__ import annotations

import dataclasses
import itertools
import logging
from enum import Enum
from typing import Callable, Optional, Union

from ...core.logging_utils import log_event
from ...core.time_utils import now_epoch_ms, now_iso
from .constants import ROOM_ACCESS_ERROR, TEMP_ID_PREFIX
from .errors import ChatError
from .feed import FeedSubscription, RealtimeFeed
from .models import ChatRoom, Message, MessageStatus, OutgoingMessage
from .normalizer import normalize_message, sort_messages
from .realtime import STATUS_CHANNEL_ERROR, STATUS_CLOSED, STATUS_TIMED_OUT
from .rest import UploadSource
from .service import ChatService

logger = logging.getLogger(__name__)

HISTORY_LOAD_ERROR = "Could not load messages."
REALTIME_ERROR = "Live updates are unavailable."
LOCAL_SENDER_ID = "me"
LOST_STATUSES = frozenset({STATUS_CHANNEL_ERROR, STATUS_CLOSED, STATUS_TIMED_OUT})

ChangeListener = Callable[["ChatSession"], None]


class ChatSessionState(str, Enum):
    UNBOUND = "unbound"
    RESOLVING_ROOM = "resolving_room"
    ROOM_READY = "room_ready"
    LIVE = "live"


class CancellationToken:
    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class ChatSession:
    def __init__(
        self,
        service: ChatService,
        feed: Optional[RealtimeFeed] = None,
        *,
        on_change: Optional[ChangeListener] = None,
    ) -> None:
        self._service = service
        self._feed = feed
        self._on_change = on_change
        self._state = ChatSessionState.UNBOUND
        self._room_id: Optional[str] = None
        self._room: Optional[ChatRoom] = None
        self._messages: list[Message] = []
        self._is_loading = False
        self._error: Optional[str] = None
        self._token: Optional[CancellationToken] = None
        self._subscription: Optional[FeedSubscription] = None
        self._temp_counter = itertools.count(1)
        self._closed = False

    @property
    def state(self) -> ChatSessionState:
        return self._state

    @property
    def room_id(self) -> Optional[str]:
        return self._room_id

    @property
    def room(self) -> Optional[ChatRoom]:
        return self._room

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def subscription(self) -> Optional[FeedSubscription]:
        return self._subscription

    @property
    def current_user_id(self) -> Optional[str]:
        return self._service.current_user_id()

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _changed(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception as exc:
            logger.warning("Chat session change listener failed: %s", exc)

    async def bind(
        self,
        *,
        engagement_id: Optional[str] = None,
        room_id: Optional[str] = None,
    ) -> None:
        """Bind to ``room_id``, or to the room of ``engagement_id``.

        With neither, the session releases its current room and stays idle.
        Resolution and loading failures are recorded in ``error``.
        """
        if self._closed:
            raise RuntimeError("ChatSession is closed")
        if self._token is not None:
            self._token.cancel()
        token = CancellationToken()
        self._token = token

        if room_id:
            await self._bind_explicit_room(room_id, token)
            return
        if engagement_id:
            await self._bind_engagement(engagement_id, token)
            return

        await self._detach(clear=True)
        self._state = ChatSessionState.UNBOUND
        self._is_loading = False
        self._error = None
        self._changed()

    async def _bind_explicit_room(self, room_id: str, token: CancellationToken) -> None:
        needs_attach = (
            room_id != self._room_id or self._state is not ChatSessionState.LIVE
        )
        if room_id != self._room_id:
            self._state = ChatSessionState.ROOM_READY
            await self._detach(clear=True)
            if token.cancelled:
                return
            self._room_id = room_id
            self._room = None
        self._is_loading = True
        self._error = None
        self._changed()

        await self._load_room_details(room_id, token)
        if token.cancelled:
            return
        if needs_attach:
            await self._attach_room(room_id, token)
        else:
            self._is_loading = False
            self._changed()

    async def _bind_engagement(
        self, engagement_id: str, token: CancellationToken
    ) -> None:
        was_live = self._state is ChatSessionState.LIVE
        self._state = ChatSessionState.RESOLVING_ROOM
        self._is_loading = True
        self._error = None
        self._changed()
        try:
            summary = await self._service.get_room_by_engagement(engagement_id)
        except ChatError as exc:
            if token.cancelled:
                return
            log_event(
                logger,
                logging.WARNING,
                "chat.session.room_resolution_failed",
                engagement_id=engagement_id,
                exc=exc,
            )
            await self._detach(clear=True)
            if token.cancelled:
                return
            self._room_id = None
            self._room = None
            self._state = ChatSessionState.UNBOUND
            self._is_loading = False
            self._error = ROOM_ACCESS_ERROR
            self._changed()
            return
        if token.cancelled:
            return
        log_event(
            logger,
            logging.INFO,
            "chat.session.room_resolved",
            engagement_id=engagement_id,
            room_id=summary.id,
        )
        room_changed = summary.id != self._room_id
        needs_attach = room_changed or not was_live or self._subscription is None
        if room_changed:
            await self._detach(clear=True)
            if token.cancelled:
                return
            self._room_id = summary.id
            self._room = None
        self._changed()

        await self._load_room_details(summary.id, token)
        if token.cancelled:
            return
        if needs_attach:
            await self._attach_room(summary.id, token)
        else:
            self._state = ChatSessionState.LIVE
            self._is_loading = False
            self._changed()

    async def _load_room_details(self, room_id: str, token: CancellationToken) -> None:
        try:
            room = await self._service.get_room_by_id(room_id)
        except ChatError as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.session.room_details_failed",
                room_id=room_id,
                exc=exc,
            )
            return
        if token.cancelled:
            return
        self._room = room
        user_id = self.current_user_id
        if room.member_ids and not room.has_member(user_id):
            log_event(
                logger,
                logging.WARNING,
                "chat.session.not_a_member",
                room_id=room_id,
                user_id=user_id,
            )
        self._changed()

    async def _attach_room(self, room_id: str, token: CancellationToken) -> None:
        self._state = ChatSessionState.ROOM_READY
        self._is_loading = True
        self._changed()

        try:
            records = await self._service.get_messages(room_id)
        except ChatError as exc:
            if token.cancelled:
                return
            log_event(
                logger,
                logging.ERROR,
                "chat.session.history_failed",
                room_id=room_id,
                exc=exc,
            )
            self._error = HISTORY_LOAD_ERROR
        else:
            if token.cancelled:
                return
            self._messages = sort_messages([normalize_message(r) for r in records])
            log_event(
                logger,
                logging.INFO,
                "chat.session.history_loaded",
                room_id=room_id,
                count=len(self._messages),
            )
        self._changed()

        if self._feed is None:
            self._is_loading = False
            self._changed()
            return

        try:
            handle = await self._feed.subscribe(
                room_id,
                self._insert_handler(room_id, token),
                self._status_handler(room_id, token),
            )
        except Exception as exc:
            if token.cancelled:
                return
            log_event(
                logger,
                logging.ERROR,
                "chat.session.subscribe_failed",
                room_id=room_id,
                exc=exc,
            )
            self._error = self._error or REALTIME_ERROR
            self._is_loading = False
            self._changed()
            return
        if token.cancelled:
            await self._feed.unsubscribe(handle)
            return
        self._subscription = handle
        self._state = ChatSessionState.LIVE
        self._is_loading = False
        self._changed()

    def _insert_handler(
        self, room_id: str, token: CancellationToken
    ) -> Callable[[Message], None]:
        def _on_insert(message: Message) -> None:
            if token.cancelled or self._room_id != room_id:
                return
            self.ingest(message)

        return _on_insert

    def _status_handler(
        self, room_id: str, token: CancellationToken
    ) -> Callable[[str], None]:
        def _on_status(status: str) -> None:
            if status not in LOST_STATUSES:
                return
            if token.cancelled or self._room_id != room_id:
                return
            if self._state is not ChatSessionState.LIVE:
                return
            log_event(
                logger,
                logging.WARNING,
                "chat.session.realtime_lost",
                room_id=room_id,
                status=status,
            )
            self._state = ChatSessionState.ROOM_READY
            self._error = REALTIME_ERROR
            self._changed()

        return _on_status

    def ingest(self, message: Message) -> bool:
        """Append a feed message unless its id is already present."""
        if not message.id:
            logger.debug("Dropping realtime message without an id")
            return False
        if any(existing.id == message.id for existing in self._messages):
            return False
        self._messages.append(message)
        self._changed()
        return True

    async def _detach(self, *, clear: bool) -> None:
        subscription = self._subscription
        self._subscription = None
        if self._feed is not None:
            await self._feed.unsubscribe(subscription)
            await self._feed.unsubscribe(self._feed.current)
        if clear:
            self._messages = []

    def _next_temp_id(self) -> str:
        return f"{TEMP_ID_PREFIX}{now_epoch_ms()}-{next(self._temp_counter)}"

    async def send_message(
        self, content: Union[OutgoingMessage, str]
    ) -> Optional[Message]:
        """Send optimistically; returns the confirmed message.

        Returns ``None`` without sending when no room is bound. On failure the
        placeholder is removed and the error propagates. A confirmation
        without an id keeps the placeholder id but is marked sent.
        """
        if isinstance(content, str):
            content = OutgoingMessage(text=content)
        room_id = self._room_id
        if not room_id:
            return None

        temp_id = self._next_temp_id()
        placeholder = Message(
            id=temp_id,
            sender_id=self.current_user_id or LOCAL_SENDER_ID,
            type=content.type,
            timestamp=now_iso(),
            created_at=now_epoch_ms(),
            status=MessageStatus.SENDING,
            text=content.text,
            file_url=content.resolved_file_url,
            file_name=content.file_name,
            file_size=content.file_size,
            reply_to_message_id=content.reply_to_message_id,
        )
        self._messages.append(placeholder)
        self._changed()

        try:
            record = await self._service.send_message(room_id, content)
        except BaseException as exc:
            self._messages = [m for m in self._messages if m.id != temp_id]
            self._changed()
            log_event(
                logger,
                logging.ERROR,
                "chat.session.send_failed",
                room_id=room_id,
                temp_id=temp_id,
                exc=exc,
            )
            raise

        confirmed = normalize_message(record)
        if not confirmed.id:
            log_event(
                logger,
                logging.WARNING,
                "chat.session.send_missing_id",
                room_id=room_id,
                temp_id=temp_id,
            )
            confirmed = dataclasses.replace(confirmed, id=temp_id)
        self._reconcile(temp_id, confirmed)
        return confirmed

    def _reconcile(self, temp_id: str, confirmed: Message) -> None:
        already_delivered = confirmed.id != temp_id and any(
            m.id == confirmed.id for m in self._messages
        )
        if already_delivered:
            self._messages = [m for m in self._messages if m.id != temp_id]
        else:
            self._messages = [
                confirmed if m.id == temp_id else m for m in self._messages
            ]
        self._changed()

    async def upload_file(
        self,
        source: UploadSource,
        *,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> str:
        return await self._service.upload_file(
            source, filename=filename, content_type=content_type
        )

    async def mark_as_read(self, up_to_message_id: Optional[str] = None) -> None:
        if not self._room_id:
            return
        await self._service.mark_as_read(self._room_id, up_to_message_id)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._token is not None:
            self._token.cancel()
        await self._detach(clear=False)
        self._state = ChatSessionState.UNBOUND
        self._is_loading = False
        self._changed()


__all__ = [
    "CancellationToken",
    "ChatSession",
    "ChatSessionState",
    "HISTORY_LOAD_ERROR",
    "REALTIME_ERROR",
]
