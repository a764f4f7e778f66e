"""Per-session realtime message feed.

A feed owns at most one live room subscription. Opening a subscription for
another room closes the previous one first.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from ...core.logging_utils import log_event
from ...core.session_store import SessionStore
from .constants import MESSAGES_SCHEMA
from .models import Message
from .normalizer import normalize_message
from .realtime import RealtimeChannel, RealtimeClient, StatusCallback

logger = logging.getLogger(__name__)

InsertCallback = Callable[[Message], Union[Awaitable[None], None]]


@dataclass
class FeedSubscription:
    room_id: str
    channel: RealtimeChannel
    closed: bool = False


class RealtimeFeed:
    def __init__(
        self,
        client: RealtimeClient,
        *,
        session_store: SessionStore,
        table: str,
        schema: str = MESSAGES_SCHEMA,
    ) -> None:
        self._client = client
        self._session_store = session_store
        self._table = table
        self._schema = schema
        self._current: Optional[FeedSubscription] = None

    @property
    def current(self) -> Optional[FeedSubscription]:
        return self._current

    async def refresh_auth(self) -> None:
        token = self._session_store.get_token()
        if token:
            await self._client.set_auth(token)

    async def subscribe(
        self,
        room_id: str,
        on_insert: InsertCallback,
        on_status: Optional[StatusCallback] = None,
    ) -> FeedSubscription:
        await self.refresh_auth()
        if self._current is not None:
            await self.unsubscribe(self._current)

        async def _on_record(record: dict[str, Any]) -> None:
            message = normalize_message(record)
            result = on_insert(message)
            if inspect.isawaitable(result):
                await result

        def _on_status(status: str) -> None:
            log_event(
                logger,
                logging.INFO,
                "chat.realtime.status",
                room_id=room_id,
                status=status,
            )
            if on_status is not None:
                on_status(status)

        channel = self._client.channel(f"room:{room_id}")
        channel.on_insert(
            schema=self._schema,
            table=self._table,
            filter=f"roomId=eq.{room_id}",
            callback=_on_record,
        )
        handle = FeedSubscription(room_id=room_id, channel=channel)
        self._current = handle
        try:
            await channel.subscribe(_on_status)
        except BaseException:
            await self.unsubscribe(handle)
            raise
        return handle

    async def unsubscribe(self, handle: Optional[FeedSubscription]) -> None:
        if handle is None or handle.closed:
            return
        handle.closed = True
        if self._current is handle:
            self._current = None
        try:
            await self._client.remove_channel(handle.channel)
        except Exception as exc:
            logger.debug("Realtime unsubscribe failed for %s: %s", handle.room_id, exc)

    async def close(self) -> None:
        await self.unsubscribe(self._current)
        await self._client.close()


__all__ = ["FeedSubscription", "InsertCallback", "RealtimeFeed"]
