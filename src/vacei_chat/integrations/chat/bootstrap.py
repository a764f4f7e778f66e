"""Wire configuration into a ready-to-use chat runtime.

The runtime owns the shared HTTP clients and the realtime websocket; each
``new_session()`` gets its own feed so subscription exclusivity stays per
session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from ...core.config import ChatClientConfig
from ...core.logging_utils import log_event
from ...core.session_store import SessionStore
from .direct import DirectInsertClient
from .feed import RealtimeFeed
from .models import OutgoingMessage
from .realtime import RealtimeClient
from .rest import ChatRestClient
from .send_strategies import DirectInsertStrategy, DualPathSender, RestApiStrategy
from .service import ChatService
from .session import ChangeListener, ChatSession

logger = logging.getLogger(__name__)


@dataclass
class ChatRuntime:
    config: ChatClientConfig
    session_store: SessionStore
    rest: ChatRestClient
    service: ChatService
    direct: Optional[DirectInsertClient] = None
    realtime: Optional[RealtimeClient] = None
    sender: Optional[DualPathSender] = None

    def new_feed(self) -> Optional[RealtimeFeed]:
        if self.realtime is None:
            return None
        return RealtimeFeed(
            self.realtime,
            session_store=self.session_store,
            table=self.config.messages_table,
        )

    def new_session(self, *, on_change: Optional[ChangeListener] = None) -> ChatSession:
        return ChatSession(self.service, self.new_feed(), on_change=on_change)

    async def aclose(self) -> None:
        if self.sender is not None:
            await self.sender.aclose()
        if self.realtime is not None:
            await self.realtime.close()
        if self.direct is not None:
            await self.direct.close()
        await self.rest.close()

    async def __aenter__(self) -> "ChatRuntime":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.aclose()


def build_chat_runtime(
    config: ChatClientConfig,
    *,
    rest_transport: Optional[httpx.AsyncBaseTransport] = None,
    direct_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ChatRuntime:
    session_store = SessionStore(config.session_file)
    rest = ChatRestClient(
        base_url=config.backend_url,
        session_store=session_store,
        timeout_seconds=config.timeout_seconds,
        on_unauthorized=session_store.clear_auth,
        transport=rest_transport,
    )

    direct: Optional[DirectInsertClient] = None
    realtime: Optional[RealtimeClient] = None
    if config.direct_insert_enabled:
        assert config.supabase_url is not None
        assert config.supabase_anon_key is not None
        direct = DirectInsertClient(
            supabase_url=config.supabase_url,
            anon_key=config.supabase_anon_key,
            session_store=session_store,
            table=config.messages_table,
            timeout_seconds=config.timeout_seconds,
            transport=direct_transport,
        )
        realtime_url = config.realtime_url
        if realtime_url:
            realtime = RealtimeClient(
                url=realtime_url,
                api_key=config.supabase_anon_key,
                logger=logging.getLogger("vacei_chat.realtime"),
                heartbeat_interval_seconds=config.heartbeat_interval_seconds,
            )
    else:
        log_event(
            logger,
            logging.INFO,
            "chat.bootstrap.direct_path_disabled",
            reason="supabase_url or supabase_anon_key not configured",
        )

    service: Optional[ChatService] = None

    async def _notify_after_insert(
        room_id: str, content: OutgoingMessage, record: dict[str, Any]
    ) -> None:
        if service is None:
            return
        message_id = record.get("id")
        await service.notify_room_members(
            room_id,
            content.text or "",
            str(message_id) if message_id is not None else None,
        )

    sender = DualPathSender(
        [
            DirectInsertStrategy(direct, on_inserted=_notify_after_insert),
            RestApiStrategy(rest),
        ]
    )
    service = ChatService(
        rest=rest,
        sender=sender,
        session_store=session_store,
        read_receipts_enabled=config.read_receipts_enabled,
        direct_room_title=config.direct_room_title,
    )
    return ChatRuntime(
        config=config,
        session_store=session_store,
        rest=rest,
        service=service,
        direct=direct,
        realtime=realtime,
        sender=sender,
    )


__all__ = ["ChatRuntime", "build_chat_runtime"]
