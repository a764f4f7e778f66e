"""Two-stage message send.

The direct table insert is tried first; the chat backend's REST endpoint is
the fallback. Each stage reports a ``SendAttempt`` instead of raising, and
``DualPathSender`` only raises once every stage has failed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional, Protocol, Sequence

from ...core.logging_utils import log_event
from ...core.time_utils import now_iso
from .constants import ROOM_MESSAGES_PATH
from .direct import DirectInsertClient
from .errors import ChatAPIError, ChatDirectInsertError, ChatError, ChatSendError
from .models import OutgoingMessage
from .rest import ChatRestClient, unwrap_data

logger = logging.getLogger(__name__)

InsertedHook = Callable[
    [str, OutgoingMessage, dict[str, Any]], Coroutine[Any, Any, None]
]


@dataclass(frozen=True)
class SendAttempt:
    strategy: str
    record: Optional[dict[str, Any]] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.record is not None and self.error is None


class SendStrategy(Protocol):
    name: str

    async def attempt(
        self, room_id: str, content: OutgoingMessage, *, sender_id: str
    ) -> SendAttempt: ...


class DirectInsertStrategy:
    name = "direct"

    def __init__(
        self,
        client: Optional[DirectInsertClient],
        *,
        on_inserted: Optional[InsertedHook] = None,
    ) -> None:
        self._client = client
        self._on_inserted = on_inserted
        self._hook_tasks: set[asyncio.Task[None]] = set()

    def build_row(
        self, room_id: str, content: OutgoingMessage, *, sender_id: str
    ) -> dict[str, Any]:
        row: dict[str, Any] = {"roomId": room_id, "senderId": sender_id}
        row.update(content.to_wire())
        row["sentAt"] = now_iso()
        return row

    async def attempt(
        self, room_id: str, content: OutgoingMessage, *, sender_id: str
    ) -> SendAttempt:
        if self._client is None:
            return SendAttempt(
                strategy=self.name,
                error=ChatDirectInsertError("Direct insert is not configured"),
            )
        row = self.build_row(room_id, content, sender_id=sender_id)
        try:
            record = await self._client.insert(row)
        except ChatError as exc:
            return SendAttempt(strategy=self.name, error=exc)
        if self._on_inserted is not None:
            task = asyncio.create_task(self._on_inserted(room_id, content, record))
            self._hook_tasks.add(task)
            task.add_done_callback(self._hook_done)
        return SendAttempt(strategy=self.name, record=record)

    def _hook_done(self, task: "asyncio.Task[None]") -> None:
        self._hook_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_event(logger, logging.WARNING, "chat.send.post_insert_failed", exc=exc)

    async def aclose(self) -> None:
        """Wait for post-insert hooks still running."""
        if self._hook_tasks:
            await asyncio.gather(*list(self._hook_tasks), return_exceptions=True)


class RestApiStrategy:
    name = "rest"

    def __init__(self, rest: ChatRestClient) -> None:
        self._rest = rest

    def build_payload(self, content: OutgoingMessage) -> dict[str, Any]:
        payload = content.to_wire()
        if content.text is not None:
            payload["text"] = content.text
        return payload

    async def attempt(
        self, room_id: str, content: OutgoingMessage, *, sender_id: str
    ) -> SendAttempt:
        _ = sender_id  # the backend derives the sender from the bearer token
        path = ROOM_MESSAGES_PATH.format(room_id=room_id)
        try:
            response = await self._rest.post(path, self.build_payload(content))
        except ChatError as exc:
            return SendAttempt(strategy=self.name, error=exc)
        record = unwrap_data(response)
        if not isinstance(record, dict) or not record:
            return SendAttempt(
                strategy=self.name,
                error=ChatAPIError(f"Chat API returned no message record for {path}"),
            )
        return SendAttempt(strategy=self.name, record=record)


class DualPathSender:
    def __init__(self, strategies: Sequence[SendStrategy]) -> None:
        if not strategies:
            raise ValueError("DualPathSender needs at least one strategy")
        self._strategies = tuple(strategies)

    @property
    def strategies(self) -> tuple[SendStrategy, ...]:
        return self._strategies

    async def aclose(self) -> None:
        for strategy in self._strategies:
            close = getattr(strategy, "aclose", None)
            if close is not None:
                await close()

    async def send(
        self, room_id: str, content: OutgoingMessage, *, sender_id: str
    ) -> dict[str, Any]:
        failures: list[BaseException] = []
        for strategy in self._strategies:
            attempt = await strategy.attempt(room_id, content, sender_id=sender_id)
            if attempt.ok and attempt.record is not None:
                if failures:
                    log_event(
                        logger,
                        logging.INFO,
                        "chat.send.fallback_succeeded",
                        room_id=room_id,
                        strategy=strategy.name,
                    )
                return attempt.record
            error = attempt.error or ChatAPIError(
                f"Send strategy {strategy.name} returned no record"
            )
            failures.append(error)
            log_event(
                logger,
                logging.WARNING,
                "chat.send.path_failed",
                room_id=room_id,
                strategy=strategy.name,
                exc=error,
            )
        log_event(
            logger,
            logging.ERROR,
            "chat.send.failed",
            room_id=room_id,
            attempts=len(failures),
        )
        raise ChatSendError(
            f"Message send failed for room {room_id} after {len(failures)} attempts",
            failures=failures,
        ) from failures[-1]


__all__ = [
    "DirectInsertStrategy",
    "DualPathSender",
    "RestApiStrategy",
    "SendAttempt",
    "SendStrategy",
]
