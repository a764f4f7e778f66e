from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed

from .constants import PHOENIX_TOPIC, REALTIME_PROTOCOL_VERSION, REALTIME_TOPIC_PREFIX
from .errors import RealtimeError

RecordCallback = Callable[[dict[str, Any]], Union[Awaitable[None], None]]
StatusCallback = Callable[[str], None]

STATUS_SUBSCRIBED = "SUBSCRIBED"
STATUS_CHANNEL_ERROR = "CHANNEL_ERROR"
STATUS_TIMED_OUT = "TIMED_OUT"
STATUS_CLOSED = "CLOSED"

CHANNEL_CLOSED = "closed"
CHANNEL_JOINING = "joining"
CHANNEL_JOINED = "joined"
CHANNEL_ERRORED = "errored"


@dataclass(frozen=True)
class RealtimeFrame:
    topic: str
    event: str
    payload: Any = None
    ref: Optional[str] = None


def parse_realtime_frame(frame: str | bytes | dict[str, Any]) -> RealtimeFrame:
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8")
    try:
        payload = json.loads(frame) if isinstance(frame, str) else dict(frame)
    except ValueError as exc:
        raise RealtimeError(f"Realtime frame is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise RealtimeError("Realtime frame must be a JSON object")
    topic = payload.get("topic")
    event = payload.get("event")
    if not isinstance(topic, str) or not isinstance(event, str):
        raise RealtimeError(f"Realtime frame missing topic/event: {payload!r}")
    ref = payload.get("ref")
    return RealtimeFrame(
        topic=topic,
        event=event,
        payload=payload.get("payload"),
        ref=str(ref) if ref is not None else None,
    )


def build_frame(
    topic: str, event: str, payload: Any, ref: Optional[str]
) -> dict[str, Any]:
    return {"topic": topic, "event": event, "payload": payload, "ref": ref}


@dataclass(frozen=True)
class PostgresChangeBinding:
    event: str
    schema: str
    table: str
    filter: Optional[str]
    callback: RecordCallback

    def to_config(self) -> dict[str, Any]:
        config = {"event": self.event, "schema": self.schema, "table": self.table}
        if self.filter:
            config["filter"] = self.filter
        return config

    def matches(self, data: dict[str, Any]) -> bool:
        change_type = data.get("type") or data.get("eventType")
        if self.event != "*" and change_type != self.event:
            return False
        if data.get("schema") not in (None, self.schema):
            return False
        return data.get("table") in (None, self.table)


class RealtimeChannel:
    def __init__(self, client: "RealtimeClient", name: str) -> None:
        self._client = client
        self.name = name
        self.topic = f"{REALTIME_TOPIC_PREFIX}{name}"
        self.state = CHANNEL_CLOSED
        self._bindings: list[PostgresChangeBinding] = []
        self._join_ref: Optional[str] = None
        self._join_future: Optional[asyncio.Future[dict[str, Any]]] = None
        self._on_status: Optional[StatusCallback] = None

    def on_insert(
        self,
        *,
        schema: str,
        table: str,
        callback: RecordCallback,
        filter: Optional[str] = None,
    ) -> "RealtimeChannel":
        self._bindings.append(
            PostgresChangeBinding(
                event="INSERT",
                schema=schema,
                table=table,
                filter=filter,
                callback=callback,
            )
        )
        return self

    def join_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "config": {
                "broadcast": {"ack": False, "self": False},
                "presence": {"key": ""},
                "postgres_changes": [binding.to_config() for binding in self._bindings],
                "private": False,
            }
        }
        if self._client.access_token:
            payload["access_token"] = self._client.access_token
        return payload

    def _notify_status(self, status: str) -> None:
        if self._on_status is None:
            return
        try:
            self._on_status(status)
        except Exception as exc:
            self._client.logger.debug("Realtime status callback failed: %s", exc)

    async def subscribe(self, on_status: Optional[StatusCallback] = None) -> None:
        if self.state in (CHANNEL_JOINING, CHANNEL_JOINED):
            raise RealtimeError(f"Channel {self.topic} is already subscribed")
        self._on_status = on_status
        await self._client.connect()
        self._client.register(self)
        loop = asyncio.get_running_loop()
        self._join_future = loop.create_future()
        self._join_ref = self._client.make_ref()
        self.state = CHANNEL_JOINING
        await self._client.send(
            build_frame(self.topic, "phx_join", self.join_payload(), self._join_ref)
        )
        try:
            reply = await asyncio.wait_for(
                self._join_future, timeout=self._client.join_timeout
            )
        except asyncio.TimeoutError as exc:
            self.state = CHANNEL_ERRORED
            self._notify_status(STATUS_TIMED_OUT)
            raise RealtimeError(f"Timed out joining {self.topic}") from exc
        finally:
            self._join_future = None
        if self.state != CHANNEL_JOINING:
            raise RealtimeError(f"Realtime connection lost while joining {self.topic}")
        if reply.get("status") != "ok":
            self.state = CHANNEL_ERRORED
            self._notify_status(STATUS_CHANNEL_ERROR)
            raise RealtimeError(
                f"Realtime join rejected for {self.topic}: {reply.get('response')!r}"
            )
        self.state = CHANNEL_JOINED
        self._notify_status(STATUS_SUBSCRIBED)

    async def unsubscribe(self) -> None:
        if self._join_future is not None and not self._join_future.done():
            self._join_future.set_exception(
                RealtimeError(f"Channel {self.topic} closed before join completed")
            )
        was_open = self.state in (CHANNEL_JOINING, CHANNEL_JOINED)
        self.state = CHANNEL_CLOSED
        self._client.unregister(self)
        if was_open and self._client.connected:
            await self._client.send(
                build_frame(self.topic, "phx_leave", {}, self._client.make_ref())
            )
        self._notify_status(STATUS_CLOSED)

    async def push_access_token(self, token: str) -> None:
        if self.state != CHANNEL_JOINED:
            return
        await self._client.send(
            build_frame(
                self.topic,
                "access_token",
                {"access_token": token},
                self._client.make_ref(),
            )
        )

    def mark_disconnected(self) -> None:
        if self._join_future is not None and not self._join_future.done():
            self._join_future.set_exception(
                RealtimeError(f"Realtime connection lost while joining {self.topic}")
            )
        if self.state != CHANNEL_CLOSED:
            self.state = CHANNEL_ERRORED
            self._notify_status(STATUS_CHANNEL_ERROR)

    async def handle_frame(self, frame: RealtimeFrame) -> None:
        payload = frame.payload if isinstance(frame.payload, dict) else {}
        if frame.event == "phx_reply":
            if (
                frame.ref is not None
                and frame.ref == self._join_ref
                and self._join_future is not None
                and not self._join_future.done()
            ):
                self._join_future.set_result(payload)
            return
        if frame.event == "postgres_changes":
            data = payload.get("data")
            if isinstance(data, dict):
                await self._dispatch_change(data)
            return
        if frame.event in ("phx_error", "phx_close"):
            if frame.ref is not None and frame.ref != self._join_ref:
                return
            self.state = CHANNEL_ERRORED if frame.event == "phx_error" else CHANNEL_CLOSED
            self._notify_status(
                STATUS_CHANNEL_ERROR if frame.event == "phx_error" else STATUS_CLOSED
            )
            return
        self._client.logger.debug(
            "Realtime channel %s ignored event %s", self.topic, frame.event
        )

    async def _dispatch_change(self, data: dict[str, Any]) -> None:
        record = data.get("record") or data.get("new")
        if not isinstance(record, dict):
            return
        for binding in self._bindings:
            if not binding.matches(data):
                continue
            try:
                result = binding.callback(record)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                self._client.logger.warning(
                    "Realtime insert callback failed on %s: %s", self.topic, exc
                )


class RealtimeClient:
    """Phoenix channel client for the realtime service.

    One websocket is shared by every channel. The connection is opened on the
    first subscribe and is not re-established automatically when it drops.
    """

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        logger: logging.Logger,
        heartbeat_interval_seconds: float = 25.0,
        join_timeout_seconds: float = 10.0,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self.logger = logger
        self._heartbeat_interval = heartbeat_interval_seconds
        self.join_timeout = join_timeout_seconds
        self.access_token: Optional[str] = None
        self._channels: dict[str, RealtimeChannel] = {}
        self._websocket: Any = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._connect_lock = asyncio.Lock()
        self._ref = 0

    @property
    def endpoint_url(self) -> str:
        query = urlencode({"apikey": self._api_key, "vsn": REALTIME_PROTOCOL_VERSION})
        return f"{self._url}?{query}"

    @property
    def connected(self) -> bool:
        return self._websocket is not None

    @property
    def channels(self) -> tuple[RealtimeChannel, ...]:
        return tuple(self._channels.values())

    def make_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    def channel(self, name: str) -> RealtimeChannel:
        return RealtimeChannel(self, name)

    def register(self, channel: RealtimeChannel) -> None:
        self._channels[channel.topic] = channel

    def unregister(self, channel: RealtimeChannel) -> None:
        if self._channels.get(channel.topic) is channel:
            del self._channels[channel.topic]

    async def set_auth(self, token: Optional[str]) -> None:
        self.access_token = token or None
        if not token:
            return
        for channel in list(self._channels.values()):
            await channel.push_access_token(token)

    async def connect(self) -> None:
        async with self._connect_lock:
            if self._websocket is not None:
                return
            self._websocket = await websockets.connect(self.endpoint_url)
            self._reader_task = asyncio.create_task(self._read_loop(self._websocket))
            self._heartbeat_task = asyncio.create_task(
                self._heartbeat_loop(self._websocket)
            )
            self.logger.info("Realtime connection opened")

    async def send(self, frame: dict[str, Any]) -> None:
        websocket = self._websocket
        if websocket is None:
            raise RealtimeError("Realtime connection is not open")
        try:
            await websocket.send(json.dumps(frame))
        except ConnectionClosed as exc:
            raise RealtimeError(f"Realtime connection closed: {exc}") from exc

    async def remove_channel(self, channel: RealtimeChannel) -> None:
        await channel.unsubscribe()

    async def close(self) -> None:
        for channel in list(self._channels.values()):
            with contextlib.suppress(Exception):
                await channel.unsubscribe()
        await _cancel_task(self._heartbeat_task, self.logger)
        self._heartbeat_task = None
        websocket = self._websocket
        self._websocket = None
        if websocket is not None:
            with contextlib.suppress(Exception):
                await websocket.close()
        await _cancel_task(self._reader_task, self.logger)
        self._reader_task = None

    async def _read_loop(self, websocket: Any) -> None:
        try:
            async for raw_message in websocket:
                try:
                    frame = parse_realtime_frame(raw_message)
                except RealtimeError as exc:
                    self.logger.warning("Dropping malformed realtime frame: %s", exc)
                    continue
                if frame.topic == PHOENIX_TOPIC:
                    continue
                channel = self._channels.get(frame.topic)
                if channel is not None:
                    await channel.handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            self.logger.info("Realtime socket closed: %s", exc)
        finally:
            if self._websocket is websocket:
                self._websocket = None
                for channel in list(self._channels.values()):
                    channel.mark_disconnected()

    async def _heartbeat_loop(self, websocket: Any) -> None:
        while self._websocket is websocket:
            await asyncio.sleep(self._heartbeat_interval)
            if self._websocket is not websocket:
                return
            try:
                await self.send(build_frame(PHOENIX_TOPIC, "heartbeat", {}, self.make_ref()))
            except RealtimeError as exc:
                self.logger.debug("Realtime heartbeat failed: %s", exc)
                return


async def _cancel_task(task: Optional[asyncio.Task[None]], logger: logging.Logger) -> None:
    if task is None:
        return
    if not task.done():
        task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception as exc:
        logger.debug("Realtime task ended with error: %s", exc)


__all__ = [
    "CHANNEL_CLOSED",
    "CHANNEL_ERRORED",
    "CHANNEL_JOINED",
    "CHANNEL_JOINING",
    "PostgresChangeBinding",
    "RealtimeChannel",
    "RealtimeClient",
    "RealtimeFrame",
    "STATUS_CHANNEL_ERROR",
    "STATUS_CLOSED",
    "STATUS_SUBSCRIBED",
    "STATUS_TIMED_OUT",
    "build_frame",
    "parse_realtime_frame",
]
