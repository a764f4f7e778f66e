"""Test harness configuration.

This repo uses a `src/` layout. In some developer environments an older
installed `vacei_chat` package can shadow the local sources.

Ensure tests always import the in-repo code.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import pytest

DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS = 60


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    src_path = str(src_dir)
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


def pytest_collection_modifyitems(
    session: pytest.Session, config: pytest.Config, items: list[pytest.Item]
) -> None:
    """
    Apply a default per-test timeout to non-integration tests.

    This relies on `pytest-timeout` when installed; if it isn't installed, the
    marker is inert but still documents the intent.
    """
    _ = session, config
    for item in items:
        if item.get_closest_marker("integration") is not None:
            continue
        item.add_marker(pytest.mark.timeout(DEFAULT_NON_INTEGRATION_TIMEOUT_SECONDS))


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


USER_ID = "5f0c2c1e-8d1a-4c53-9f5e-2b7f4f0a9c11"
PARTNER_ID = "0a1b2c3d-4e5f-4a6b-8c7d-9e0f1a2b3c4d"


@pytest.fixture()
def session_file(tmp_path: Path) -> Path:
    """Session file holding a signed-in user, as the browser would persist it."""
    path = tmp_path / "session.json"
    path.write_text(
        json.dumps(
            {
                "user": json.dumps({"id": USER_ID, "name": "Ada Auditor"}),
                "token": "jwt-token",
                "vacei-active-company": "company-9",
                "userRole": "ORG_EMPLOYEE",
            }
        ),
        encoding="utf-8",
    )
    return path


class FakeWebSocket:
    """In-memory stand-in for a realtime websocket connection."""

    def __init__(self, *, join_status: str = "ok", auto_reply: bool = True) -> None:
        self.sent: list[dict[str, Any]] = []
        self.connected_urls: list[str] = []
        self.join_status = join_status
        self.auto_reply = auto_reply
        self.closed = False
        self._incoming: Optional[asyncio.Queue[Optional[str]]] = None

    @property
    def incoming(self) -> "asyncio.Queue[Optional[str]]":
        if self._incoming is None:
            self._incoming = asyncio.Queue()
        return self._incoming

    def push(self, frame: dict[str, Any]) -> None:
        self.incoming.put_nowait(json.dumps(frame))

    def push_insert(self, topic: str, record: dict[str, Any], *, table: str = "ChatMessage") -> None:
        self.push(
            {
                "topic": topic,
                "event": "postgres_changes",
                "payload": {
                    "data": {
                        "type": "INSERT",
                        "schema": "public",
                        "table": table,
                        "record": record,
                    },
                    "ids": [1],
                },
                "ref": None,
            }
        )

    def events(self, name: str) -> list[dict[str, Any]]:
        return [frame for frame in self.sent if frame.get("event") == name]

    async def send(self, raw: str) -> None:
        frame = json.loads(raw)
        self.sent.append(frame)
        if self.auto_reply and frame.get("event") == "phx_join":
            self.push(
                {
                    "topic": frame["topic"],
                    "event": "phx_reply",
                    "payload": {"status": self.join_status, "response": {}},
                    "ref": frame["ref"],
                }
            )

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> str:
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.incoming.put_nowait(None)


@pytest.fixture()
def fake_websocket(monkeypatch: pytest.MonkeyPatch) -> FakeWebSocket:
    from vacei_chat.integrations.chat import realtime as realtime_module

    socket = FakeWebSocket()

    class _FakeWebSocketsModule:
        async def connect(self, url: str) -> FakeWebSocket:
            socket.connected_urls.append(url)
            return socket

    monkeypatch.setattr(realtime_module, "websockets", _FakeWebSocketsModule())
    return socket
