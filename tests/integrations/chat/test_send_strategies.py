import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from vacei_chat.core.session_store import SessionStore
from vacei_chat.integrations.chat.direct import DirectInsertClient
from vacei_chat.integrations.chat.errors import ChatDirectInsertError, ChatSendError
from vacei_chat.integrations.chat.models import MessageType, OutgoingMessage
from vacei_chat.integrations.chat.rest import ChatRestClient
from vacei_chat.integrations.chat.send_strategies import (
    DirectInsertStrategy,
    DualPathSender,
    RestApiStrategy,
    SendAttempt,
)

SUPABASE_URL = "https://proj.supabase.test"
BACKEND_URL = "https://api.vacei.test/api/v1"


def _direct(session_file: Path, handler) -> DirectInsertClient:
    return DirectInsertClient(
        supabase_url=SUPABASE_URL,
        anon_key="anon-key",
        session_store=SessionStore(session_file),
        table="ChatMessage",
        transport=httpx.MockTransport(handler),
    )


def _rest(session_file: Path, handler) -> ChatRestClient:
    return ChatRestClient(
        base_url=BACKEND_URL,
        session_store=SessionStore(session_file),
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.anyio
async def test_direct_insert_posts_row_with_postgrest_headers(session_file: Path) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "m-1", "roomId": "r1"})

    client = _direct(session_file, handler)
    try:
        record = await client.insert({"roomId": "r1", "content": "hi"})
    finally:
        await client.close()

    request = seen[0]
    assert record == {"id": "m-1", "roomId": "r1"}
    assert str(request.url) == f"{SUPABASE_URL}/rest/v1/ChatMessage"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer jwt-token"
    assert request.headers["Prefer"] == "return=representation"


@pytest.mark.anyio
async def test_direct_insert_uses_anon_key_without_session(tmp_path: Path) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json=[{"id": "m-2"}])

    client = _direct(tmp_path / "missing.json", handler)
    try:
        record = await client.insert({"roomId": "r1"})
    finally:
        await client.close()

    assert record == {"id": "m-2"}
    assert seen[0].headers["Authorization"] == "Bearer anon-key"


@pytest.mark.anyio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(403, json={"message": "new row violates row-level security"}),
        httpx.Response(201, text="not json"),
        httpx.Response(201, json=[]),
    ],
)
async def test_direct_insert_failures_raise(session_file: Path, response) -> None:
    client = _direct(session_file, lambda request: response)
    try:
        with pytest.raises(ChatDirectInsertError):
            await client.insert({"roomId": "r1"})
    finally:
        await client.close()


def test_direct_row_carries_room_sender_and_content() -> None:
    strategy = DirectInsertStrategy(None)
    row = strategy.build_row(
        "r1",
        OutgoingMessage(
            type=MessageType.DOCUMENT,
            text="see attached",
            file_url="https://files.test/a.pdf",
            file_name="a.pdf",
            file_size="12",
        ),
        sender_id="u1",
    )
    assert row["roomId"] == "r1"
    assert row["senderId"] == "u1"
    assert row["type"] == "DOCUMENT"
    assert row["fileUrl"] == "https://files.test/a.pdf"
    assert row["sentAt"].endswith("Z")


@pytest.mark.anyio
async def test_rest_payload_duplicates_text(session_file: Path) -> None:
    rest = _rest(session_file, lambda request: httpx.Response(200))
    try:
        payload = RestApiStrategy(rest).build_payload(OutgoingMessage(text="hello"))
    finally:
        await rest.close()
    assert payload == {"content": "hello", "text": "hello", "type": "TEXT"}


@pytest.mark.anyio
async def test_unconfigured_direct_strategy_reports_failure() -> None:
    attempt = await DirectInsertStrategy(None).attempt(
        "r1", OutgoingMessage(text="x"), sender_id="u1"
    )
    assert not attempt.ok
    assert isinstance(attempt.error, ChatDirectInsertError)


@pytest.mark.anyio
async def test_direct_failure_falls_back_to_rest(
    session_file: Path, caplog: pytest.LogCaptureFixture
) -> None:
    rest_bodies: list[dict[str, Any]] = []

    def direct_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "db down"})

    def rest_handler(request: httpx.Request) -> httpx.Response:
        rest_bodies.append(json.loads(request.content))
        return httpx.Response(
            201,
            json={"data": {"id": "srv-9", "roomId": "r1", "content": "hello"}},
        )

    direct = _direct(session_file, direct_handler)
    rest = _rest(session_file, rest_handler)
    sender = DualPathSender([DirectInsertStrategy(direct), RestApiStrategy(rest)])
    try:
        with caplog.at_level(logging.INFO):
            record = await sender.send("r1", OutgoingMessage(text="hello"), sender_id="u1")
    finally:
        await direct.close()
        await rest.close()

    assert record["id"] == "srv-9"
    assert rest_bodies == [{"content": "hello", "text": "hello", "type": "TEXT"}]
    messages = [r.getMessage() for r in caplog.records]
    assert any('"chat.send.path_failed"' in m and '"direct"' in m for m in messages)
    assert any('"chat.send.fallback_succeeded"' in m for m in messages)


@pytest.mark.anyio
async def test_direct_success_runs_hook_and_skips_rest(session_file: Path) -> None:
    hooked: list[tuple[str, Optional[str], str]] = []

    async def on_inserted(room_id: str, content: OutgoingMessage, record: dict) -> None:
        hooked.append((room_id, content.text, record["id"]))

    def rest_handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("REST fallback must not run")

    direct = _direct(session_file, lambda request: httpx.Response(201, json={"id": "m-5"}))
    rest = _rest(session_file, rest_handler)
    sender = DualPathSender(
        [DirectInsertStrategy(direct, on_inserted=on_inserted), RestApiStrategy(rest)]
    )
    try:
        record = await sender.send("r1", OutgoingMessage(text="hey"), sender_id="u1")
        await sender.aclose()
    finally:
        await direct.close()
        await rest.close()

    assert record == {"id": "m-5"}
    assert hooked == [("r1", "hey", "m-5")]


@pytest.mark.anyio
async def test_post_insert_hook_runs_in_background(session_file: Path) -> None:
    release = asyncio.Event()
    finished: list[str] = []

    async def on_inserted(room_id: str, content: OutgoingMessage, record: dict) -> None:
        await release.wait()
        finished.append(record["id"])

    direct = _direct(session_file, lambda request: httpx.Response(201, json={"id": "m-6"}))
    strategy = DirectInsertStrategy(direct, on_inserted=on_inserted)
    sender = DualPathSender([strategy])
    try:
        record = await sender.send("r1", OutgoingMessage(text="hi"), sender_id="u1")
        assert record == {"id": "m-6"}
        assert finished == []

        release.set()
        await sender.aclose()
    finally:
        await direct.close()

    assert finished == ["m-6"]


@pytest.mark.anyio
async def test_failing_post_insert_hook_is_logged(
    session_file: Path, caplog: pytest.LogCaptureFixture
) -> None:
    async def on_inserted(room_id: str, content: OutgoingMessage, record: dict) -> None:
        raise RuntimeError("notify down")

    direct = _direct(session_file, lambda request: httpx.Response(201, json={"id": "m-7"}))
    sender = DualPathSender([DirectInsertStrategy(direct, on_inserted=on_inserted)])
    caplog.set_level(logging.WARNING)
    try:
        record = await sender.send("r1", OutgoingMessage(text="hi"), sender_id="u1")
        await sender.aclose()
        await asyncio.sleep(0)
    finally:
        await direct.close()

    assert record == {"id": "m-7"}
    assert any(
        '"chat.send.post_insert_failed"' in r.getMessage() for r in caplog.records
    )


@pytest.mark.anyio
async def test_all_paths_failing_raises_send_error(session_file: Path) -> None:
    direct = _direct(session_file, lambda request: httpx.Response(400, json={}))
    rest = _rest(session_file, lambda request: httpx.Response(422, json={"error": "bad"}))
    sender = DualPathSender([DirectInsertStrategy(direct), RestApiStrategy(rest)])
    try:
        with pytest.raises(ChatSendError) as excinfo:
            await sender.send("r1", OutgoingMessage(text="x"), sender_id="u1")
    finally:
        await direct.close()
        await rest.close()

    assert len(excinfo.value.failures) == 2
    assert isinstance(excinfo.value.failures[0], ChatDirectInsertError)


@pytest.mark.anyio
async def test_rest_reply_without_record_counts_as_failure(session_file: Path) -> None:
    rest = _rest(session_file, lambda request: httpx.Response(200, json={"data": {}}))
    try:
        attempt = await RestApiStrategy(rest).attempt(
            "r1", OutgoingMessage(text="x"), sender_id="u1"
        )
    finally:
        await rest.close()
    assert attempt == SendAttempt(strategy="rest", error=attempt.error)
    assert not attempt.ok


def test_sender_requires_a_strategy() -> None:
    with pytest.raises(ValueError):
        DualPathSender([])
