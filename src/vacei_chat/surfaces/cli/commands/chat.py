from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer

from ....core.config import ChatClientConfig, load_config
from ....core.exceptions import ConfigError
from ....core.session_store import SessionStore
from ....integrations.chat.bootstrap import ChatRuntime, build_chat_runtime
from ....integrations.chat.errors import ChatError
from ....integrations.chat.models import Message, MessageType, OutgoingMessage
from ....integrations.chat.session import REALTIME_ERROR, ChatSession

IMAGE_SUFFIXES = frozenset({".png", ".jpg", ".jpeg", ".webp", ".bmp"})


def format_message_line(message: Message) -> str:
    moment = datetime.fromtimestamp(message.created_at / 1000, tz=timezone.utc)
    sender = message.sender_id or "?"
    if message.text:
        body = message.text
    elif message.file_url:
        body = f"[{message.type.value}] {message.file_name or message.file_url}"
    else:
        body = f"[{message.type.value}]"
    suffix = " (sending)" if message.is_temporary else ""
    return f"{moment:%H:%M} {sender}: {body}{suffix}"


def _message_json(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "sender_id": message.sender_id,
        "type": message.type.value,
        "text": message.text,
        "file_url": message.file_url,
        "file_name": message.file_name,
        "timestamp": message.timestamp,
        "status": message.status.value,
    }


def _attachment_type(path: Path) -> MessageType:
    suffix = path.suffix.lower()
    if suffix == ".gif":
        return MessageType.GIF
    if suffix in IMAGE_SUFFIXES:
        return MessageType.IMAGE
    return MessageType.DOCUMENT


def _load(config_path: Optional[Path], root: Optional[Path]) -> ChatClientConfig:
    try:
        return load_config(config_path, root=root)
    except ConfigError as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=2) from exc


def _require_target(room: Optional[str], engagement: Optional[str]) -> None:
    if not room and not engagement:
        typer.echo("Provide --room or --engagement.", err=True)
        raise typer.Exit(code=2)


async def _bind_or_exit(
    session: ChatSession, *, room: Optional[str], engagement: Optional[str]
) -> None:
    await session.bind(room_id=room, engagement_id=engagement)
    if session.room_id is None:
        typer.echo(session.error or "No chat room resolved.", err=True)
        raise typer.Exit(code=1)
    if session.error:
        typer.echo(f"Warning: {session.error}", err=True)


def register_chat_commands(app: typer.Typer) -> None:
    @app.command("whoami")
    def chat_whoami(
        config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
        root: Optional[Path] = typer.Option(None, "--root", help="Project root"),
    ) -> None:
        """Show the user id resolved from the persisted session."""
        config = _load(config_path, root)
        user_id = SessionStore(config.session_file).resolve_current_user_id()
        if not user_id:
            typer.echo("Not signed in.", err=True)
            raise typer.Exit(code=1)
        typer.echo(user_id)

    @app.command("history")
    def chat_history(
        room: Optional[str] = typer.Option(None, "--room", help="Chat room id"),
        engagement: Optional[str] = typer.Option(
            None, "--engagement", help="Engagement id"
        ),
        output_json: bool = typer.Option(False, "--json", help="Emit JSON output"),
        config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
        root: Optional[Path] = typer.Option(None, "--root", help="Project root"),
    ) -> None:
        """Print the message history of a room."""
        _require_target(room, engagement)
        config = _load(config_path, root)

        async def _run() -> list[Message]:
            async with build_chat_runtime(config) as runtime:
                session = ChatSession(runtime.service)
                async with session:
                    await _bind_or_exit(session, room=room, engagement=engagement)
                    return list(session.messages)

        messages = asyncio.run(_run())
        if output_json:
            rows = [_message_json(m) for m in messages]
            typer.echo(json.dumps({"messages": rows}, indent=2))
            return
        if not messages:
            typer.echo("No messages.")
            return
        typer.echo("\n".join(format_message_line(m) for m in messages))

    @app.command("tail")
    def chat_tail(
        room: Optional[str] = typer.Option(None, "--room", help="Chat room id"),
        engagement: Optional[str] = typer.Option(
            None, "--engagement", help="Engagement id"
        ),
        config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
        root: Optional[Path] = typer.Option(None, "--root", help="Project root"),
    ) -> None:
        """Print history, then follow new messages until interrupted."""
        _require_target(room, engagement)
        config = _load(config_path, root)
        printed: set[str] = set()
        lost = asyncio.Event()

        def _print_new(session: ChatSession) -> None:
            if session.error == REALTIME_ERROR:
                lost.set()
            for message in session.messages:
                if message.is_temporary or message.id in printed:
                    continue
                printed.add(message.id)
                typer.echo(format_message_line(message))

        async def _run(runtime: ChatRuntime) -> None:
            if runtime.realtime is None:
                typer.echo(
                    "Realtime is not configured; showing history only.", err=True
                )
            async with runtime.new_session(on_change=_print_new) as session:
                await _bind_or_exit(session, room=room, engagement=engagement)
                if runtime.realtime is None:
                    return
                await lost.wait()
            typer.echo("Live updates stopped; run tail again to resume.", err=True)
            raise typer.Exit(code=1)

        async def _main() -> None:
            async with build_chat_runtime(config) as runtime:
                await _run(runtime)

        try:
            asyncio.run(_main())
        except KeyboardInterrupt:
            typer.echo("Stopped.")

    @app.command("send")
    def chat_send(
        text: Optional[str] = typer.Argument(None, help="Message text"),
        room: str = typer.Option(..., "--room", help="Chat room id"),
        file: Optional[Path] = typer.Option(
            None, "--file", exists=True, dir_okay=False, help="Attach a file"
        ),
        reply_to: Optional[str] = typer.Option(
            None, "--reply-to", help="Message id to reply to"
        ),
        config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
        root: Optional[Path] = typer.Option(None, "--root", help="Project root"),
    ) -> None:
        """Send a message (optionally with an attachment) to a room."""
        if not text and file is None:
            typer.echo("Provide message text or --file.", err=True)
            raise typer.Exit(code=2)
        config = _load(config_path, root)

        async def _run() -> Optional[Message]:
            async with build_chat_runtime(config) as runtime:
                session = ChatSession(runtime.service)
                async with session:
                    await session.bind(room_id=room)
                    content = OutgoingMessage(text=text, reply_to_message_id=reply_to)
                    if file is not None:
                        url = await session.upload_file(file)
                        if not url:
                            typer.echo("Upload returned no file URL.", err=True)
                            raise typer.Exit(code=1)
                        content = OutgoingMessage(
                            type=_attachment_type(file),
                            text=text,
                            file_url=url,
                            file_name=file.name,
                            file_size=str(file.stat().st_size),
                            reply_to_message_id=reply_to,
                        )
                    return await session.send_message(content)

        try:
            message = asyncio.run(_run())
        except ChatError as exc:
            typer.echo(f"Send failed: {exc.user_message or exc}", err=True)
            raise typer.Exit(code=1) from exc
        if message is None:
            typer.echo("Message sent.")
            return
        typer.echo(f"Sent {message.id}")

    @app.command("direct")
    def chat_direct(
        partner_id: str = typer.Argument(..., help="User id of the other party"),
        title: Optional[str] = typer.Option(None, "--title", help="Room title"),
        config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
        root: Optional[Path] = typer.Option(None, "--root", help="Project root"),
    ) -> None:
        """Create (or reuse) a direct room with another user."""
        config = _load(config_path, root)

        async def _run() -> str:
            async with build_chat_runtime(config) as runtime:
                chat_room = await runtime.service.create_direct_room(partner_id, title)
                return chat_room.id

        try:
            room_id = asyncio.run(_run())
        except ChatError as exc:
            typer.echo(f"Could not create room: {exc.user_message or exc}", err=True)
            raise typer.Exit(code=1) from exc
        typer.echo(room_id)
