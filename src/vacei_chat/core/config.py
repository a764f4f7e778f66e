from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .exceptions import ConfigError

DEFAULT_CONFIG_FILE = ".vacei/chat.yml"
DEFAULT_BACKEND_URL = "http://localhost:5000/api/v1"
DEFAULT_SESSION_FILE = ".vacei/session.json"
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_MESSAGES_TABLE = "ChatMessage"
DEFAULT_DIRECT_ROOM_TITLE = "Chat with partner"
DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 25.0

ENV_BACKEND_URL = "VACEI_BACKEND_URL"
ENV_SUPABASE_URL = "VACEI_SUPABASE_URL"
ENV_SUPABASE_ANON_KEY = "VACEI_SUPABASE_ANON_KEY"
ENV_SESSION_FILE = "VACEI_SESSION_FILE"


@dataclass(frozen=True)
class ChatClientConfig:
    root: Path
    backend_url: str
    supabase_url: Optional[str]
    supabase_anon_key: Optional[str]
    session_file: Path
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    messages_table: str = DEFAULT_MESSAGES_TABLE
    read_receipts_enabled: bool = False
    direct_room_title: str = DEFAULT_DIRECT_ROOM_TITLE
    heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_INTERVAL_SECONDS

    @property
    def direct_insert_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def realtime_url(self) -> Optional[str]:
        if not self.supabase_url:
            return None
        base = self.supabase_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://") :]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://") :]
        return f"{base}/realtime/v1/websocket"

    @classmethod
    def from_raw(
        cls,
        *,
        root: Path,
        raw: Mapping[str, Any],
        env: Optional[Mapping[str, str]] = None,
    ) -> "ChatClientConfig":
        cfg: Mapping[str, Any] = raw if isinstance(raw, Mapping) else {}
        environ = os.environ if env is None else env

        backend_url = _optional_str(
            environ.get(ENV_BACKEND_URL) or cfg.get("backend_url"),
            key="backend_url",
        )
        if not backend_url:
            backend_url = DEFAULT_BACKEND_URL
        if not backend_url.startswith(("http://", "https://")):
            raise ConfigError("backend_url must be an http(s) URL")

        supabase_url = _optional_str(
            environ.get(ENV_SUPABASE_URL) or cfg.get("supabase_url"),
            key="supabase_url",
        )
        if supabase_url and not supabase_url.startswith(("http://", "https://")):
            raise ConfigError("supabase_url must be an http(s) URL")
        supabase_anon_key = _optional_str(
            environ.get(ENV_SUPABASE_ANON_KEY) or cfg.get("supabase_anon_key"),
            key="supabase_anon_key",
        )

        session_file_value = environ.get(ENV_SESSION_FILE) or cfg.get(
            "session_file", DEFAULT_SESSION_FILE
        )
        if not isinstance(session_file_value, str) or not session_file_value.strip():
            raise ConfigError("session_file must be a string path")
        session_file = Path(session_file_value).expanduser()
        if not session_file.is_absolute():
            session_file = root / session_file

        timeout_seconds = _positive_float(
            cfg.get("timeout_seconds"),
            default=DEFAULT_TIMEOUT_SECONDS,
            key="timeout_seconds",
        )
        heartbeat_interval = _positive_float(
            cfg.get("heartbeat_interval_seconds"),
            default=DEFAULT_HEARTBEAT_INTERVAL_SECONDS,
            key="heartbeat_interval_seconds",
        )

        messages_table = str(cfg.get("messages_table", DEFAULT_MESSAGES_TABLE)).strip()
        if not messages_table:
            raise ConfigError("messages_table must be non-empty")

        read_receipts = cfg.get("read_receipts_enabled", False)
        if not isinstance(read_receipts, bool):
            raise ConfigError("read_receipts_enabled must be a boolean")

        direct_room_title = str(
            cfg.get("direct_room_title", DEFAULT_DIRECT_ROOM_TITLE)
        ).strip()

        return cls(
            root=root,
            backend_url=backend_url.rstrip("/"),
            supabase_url=supabase_url.rstrip("/") if supabase_url else None,
            supabase_anon_key=supabase_anon_key,
            session_file=session_file,
            timeout_seconds=timeout_seconds,
            messages_table=messages_table,
            read_receipts_enabled=read_receipts,
            direct_room_title=direct_room_title or DEFAULT_DIRECT_ROOM_TITLE,
            heartbeat_interval_seconds=heartbeat_interval,
        )


def _optional_str(value: Any, *, key: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    value = value.strip()
    return value or None


def _positive_float(value: Any, *, default: float, key: str) -> float:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a number")
    if value <= 0:
        raise ConfigError(f"{key} must be > 0")
    return float(value)


def _load_yaml_dict(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a mapping: {path}")
    return data


def load_config(
    path: Optional[Path] = None,
    *,
    root: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
) -> ChatClientConfig:
    """Load the chat client config from YAML, applying environment overrides.

    A missing file is not an error: defaults plus environment values apply.
    """
    base = (root or Path.cwd()).resolve()
    config_path = path if path is not None else base / DEFAULT_CONFIG_FILE
    raw = _load_yaml_dict(config_path)
    return ChatClientConfig.from_raw(root=base, raw=raw, env=env)


__all__ = [
    "ChatClientConfig",
    "DEFAULT_BACKEND_URL",
    "DEFAULT_CONFIG_FILE",
    "load_config",
]
