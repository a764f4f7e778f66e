"""Locally persisted session state.

The browser client keeps its session in ``localStorage``; this client keeps
the same keys in a JSON file. The chat core only reads it, except for
``clear_auth`` which mirrors the logout performed on a 401 response.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Optional

from .logging_utils import log_event

USER_KEY = "user"
TOKEN_KEY = "token"
ACTIVE_COMPANY_KEY = "vacei-active-company"
AUTH_KEYS = (
    TOKEN_KEY,
    USER_KEY,
    "organizationMember",
    "userRole",
    "selectedService",
)

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

logger = logging.getLogger(__name__)


def decode_legacy_user_id(raw_id: str) -> str:
    """Return ``raw_id`` unchanged if UUID-shaped, else its base64 decoding.

    Legacy accounts stored a base64-encoded id. Anything that does not decode
    to UTF-8 text is returned as-is.
    """
    if _UUID_RE.match(raw_id):
        return raw_id
    padded = raw_id + "=" * (-len(raw_id) % 4)
    try:
        decoded = base64.b64decode(padded, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return raw_id
    return decoded or raw_id


class SessionStore:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.session_store.read_failed",
                path=str(self._path),
                exc=exc,
            )
            return {}
        try:
            data = json.loads(text)
        except ValueError as exc:
            log_event(
                logger,
                logging.WARNING,
                "chat.session_store.invalid_json",
                path=str(self._path),
                exc=exc,
            )
            return {}
        return data if isinstance(data, dict) else {}

    def get_item(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        if value is None:
            return None
        if isinstance(value, str):
            return value
        return json.dumps(value)

    def get_user(self) -> Optional[dict[str, Any]]:
        raw = self._read().get(USER_KEY)
        if isinstance(raw, str):
            try:
                raw = json.loads(raw)
            except ValueError as exc:
                log_event(
                    logger,
                    logging.ERROR,
                    "chat.session_store.user_parse_failed",
                    exc=exc,
                )
                return None
        return raw if isinstance(raw, dict) else None

    def get_user_id(self) -> Optional[str]:
        user = self.get_user()
        if user is None:
            return None
        user_id = user.get("id")
        if user_id is None or user_id == "":
            return None
        return str(user_id)

    def resolve_current_user_id(self) -> Optional[str]:
        user_id = self.get_user_id()
        if not user_id:
            return None
        return decode_legacy_user_id(user_id)

    def get_token(self) -> Optional[str]:
        token = self._read().get(TOKEN_KEY)
        return token if isinstance(token, str) and token else None

    def get_active_company_id(self) -> Optional[str]:
        company_id = self._read().get(ACTIVE_COMPANY_KEY)
        return company_id if isinstance(company_id, str) and company_id else None

    def clear_auth(self) -> None:
        data = self._read()
        if not any(key in data for key in AUTH_KEYS):
            return
        for key in AUTH_KEYS:
            data.pop(key, None)
        self._write(data)
        log_event(
            logger, logging.INFO, "chat.session_store.auth_cleared", path=str(self._path)
        )

    def _write(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(self._path.parent), prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


__all__ = [
    "ACTIVE_COMPANY_KEY",
    "SessionStore",
    "TOKEN_KEY",
    "USER_KEY",
    "decode_legacy_user_id",
]
