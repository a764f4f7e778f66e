"""Structured log helpers.

Events are emitted through the stdlib ``logging`` module as a single JSON
object per record so they stay greppable by their dotted event name.
"""

from __future__ import annotations

import json
import logging
from typing import Any

_MAX_VALUE_CHARS = 500


def sanitize_log_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, BaseException):
        text = f"{type(value).__name__}: {value}"
    elif isinstance(value, str):
        text = value
    elif isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_log_value(item) for item in value]
    elif isinstance(value, dict):
        return {str(key): sanitize_log_value(item) for key, item in value.items()}
    else:
        text = str(value)
    text = text.replace("\n", " ").strip()
    if len(text) > _MAX_VALUE_CHARS:
        text = text[: _MAX_VALUE_CHARS - 3] + "..."
    return text


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    **fields: Any,
) -> None:
    if not logger.isEnabledFor(level):
        return
    payload: dict[str, Any] = {"event": event}
    for key, value in fields.items():
        payload[key] = sanitize_log_value(value)
    logger.log(level, json.dumps(payload, default=str, sort_keys=False))


__all__ = ["log_event", "sanitize_log_value"]
