"""Direct row insert into the messages table through the PostgREST API.

This is the low-latency send path: it writes the message row without going
through the chat backend, so row-level security on the table applies to the
caller's bearer token.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from ...core.session_store import SessionStore
from .errors import ChatDirectInsertError


class DirectInsertClient:
    def __init__(
        self,
        *,
        supabase_url: str,
        anon_key: str,
        session_store: SessionStore,
        table: str,
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=f"{supabase_url.rstrip('/')}/rest/v1",
            timeout=timeout_seconds,
            transport=transport,
        )
        self._anon_key = anon_key
        self._session_store = session_store
        self._table = table

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        token = self._session_store.get_token() or self._anon_key
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/vnd.pgrst.object+json",
            "Prefer": "return=representation",
        }

    async def insert(self, row: dict[str, Any]) -> dict[str, Any]:
        path = f"/{self._table}"
        try:
            response = await self._client.post(path, json=row, headers=self._headers())
        except httpx.HTTPError as exc:
            raise ChatDirectInsertError(
                f"Direct insert network error for {self._table}: {exc}"
            ) from exc
        if not 200 <= response.status_code < 300:
            detail = _error_detail(response)
            raise ChatDirectInsertError(
                f"Direct insert into {self._table} failed: "
                f"status={response.status_code} detail={detail!r}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ChatDirectInsertError(
                f"Direct insert into {self._table} returned non-JSON response"
            ) from exc
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if not isinstance(payload, dict):
            raise ChatDirectInsertError(
                f"Direct insert into {self._table} returned no row"
            )
        return payload


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return (response.text or "").strip().replace("\n", " ")[:200]
    if isinstance(payload, dict):
        message = payload.get("message") or payload.get("error") or payload
        return str(message)[:200]
    return str(payload)[:200]


__all__ = ["DirectInsertClient"]
