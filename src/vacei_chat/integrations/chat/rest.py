from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

import httpx

from ...core.session_store import SessionStore
from .errors import (
    ChatAPIError,
    ChatAuthenticationError,
    ChatPermanentError,
    ChatTransientError,
)

logger = logging.getLogger(__name__)

UploadSource = Union[Path, bytes]


class ChatRestClient:
    """Thin JSON client for the chat backend.

    Every request carries the persisted bearer token and active company id.
    Failures raise; nothing is retried here.
    """

    def __init__(
        self,
        *,
        base_url: str,
        session_store: SessionStore,
        timeout_seconds: float = 15.0,
        on_unauthorized: Optional[Callable[[], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout_seconds, transport=transport
        )
        self._session_store = session_store
        self._on_unauthorized = on_unauthorized

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ChatRestClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _headers(self, *, json_body: bool = True) -> dict[str, str]:
        headers: dict[str, str] = {"Accept": "application/json"}
        if json_body:
            headers["Content-Type"] = "application/json"
        token = self._session_store.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        company_id = self._session_store.get_active_company_id()
        if company_id:
            headers["X-Company-Id"] = company_id
        return headers

    def _handle_unauthorized(self) -> None:
        if self._on_unauthorized is None:
            return
        try:
            self._on_unauthorized()
        except Exception as exc:
            logger.warning("Chat unauthorized hook failed: %s", exc)

    def _raise_for_status(self, method: str, path: str, response: httpx.Response) -> None:
        status_code = response.status_code
        if 200 <= status_code < 300:
            return
        body_preview = (response.text or "").strip().replace("\n", " ")[:200]
        if status_code == 401:
            self._handle_unauthorized()
            raise ChatAuthenticationError(
                f"Chat API authentication failure for {method} {path}: "
                f"status={status_code} body={body_preview!r}"
            )
        if status_code == 403:
            raise ChatPermanentError(
                f"Chat API access denied for {method} {path}: "
                f"status={status_code} body={body_preview!r}",
                status_code=status_code,
                body_preview=body_preview,
                user_message="You do not have access to this chat.",
            )
        if 500 <= status_code < 600:
            raise ChatTransientError(
                f"Chat API server error for {method} {path}: "
                f"status={status_code} body={body_preview!r}",
                status_code=status_code,
                body_preview=body_preview,
            )
        raise ChatPermanentError(
            f"Chat API request failed for {method} {path}: "
            f"status={status_code} body={body_preview!r}",
            status_code=status_code,
            body_preview=body_preview,
        )

    def _decode(self, method: str, path: str, response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ChatAPIError(
                f"Chat API returned non-JSON success response for {method} {path}"
            ) from exc

    async def request(
        self,
        method: str,
        path: str,
        *,
        payload: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                json=payload,
                params=params,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            raise ChatTransientError(
                f"Chat API network error for {method} {path}: {exc}"
            ) from exc
        self._raise_for_status(method, path, response)
        return self._decode(method, path, response)

    async def get(self, path: str, *, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, payload: Any = None) -> Any:
        return await self.request("POST", path, payload=payload)

    async def delete(self, path: str, payload: Any = None) -> Any:
        return await self.request("DELETE", path, payload=payload)

    async def post_file(
        self,
        path: str,
        source: UploadSource,
        *,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        field_name: str = "file",
    ) -> Any:
        if isinstance(source, Path):
            data = source.read_bytes()
            filename = filename or source.name
        else:
            data = source
        if not filename:
            raise ValueError("filename is required when uploading raw bytes")
        files = {field_name: (filename, data, content_type)}
        try:
            response = await self._client.request(
                "POST",
                path,
                files=files,
                headers=self._headers(json_body=False),
            )
        except httpx.HTTPError as exc:
            raise ChatTransientError(
                f"Chat API network error for multipart {path}: {exc}"
            ) from exc
        self._raise_for_status("POST", path, response)
        return self._decode("POST", path, response)


def unwrap_data(payload: Any) -> Any:
    """Return ``payload["data"]`` when the backend wrapped its response."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


__all__ = ["ChatRestClient", "UploadSource", "unwrap_data"]
