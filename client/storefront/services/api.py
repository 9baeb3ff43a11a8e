from __future__ import annotations

import logging
import time
import uuid
from typing import Any

import httpx

from storefront.core.config import Settings, settings as default_settings
from storefront.core.exceptions import NetworkError, ServerError, Unauthorized
from storefront.core.logging_config import request_id_ctx_var

logger = logging.getLogger(__name__)


def _detail_from_list(detail: list[Any]) -> str | None:
    messages = [str(item.get("msg")) for item in detail if isinstance(item, dict) and item.get("msg")]
    return "; ".join(messages) or None


def error_message(body: Any) -> str | None:
    """Pull the human-readable message out of an error envelope."""
    if not isinstance(body, dict):
        return None
    for key in ("detail", "message", "error"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, list):
            joined = _detail_from_list(value)
            if joined:
                return joined
    return None


def _parse_body(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


class ApiClient:
    """Thin JSON transport over the storefront REST API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        config: Settings | None = None,
    ) -> None:
        config = config or default_settings
        self.base_url = (base_url or config.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else config.request_timeout_seconds
        self._transport = transport

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _send(self, method: str, path: str, *, json: Any, token: str | None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.request(method, path, json=json, headers=self._headers(token))
        except httpx.HTTPError as exc:
            logger.warning("api_request_failed", extra={"method": method, "path": path, "error": str(exc)})
            raise NetworkError() from exc

    async def request(self, method: str, path: str, *, json: Any = None, token: str | None = None) -> Any:
        request_id = uuid.uuid4().hex[:12]
        ctx_token = request_id_ctx_var.set(request_id)
        start = time.monotonic()
        try:
            resp = await self._send(method, path, json=json, token=token)
            logger.info(
                "api_request",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": resp.status_code,
                    "duration_ms": int((time.monotonic() - start) * 1000),
                },
            )
            body = _parse_body(resp)
            if resp.status_code == 401:
                raise Unauthorized(error_message(body))
            if resp.status_code >= 400:
                raise ServerError(error_message(body), status_code=resp.status_code)
            return body
        finally:
            request_id_ctx_var.reset(ctx_token)

    async def get(self, path: str, *, token: str | None = None) -> Any:
        return await self.request("GET", path, token=token)

    async def post(self, path: str, *, json: Any = None, token: str | None = None) -> Any:
        return await self.request("POST", path, json=json, token=token)

    async def put(self, path: str, *, json: Any = None, token: str | None = None) -> Any:
        return await self.request("PUT", path, json=json, token=token)

    async def delete(self, path: str, *, token: str | None = None) -> Any:
        return await self.request("DELETE", path, token=token)
