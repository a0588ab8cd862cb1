"""Async HTTP client for a running termgate server.

Identity is whatever the authenticating proxy in front of termgate
expects: a bearer token, or the identity headers themselves when
talking to the server directly on a trusted host.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ClientError(Exception):
    """Raised when a request to the termgate server fails."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def reasons(self) -> list[str]:
        return list(self.payload.get("reasons") or [])


class TermgateClient:
    """Sends commands to terminals through the termgate HTTP API.

    Example usage::

        async with TermgateClient("http://localhost:3000", token="...") as client:
            await client.execute("minecraft-server", "say Hello!")
            print(await client.capture_output("minecraft-server", lines=20))
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        token: str | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = dict(headers or {})
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
        )

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> TermgateClient:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.disconnect()

    async def health(self) -> dict[str, Any]:
        return await self._request("GET", "/health")

    async def list_terminals(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/api/terminals")

    async def execute(
        self, terminal_id: str, command: str, cwd: str | None = None
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"terminalId": terminal_id, "command": command}
        if cwd:
            payload["cwd"] = cwd
        return await self._request("POST", "/api/execute-channel", payload)

    async def execute_many(self, terminal_ids: list[str], command: str) -> list[dict[str, Any]]:
        return await self._request(
            "POST",
            "/api/execute-multiple-channels",
            {"terminalIds": terminal_ids, "command": command},
        )

    async def execute_all(self, command: str) -> list[dict[str, Any]]:
        return await self._request("POST", "/api/execute-all-channels", {"command": command})

    async def capture_output(self, terminal_id: str, lines: int = 100) -> str:
        data = await self._request(
            "GET", f"/api/terminals/{terminal_id}/output", params={"lines": lines}
        )
        return data["output"]

    async def _request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        if self._client is None:
            raise ClientError("Not connected to server")
        try:
            resp = await self._client.request(method, path, json=payload, params=params)
        except httpx.HTTPError as e:
            raise ClientError(f"Request to {path} failed: {e}") from e
        if resp.is_error:
            try:
                body = resp.json()
            except ValueError:
                body = {"error": resp.text}
            if not isinstance(body, dict):
                body = {"error": str(body)}
            message = body.get("error") or body.get("detail") or resp.reason_phrase
            raise ClientError(str(message), status_code=resp.status_code, payload=body)
        logger.debug("%s %s -> %d", method, path, resp.status_code)
        return resp.json()
