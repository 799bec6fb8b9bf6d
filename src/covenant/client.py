"""HTTP client for Covenant services."""

from __future__ import annotations

import os
from collections.abc import Mapping
from types import TracebackType
from typing import Any, cast

import httpx

from covenant.config import DEFAULT_API_ENDPOINT, DEFAULT_HTTP_PORT
from covenant.gates import API_KEY_FIELD, SESSION_TOKEN_FIELD
from covenant.signing import sign


class CovenantAPIError(RuntimeError):
    """Raised when the HTTP exchange itself fails (status >= 400).

    Contract failures arrive as HTTP 200 envelopes with ``success: false`` and
    are returned to the caller, not raised.
    """

    def __init__(
        self,
        *,
        method: str,
        path: str,
        status_code: int,
        payload: dict[str, Any] | str | None,
    ) -> None:
        self.method = method
        self.path = path
        self.status_code = status_code
        self.payload = payload
        message = f"{method} {path} failed with status {status_code}"
        if isinstance(payload, dict) and isinstance(payload.get("error"), str):
            message = f"{message}: {payload['error']}"
        elif isinstance(payload, str) and payload:
            message = f"{message}: {payload}"
        super().__init__(message)


class CovenantClient:
    """Async client that signs requests and returns response envelopes."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        secret: str | None = None,
        session_token: str | None = None,
        api_endpoint: str = DEFAULT_API_ENDPOINT,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.secret = secret
        self.session_token = session_token
        self.rpc_path = f"/{api_endpoint.strip('/')}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    @classmethod
    def from_env(cls, *, base_url: str | None = None) -> CovenantClient:
        """Create a client from ``COVENANT_*`` environment variables."""
        resolved_base_url = (
            base_url
            or os.getenv("COVENANT_URL")
            or f"http://localhost:{DEFAULT_HTTP_PORT}"
        ).strip()
        return cls(
            resolved_base_url,
            api_key=os.getenv("COVENANT_API_KEY"),
            secret=os.getenv("COVENANT_API_SECRET"),
            session_token=os.getenv("COVENANT_SESSION_TOKEN"),
            api_endpoint=os.getenv("COVENANT_API_ENDPOINT", DEFAULT_API_ENDPOINT),
        )

    def prepare(self, body: Mapping[str, Any]) -> dict[str, Any]:
        """Attach credentials to ``body`` and sign it when a secret is known."""
        payload = dict(body)
        if self.api_key:
            payload[API_KEY_FIELD] = self.api_key
        if self.session_token:
            payload[SESSION_TOKEN_FIELD] = self.session_token
        if self.api_key and self.secret:
            payload = sign(payload, self.secret)
        return payload

    @staticmethod
    def _decode_payload(response: httpx.Response) -> dict[str, Any] | str | None:
        if not response.content:
            return None
        try:
            return cast(dict[str, Any], response.json())
        except ValueError:
            return response.text

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._client.request(method=method, url=path, json=json_body)
        payload = self._decode_payload(response)
        if response.status_code >= 400:
            raise CovenantAPIError(
                method=method,
                path=path,
                status_code=response.status_code,
                payload=payload,
            )
        if isinstance(payload, dict):
            return payload
        return {}

    async def call(
        self,
        method: str,
        args: Mapping[str, Any] | None = None,
        *,
        hint: bool = False,
    ) -> dict[str, Any]:
        """Call ``method`` on the RPC endpoint and return the envelope."""
        body: dict[str, Any] = {"method": method}
        if args is not None:
            body["args"] = dict(args)
        if hint:
            body["hint"] = True
        return await self._request_json("POST", self.rpc_path, json_body=self.prepare(body))

    async def rest(
        self,
        verb: str,
        path: str,
        body: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Call a REST route and return the envelope."""
        return await self._request_json(
            verb.upper(), path, json_body=self.prepare(body or {})
        )

    async def login(self, username: str, password: str) -> dict[str, Any]:
        """Log in through ``auth.login`` and keep the returned session token."""
        envelope = await self.call("auth.login", {"username": username, "password": password})
        if envelope.get("success"):
            self.session_token = envelope["data"]["session_token"]
        return envelope

    async def logout(self) -> dict[str, Any]:
        envelope = await self.call("auth.logout", {})
        if envelope.get("success"):
            self.session_token = None
        return envelope

    async def health(self) -> dict[str, Any]:
        """Fetch service health details."""
        return await self._request_json("GET", "/health")

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> CovenantClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
