"""HTTP client for the internal user service.

Learn: The gateway delegates all session work to the user service. Each
call carries:
- the propagation envelope (X-User-Id / X-User-Roles) built from the
  identity the edge verified, never copied from the incoming request,
  so a client cannot smuggle its own envelope past the gateway
- the X-Request-ID bound by RequestIdMiddleware

Downstream status codes and bodies are returned as-is; the gateway
routes pass them straight through. Only transport failures are mapped:
connection errors → 503, timeouts → 504.
"""

import uuid
from typing import Any, Optional

import httpx
import structlog

from taskhub.auth.identity import TrustedIdentity
from taskhub.errors import UpstreamTimeout, UpstreamUnavailable
from taskhub.middleware.request_id import REQUEST_ID_HEADER

logger = structlog.get_logger()


class UserServiceClient:
    """Async client for the user service's /auth, /users and /roles routes."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ─── Auth ────────────────────────────────────────────

    async def register(self, body: dict) -> httpx.Response:
        return await self._send("POST", "/auth/register", json=body)

    async def login(self, body: dict) -> httpx.Response:
        return await self._send("POST", "/auth/login", json=body)

    async def refresh(self, body: dict) -> httpx.Response:
        return await self._send("POST", "/auth/refresh", json=body)

    async def logout(self, body: dict, identity: TrustedIdentity) -> httpx.Response:
        return await self._send("POST", "/auth/logout", json=body, identity=identity)

    async def me(self, identity: TrustedIdentity) -> httpx.Response:
        return await self._send("GET", "/auth/me", identity=identity)

    # ─── Admin ───────────────────────────────────────────

    async def set_status(
        self, account_id: uuid.UUID, body: dict, identity: TrustedIdentity
    ) -> httpx.Response:
        return await self._send(
            "PATCH", f"/users/{account_id}/status", json=body, identity=identity
        )

    async def delete_role(self, name: str, identity: TrustedIdentity) -> httpx.Response:
        return await self._send("DELETE", f"/roles/{name}", identity=identity)

    async def health(self) -> httpx.Response:
        return await self._send("GET", "/health")

    # ─── Internals ───────────────────────────────────────

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        identity: Optional[TrustedIdentity] = None,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        request_id = structlog.contextvars.get_contextvars().get("request_id")
        if request_id:
            headers[REQUEST_ID_HEADER] = request_id
        if identity is not None:
            headers.update(identity.to_headers())

        try:
            return await self._client.request(method, path, json=json, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("user_service.timeout", method=method, path=path, error=str(e))
            raise UpstreamTimeout()
        except httpx.TransportError as e:
            logger.warning("user_service.unavailable", method=method, path=path, error=str(e))
            raise UpstreamUnavailable()
