"""Session client — bearer attachment, renewal and retry.

Learn: Access tokens expire every few minutes; the client hides that.
For every request:
1. Public auth routes (login / register / refresh) go out untouched
2. Anything else gets `Authorization: Bearer <access token>` if we have one
3. A non-401 response is returned as-is, whatever its status
4. A 401 triggers ONE renewal (POST /api/auth/refresh) and ONE retry;
   a second 401 is returned to the caller
5. If renewal fails the stored session is cleared, on_signed_out fires,
   and RenewalFailed is raised (chained to why renewal failed)

Single-flight renewal: refresh tokens are single-use, so two renewals
racing with the same refresh token would leave one of them holding a
revoked token, which signs the user out. When a burst of requests all
get 401, only the first starts a renewal; the rest await that same
task. Each stored-session change bumps a generation counter, and a
request that failed with a token older than the current generation
skips renewal entirely and just retries with the newer token.
"""

import asyncio
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

import httpx
import structlog

from taskhub.client.storage import MemoryTokenStorage, StoredSession, TokenStorage

logger = structlog.get_logger()

LOGIN_PATH = "/api/auth/login"
REGISTER_PATH = "/api/auth/register"
REFRESH_PATH = "/api/auth/refresh"
LOGOUT_PATH = "/api/auth/logout"
ME_PATH = "/api/auth/me"

PUBLIC_PATHS = (LOGIN_PATH, REGISTER_PATH, REFRESH_PATH)

ROLE_ADMIN = "ADMIN"


class RenewalFailed(Exception):
    """The session could not be renewed; the client is now signed out."""


def is_public_path(url: str) -> bool:
    """True for the auth routes that never carry a bearer token.

    Matches whole path segments: /api/auth/login and /api/auth/login/x
    are public, /api/auth/login-history is not.
    """
    path = urlsplit(url).path
    return any(path == p or path.startswith(p + "/") for p in PUBLIC_PATHS)


class SessionClient:
    """httpx.AsyncClient wrapper that keeps a token pair alive."""

    def __init__(
        self,
        base_url: str,
        *,
        storage: Optional[TokenStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        on_signed_out: Optional[Callable[[], None]] = None,
    ):
        self._http = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)
        self.storage = storage or MemoryTokenStorage()
        self.on_signed_out = on_signed_out
        self._generation = 0
        self._renewal: Optional[asyncio.Task] = None
        self._last_renewal_error: Optional[BaseException] = None

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ─── State ──────────────────────────────────────────

    @property
    def session(self) -> Optional[StoredSession]:
        return self.storage.load()

    @property
    def account(self) -> Optional[dict]:
        stored = self.storage.load()
        return stored.account if stored else None

    @property
    def is_authenticated(self) -> bool:
        return self.storage.load() is not None

    @property
    def is_admin(self) -> bool:
        stored = self.storage.load()
        return stored is not None and ROLE_ADMIN in stored.roles

    # ─── Requests ───────────────────────────────────────

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, renewing the session and retrying once on 401."""
        if is_public_path(url):
            return await self._http.request(method, url, **kwargs)

        generation = self._generation
        response = await self._send(method, url, kwargs)
        if response.status_code != 401:
            return response

        await response.aclose()
        await self._renew(generation)
        return await self._send(method, url, kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    # ─── Auth flows ─────────────────────────────────────

    async def login(self, email: str, password: str) -> dict:
        """Sign in and store the pair. Returns the account summary."""
        response = await self._http.post(
            LOGIN_PATH, json={"email": email, "password": password}
        )
        response.raise_for_status()
        return self._store_auth_response(response.json())

    async def register(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> dict:
        body = {"email": email, "password": password}
        if display_name:
            body["displayName"] = display_name
        response = await self._http.post(REGISTER_PATH, json=body)
        response.raise_for_status()
        return self._store_auth_response(response.json())

    async def me(self) -> dict:
        """Fetch the current account and refresh the stored copy of it."""
        response = await self.request("GET", ME_PATH)
        response.raise_for_status()
        account = response.json()
        stored = self.storage.load()
        if stored is not None:
            stored.account = account
            self.storage.save(stored)
        return account

    async def logout(self) -> None:
        """Revoke the refresh token server-side, then forget the session.

        The local session is cleared even if the server call fails.
        """
        stored = self.storage.load()
        if stored is None:
            return
        try:
            generation = self._generation
            response = await self._send_logout(stored)
            if response.status_code == 401:
                await self._renew(generation)
                # Renewal rotated the refresh token; revoke the new one
                response = await self._send_logout(self.storage.load())
            response.raise_for_status()
        finally:
            self._sign_out()

    # ─── Internals ──────────────────────────────────────

    async def _send(self, method: str, url: str, kwargs: dict) -> httpx.Response:
        headers = dict(kwargs.get("headers") or {})
        stored = self.storage.load()
        if stored is not None:
            headers["Authorization"] = f"Bearer {stored.access_token}"
        return await self._http.request(method, url, **{**kwargs, "headers": headers})

    async def _send_logout(self, stored: Optional[StoredSession]) -> httpx.Response:
        body = {"refreshToken": stored.refresh_token} if stored else {}
        return await self._send("POST", LOGOUT_PATH, {"json": body})

    async def _renew(self, seen_generation: int) -> None:
        """Make sure the session is newer than `seen_generation`.

        Raises RenewalFailed if it can't be.
        """
        if self._generation != seen_generation:
            # Replaced while this request was in flight
            if self.storage.load() is None:
                raise RenewalFailed("Signed out") from self._last_renewal_error
            return

        if self._renewal is None:
            self._renewal = asyncio.get_running_loop().create_task(self._refresh_tokens())
        # A cancelled waiter must not cancel the renewal the others share
        await asyncio.shield(self._renewal)

    async def _refresh_tokens(self) -> None:
        try:
            stored = self.storage.load()
            if stored is None:
                raise RuntimeError("No refresh token stored")
            response = await self._http.post(
                REFRESH_PATH, json={"refreshToken": stored.refresh_token}
            )
            response.raise_for_status()
            data = response.json()
            self.storage.save(
                StoredSession(
                    access_token=data["accessToken"],
                    refresh_token=data["refreshToken"],
                    account=stored.account,
                )
            )
            self._last_renewal_error = None
            logger.info("client.renewed")
        except Exception as e:
            self._last_renewal_error = e
            logger.info("client.renewal_failed", error=str(e))
            self._sign_out()
            raise RenewalFailed("Session renewal failed") from e
        finally:
            self._generation += 1
            self._renewal = None

    def _store_auth_response(self, data: dict) -> dict:
        account = data["account"]
        self.storage.save(
            StoredSession(
                access_token=data["accessToken"],
                refresh_token=data["refreshToken"],
                account=account,
            )
        )
        self._generation += 1
        return account

    def _sign_out(self) -> None:
        """Clear the session; fire on_signed_out on the signed-in → out edge."""
        was_signed_in = self.storage.load() is not None
        self.storage.clear()
        self._generation += 1
        if was_signed_in:
            logger.info("client.signed_out")
            if self.on_signed_out is not None:
                self.on_signed_out()
