"""Session client tests — bearer attachment, renewal, retry, sign-out.

Learn: Most tests run against FakeGateway, an httpx.MockTransport handler
that behaves like the real gateway where it matters: access tokens can be
expired on demand and refresh tokens rotate, so a second refresh with an
already-used token fails exactly as in production. The last section runs
SessionClient against the real gateway + user service.
"""

import asyncio
import json
import os
import stat
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport

from taskhub.client import (
    FileTokenStorage,
    MemoryTokenStorage,
    RenewalFailed,
    SessionClient,
    StoredSession,
    is_public_path,
)

ACCOUNT = {
    "id": "0b8a5d6e-2f1c-4d3b-8e7a-9c6f5e4d3b21",
    "email": "alice@example.com",
    "roles": ["MEMBER"],
    "profile": {"displayName": "alice"},
}


def _unauthorized() -> httpx.Response:
    return httpx.Response(
        401,
        json={"detail": "Invalid or missing authentication token", "code": "AUTH_UNAUTHORIZED"},
    )


class FakeGateway:
    def __init__(self, account: dict = ACCOUNT):
        self.account = account
        self.generation = 1
        self.access = "access-1"
        self.refresh = "refresh-1"
        self.refresh_calls = 0
        self.fail_refresh = False
        self.reject_everything = False
        self.revoked: list[str] = []
        self.requests: list[httpx.Request] = []

    def expire_access(self) -> None:
        self.access = None

    def _rotate(self) -> dict:
        self.generation += 1
        self.access = f"access-{self.generation}"
        self.refresh = f"refresh-{self.generation}"
        return {"accessToken": self.access, "refreshToken": self.refresh}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/auth/login":
            body = json.loads(request.content)
            if body["password"] != "right":
                return httpx.Response(
                    401, json={"detail": "Invalid email or password", "code": "AUTH_INVALID_CREDENTIALS"}
                )
            return httpx.Response(200, json={"account": self.account, **self._rotate()})

        if path == "/api/auth/refresh":
            self.refresh_calls += 1
            # Let concurrent requests pile up while the renewal is in flight
            await asyncio.sleep(0.01)
            body = json.loads(request.content)
            if self.fail_refresh or body["refreshToken"] != self.refresh:
                return httpx.Response(
                    401,
                    json={"detail": "Invalid or expired refresh token", "code": "AUTH_INVALID_REFRESH_TOKEN"},
                )
            return httpx.Response(200, json=self._rotate())

        if self.reject_everything:
            return _unauthorized()
        if self.access is None or request.headers.get("Authorization") != f"Bearer {self.access}":
            return _unauthorized()

        if path == "/api/auth/logout":
            self.revoked.append(json.loads(request.content)["refreshToken"])
            return httpx.Response(200, json={"message": "Logged out successfully"})
        if path == "/api/auth/me":
            return httpx.Response(200, json=self.account)
        if path == "/api/boom":
            return httpx.Response(500, json={"detail": "boom"})
        return httpx.Response(200, json={"path": path})


@pytest.fixture()
def server():
    return FakeGateway()


@pytest.fixture()
def signed_out_calls():
    return []


@pytest_asyncio.fixture()
async def client(server, signed_out_calls):
    client = SessionClient(
        "http://test",
        transport=httpx.MockTransport(server),
        on_signed_out=lambda: signed_out_calls.append(True),
    )
    yield client
    await client.aclose()


# ═══════════════════════════════════════════════════════════
# Public path detection
# ═══════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "url,public",
    [
        ("/api/auth/login", True),
        ("/api/auth/register", True),
        ("/api/auth/refresh", True),
        ("/api/auth/refresh/", True),
        ("http://gateway:3000/api/auth/login?next=/", True),
        ("/api/auth/login-history", False),
        ("/api/auth/logout", False),
        ("/api/auth/me", False),
        ("/api/projects", False),
    ],
)
def test_is_public_path(url, public):
    assert is_public_path(url) is public


# ═══════════════════════════════════════════════════════════
# Bearer attachment
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_stores_session_and_attaches_bearer(client, server):
    account = await client.login("alice@example.com", "right")
    assert account["email"] == "alice@example.com"
    assert client.is_authenticated
    assert not client.is_admin

    r = await client.get("/api/projects")
    assert r.status_code == 200
    assert server.requests[-1].headers["Authorization"] == f"Bearer {server.access}"


@pytest.mark.asyncio
async def test_public_routes_never_carry_bearer(client, server):
    await client.login("alice@example.com", "right")
    await client.post("/api/auth/refresh", json={"refreshToken": "whatever"})
    assert "Authorization" not in server.requests[-1].headers


@pytest.mark.asyncio
async def test_is_admin_from_stored_roles(server):
    server.account = {**ACCOUNT, "roles": ["ADMIN", "MEMBER"]}
    async with SessionClient("http://test", transport=httpx.MockTransport(server)) as client:
        assert not client.is_admin
        await client.login("alice@example.com", "right")
        assert client.is_admin


@pytest.mark.asyncio
async def test_failed_login_raises_without_renewal(client, server):
    with pytest.raises(httpx.HTTPStatusError) as exc:
        await client.login("alice@example.com", "wrong")
    assert exc.value.response.status_code == 401
    assert server.refresh_calls == 0
    assert not client.is_authenticated


# ═══════════════════════════════════════════════════════════
# Renewal + retry
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_expired_access_token_renewed_and_retried(client, server, signed_out_calls):
    await client.login("alice@example.com", "right")
    server.expire_access()

    r = await client.get("/api/projects")

    assert r.status_code == 200
    assert server.refresh_calls == 1
    assert client.session.access_token == server.access
    assert client.session.refresh_token == server.refresh
    assert client.account == ACCOUNT
    assert signed_out_calls == []


@pytest.mark.asyncio
async def test_non_401_errors_pass_through(client, server):
    await client.login("alice@example.com", "right")
    r = await client.get("/api/boom")
    assert r.status_code == 500
    assert server.refresh_calls == 0


@pytest.mark.asyncio
async def test_second_401_returned_not_retried_again(client, server):
    await client.login("alice@example.com", "right")
    server.reject_everything = True

    r = await client.get("/api/projects")

    assert r.status_code == 401
    assert server.refresh_calls == 1
    # Renewal itself worked, so the session is kept
    assert client.is_authenticated


@pytest.mark.asyncio
async def test_concurrent_401s_share_one_renewal(client, server, signed_out_calls):
    await client.login("alice@example.com", "right")
    server.expire_access()

    responses = await asyncio.gather(*(client.get(f"/api/items/{i}") for i in range(5)))

    assert [r.status_code for r in responses] == [200] * 5
    assert server.refresh_calls == 1
    assert client.is_authenticated
    assert signed_out_calls == []


@pytest.mark.asyncio
async def test_stale_token_retries_without_renewing(client, server):
    """A 401 for a token that was already replaced just retries."""
    await client.login("alice@example.com", "right")
    server.expire_access()
    await client.get("/api/first")
    assert server.refresh_calls == 1

    generation_before = client._generation
    await client._renew(generation_before - 1)
    assert server.refresh_calls == 1


# ═══════════════════════════════════════════════════════════
# Renewal failure → signed out
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_renewal_failure_signs_out(client, server, signed_out_calls):
    await client.login("alice@example.com", "right")
    server.expire_access()
    server.fail_refresh = True

    with pytest.raises(RenewalFailed) as exc:
        await client.get("/api/projects")

    # Chained to the renewal error, not the original 401
    cause = exc.value.__cause__
    assert isinstance(cause, httpx.HTTPStatusError)
    assert cause.request.url.path == "/api/auth/refresh"
    assert not client.is_authenticated
    assert signed_out_calls == [True]


@pytest.mark.asyncio
async def test_concurrent_renewal_failure_signs_out_once(client, server, signed_out_calls):
    await client.login("alice@example.com", "right")
    server.expire_access()
    server.fail_refresh = True

    results = await asyncio.gather(
        *(client.get(f"/api/items/{i}") for i in range(3)), return_exceptions=True
    )

    assert all(isinstance(r, RenewalFailed) for r in results)
    assert server.refresh_calls == 1
    assert signed_out_calls == [True]


@pytest.mark.asyncio
async def test_401_without_session_raises(client, server, signed_out_calls):
    with pytest.raises(RenewalFailed):
        await client.get("/api/projects")
    assert server.refresh_calls == 0
    # Never signed in, so no sign-out transition
    assert signed_out_calls == []


# ═══════════════════════════════════════════════════════════
# Logout / me
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_logout_revokes_and_clears(client, server, signed_out_calls):
    await client.login("alice@example.com", "right")
    refresh = client.session.refresh_token

    await client.logout()

    assert server.revoked == [refresh]
    assert not client.is_authenticated
    assert signed_out_calls == [True]

    # Nothing left to do the second time
    await client.logout()
    assert signed_out_calls == [True]


@pytest.mark.asyncio
async def test_logout_after_expiry_revokes_rotated_token(client, server):
    await client.login("alice@example.com", "right")
    server.expire_access()

    await client.logout()

    assert server.refresh_calls == 1
    assert server.revoked == [server.refresh]
    assert not client.is_authenticated


@pytest.mark.asyncio
async def test_me_updates_stored_account(client, server):
    await client.login("alice@example.com", "right")
    server.account = {**ACCOUNT, "profile": {"displayName": "Alice"}}

    me = await client.me()

    assert me["profile"]["displayName"] == "Alice"
    assert client.account["profile"]["displayName"] == "Alice"


# ═══════════════════════════════════════════════════════════
# Storage
# ═══════════════════════════════════════════════════════════


def test_memory_storage():
    storage = MemoryTokenStorage()
    assert storage.load() is None
    storage.save(StoredSession("a", "r", ACCOUNT))
    assert storage.load().roles == ["MEMBER"]
    storage.clear()
    assert storage.load() is None


def test_file_storage_is_private(tmp_path):
    path = tmp_path / "nested" / "session.json"
    storage = FileTokenStorage(path)
    assert storage.load() is None

    storage.save(StoredSession("access", "refresh", ACCOUNT))

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert FileTokenStorage(path).load() == StoredSession("access", "refresh", ACCOUNT)

    storage.clear()
    assert not path.exists()
    storage.clear()


def test_file_storage_unreadable_means_signed_out(tmp_path):
    path = tmp_path / "session.json"
    path.write_text("{not json")
    assert FileTokenStorage(path).load() is None


# ═══════════════════════════════════════════════════════════
# Against the real gateway
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_expired_token_scenario_end_to_end(gateway_app, codec, new_email):
    signed_out = []
    client = SessionClient(
        "http://test",
        transport=ASGITransport(app=gateway_app),
        on_signed_out=lambda: signed_out.append(True),
    )
    async with client:
        email = new_email("e2e")
        account = await client.register(email, "secure_password_123", "E2E")
        assert account["profile"]["displayName"] == "E2E"

        # Swap in an access token that expired an hour ago
        stored = client.session
        stale = codec.encode(
            account["id"],
            email,
            account["roles"],
            issued_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )
        client.storage.save(StoredSession(stale, stored.refresh_token, stored.account))

        me = await client.me()
        assert me["email"] == email
        assert client.session.refresh_token != stored.refresh_token

        # Now the refresh token is gone server-side too: renewal fails
        await client.logout()
        assert signed_out == [True]
        client.storage.save(StoredSession(stale, stored.refresh_token, stored.account))

        with pytest.raises(RenewalFailed):
            await client.me()
        assert not client.is_authenticated
        assert signed_out == [True, True]
