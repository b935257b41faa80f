"""Gateway tests — route policy, edge verification, forwarding.

Learn: The gateway fixture forwards to the real user-service app over
httpx.ASGITransport, so these are end-to-end through both services.
Forwarding details (envelope, request id, upstream failures) are checked
against a MockTransport that records what the gateway sent.
"""

import json
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from taskhub.gateway.clients import UserServiceClient
from taskhub.gateway.main import create_app as create_gateway_app
from taskhub.gateway.policy import Protected, Public, RoleGated, resolve

PASSWORD = "secure_password_123"


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def _register(gateway, email: str) -> dict:
    r = await gateway.post("/api/auth/register", json={"email": email, "password": PASSWORD})
    assert r.status_code == 201, r.text
    return r.json()


async def _login(gateway, email: str) -> dict:
    r = await gateway.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.text
    return r.json()


# ═══════════════════════════════════════════════════════════
# Route policy table
# ═══════════════════════════════════════════════════════════


@pytest.mark.parametrize(
    "method,path",
    [
        ("POST", "/api/auth/register"),
        ("POST", "/api/auth/login"),
        ("POST", "/api/auth/refresh"),
        ("POST", "/api/auth/refresh/"),
        ("GET", "/api/health"),
    ],
)
def test_public_routes(method, path):
    assert resolve(method, path) == Public()


@pytest.mark.parametrize(
    "method,path",
    [
        ("POST", "/api/auth/logout"),
        ("GET", "/api/auth/me"),
        # Not listed → protected by default
        ("GET", "/api/projects"),
        ("POST", "/api/auth/login-history"),
        ("GET", "/api/auth/login"),
    ],
)
def test_protected_routes(method, path):
    assert resolve(method, path) == Protected()


def test_role_gated_routes():
    policy = resolve("PATCH", f"/api/users/{uuid.uuid4()}/status")
    assert isinstance(policy, RoleGated)
    assert policy.roles == ("ADMIN",)
    assert resolve("DELETE", "/api/roles/AUDITOR") == RoleGated(("ADMIN",))
    # Template params don't span segments
    assert resolve("DELETE", "/api/roles/a/b") == Protected()


# ═══════════════════════════════════════════════════════════
# Edge verification
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Bearer"},
        {"Authorization": "Basic dXNlcjpwYXNz"},
        {"Authorization": "Bearer not-a-token"},
    ],
)
async def test_protected_route_rejects_bad_credentials(gateway, headers):
    r = await gateway.get("/api/auth/me", headers=headers)
    assert r.status_code == 401
    assert r.json() == {
        "detail": "Invalid or missing authentication token",
        "code": "AUTH_UNAUTHORIZED",
    }
    assert r.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_expired_token_rejected(gateway, codec, new_email):
    body = await _register(gateway, new_email("exp"))
    account = body["account"]
    stale = codec.encode(
        account["id"],
        account["email"],
        account["roles"],
        issued_at=datetime.now(timezone.utc) - timedelta(hours=1),
    )
    r = await gateway.get("/api/auth/me", headers=_bearer(stale))
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_unlisted_route_fails_closed(gateway, new_email):
    r = await gateway.get("/api/projects")
    assert r.status_code == 401

    body = await _register(gateway, new_email("closed"))
    r = await gateway.get("/api/projects", headers=_bearer(body["accessToken"]))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_public_route_ignores_bad_token(gateway, new_email):
    r = await gateway.post(
        "/api/auth/register",
        json={"email": new_email("pub"), "password": PASSWORD},
        headers={"Authorization": "Bearer garbage"},
    )
    assert r.status_code == 201


# ═══════════════════════════════════════════════════════════
# End-to-end session flows
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_then_me(gateway, new_email):
    email = new_email("me")
    body = await _register(gateway, email)

    r = await gateway.get("/api/auth/me", headers=_bearer(body["accessToken"]))
    assert r.status_code == 200
    me = r.json()
    assert me["email"] == email
    assert me["id"] == body["account"]["id"]


@pytest.mark.asyncio
async def test_refresh_rotation_and_logout(gateway, new_email):
    email = new_email("rot")
    await _register(gateway, email)
    login = await _login(gateway, email)

    r = await gateway.post("/api/auth/refresh", json={"refreshToken": login["refreshToken"]})
    assert r.status_code == 200
    rotated = r.json()

    r = await gateway.post("/api/auth/refresh", json={"refreshToken": login["refreshToken"]})
    assert r.status_code == 401
    assert r.json()["code"] == "AUTH_INVALID_REFRESH_TOKEN"

    r = await gateway.post(
        "/api/auth/logout",
        json={"refreshToken": rotated["refreshToken"]},
        headers=_bearer(rotated["accessToken"]),
    )
    assert r.status_code == 200

    r = await gateway.post("/api/auth/refresh", json={"refreshToken": rotated["refreshToken"]})
    assert r.status_code == 401

    # Logging out again is harmless
    r = await gateway.post(
        "/api/auth/logout",
        json={"refreshToken": rotated["refreshToken"]},
        headers=_bearer(rotated["accessToken"]),
    )
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_login_failures_indistinguishable(gateway, new_email):
    email = new_email("enum")
    await _register(gateway, email)

    wrong = await gateway.post("/api/auth/login", json={"email": email, "password": "nope"})
    unknown = await gateway.post(
        "/api/auth/login", json={"email": new_email("ghost"), "password": PASSWORD}
    )
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json()
    assert wrong.json()["code"] == "AUTH_INVALID_CREDENTIALS"


@pytest.mark.asyncio
async def test_validation_happens_at_the_edge(gateway):
    r = await gateway.post(
        "/api/auth/register", json={"email": "x@example.com", "password": "short"}
    )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_client_cannot_forge_envelope(gateway, new_email):
    victim = await _register(gateway, new_email("victim"))
    attacker = await _register(gateway, new_email("attacker"))

    r = await gateway.get(
        "/api/auth/me",
        headers={
            **_bearer(attacker["accessToken"]),
            "X-User-Id": victim["account"]["id"],
            "X-User-Roles": "ADMIN",
        },
    )
    assert r.status_code == 200
    assert r.json()["id"] == attacker["account"]["id"]


# ═══════════════════════════════════════════════════════════
# Role-gated admin routes
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_admin_disables_member(gateway, grant_role, new_email):
    admin_email = new_email("admin")
    admin = await _register(gateway, admin_email)
    member_email = new_email("member")
    member = await _register(gateway, member_email)
    member_id = member["account"]["id"]

    # MEMBER token: rejected at the edge
    r = await gateway.patch(
        f"/api/users/{member_id}/status",
        json={"isActive": False},
        headers=_bearer(admin["accessToken"]),
    )
    assert r.status_code == 403
    assert r.json()["code"] == "AUTH_FORBIDDEN"

    # Roles live in the token, so the new role needs a new login
    await grant_role(admin["account"]["id"], "ADMIN")
    admin = await _login(gateway, admin_email)
    assert "ADMIN" in admin["account"]["roles"]

    r = await gateway.patch(
        f"/api/users/{member_id}/status",
        json={"isActive": False},
        headers=_bearer(admin["accessToken"]),
    )
    assert r.status_code == 200
    assert r.json()["isActive"] is False

    r = await gateway.post("/api/auth/refresh", json={"refreshToken": member["refreshToken"]})
    assert r.status_code == 401

    r = await gateway.post(
        "/api/auth/login", json={"email": member_email, "password": PASSWORD}
    )
    assert r.status_code == 403
    assert r.json()["code"] == "AUTH_ACCOUNT_DISABLED"

    # The member's access token stays valid until it expires
    r = await gateway.get("/api/auth/me", headers=_bearer(member["accessToken"]))
    assert r.status_code == 200
    assert r.json()["isActive"] is False


@pytest.mark.asyncio
async def test_admin_delete_role_in_use(gateway, grant_role, new_email):
    email = new_email("admin")
    admin = await _register(gateway, email)
    await grant_role(admin["account"]["id"], "ADMIN")
    admin = await _login(gateway, email)

    r = await gateway.delete("/api/roles/MEMBER", headers=_bearer(admin["accessToken"]))
    assert r.status_code == 409
    assert r.json()["code"] == "ROLE_IN_USE"


# ═══════════════════════════════════════════════════════════
# Forwarding (recorded upstream)
# ═══════════════════════════════════════════════════════════


async def _gateway_over(handler, codec):
    user_service = UserServiceClient("http://users", transport=httpx.MockTransport(handler))
    app = create_gateway_app(codec=codec, user_service=user_service)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test"), user_service


@pytest.mark.asyncio
async def test_envelope_and_request_id_forwarded(codec):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "whatever"})

    subject = str(uuid.uuid4())
    token = codec.encode(subject, "a@example.com", ["MEMBER", "ADMIN"])
    client, user_service = await _gateway_over(handler, codec)
    async with client:
        r = await client.get(
            "/api/auth/me", headers={**_bearer(token), "X-Request-ID": "trace-123"}
        )
    await user_service.aclose()

    assert r.status_code == 200
    upstream = seen[0]
    assert upstream.url.path == "/auth/me"
    assert upstream.headers["X-User-Id"] == subject
    assert upstream.headers["X-User-Roles"] == "MEMBER,ADMIN"
    assert upstream.headers["X-Request-ID"] == "trace-123"
    assert "Authorization" not in upstream.headers


@pytest.mark.asyncio
async def test_public_forward_carries_no_envelope(codec):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(418, json={"detail": "teapot", "code": "TEAPOT"})

    client, user_service = await _gateway_over(handler, codec)
    async with client:
        r = await client.post(
            "/api/auth/login",
            json={"email": "a@example.com", "password": "pw"},
            headers={"X-User-Id": str(uuid.uuid4())},
        )
    await user_service.aclose()

    # Downstream status and body pass through untouched
    assert r.status_code == 418
    assert r.json() == {"detail": "teapot", "code": "TEAPOT"}
    assert "X-User-Id" not in seen[0].headers
    assert json.loads(seen[0].content) == {"email": "a@example.com", "password": "pw"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error,status,code",
    [
        (httpx.ConnectError, 503, "UPSTREAM_UNAVAILABLE"),
        (httpx.ReadTimeout, 504, "UPSTREAM_TIMEOUT"),
    ],
)
async def test_upstream_failures_mapped(codec, error, status, code):
    def handler(request: httpx.Request) -> httpx.Response:
        raise error("boom", request=request)

    client, user_service = await _gateway_over(handler, codec)
    async with client:
        r = await client.post(
            "/api/auth/login", json={"email": "a@example.com", "password": "pw"}
        )
    await user_service.aclose()

    assert r.status_code == status
    assert r.json()["code"] == code


# ═══════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_health_is_public(gateway):
    r = await gateway.get("/api/health")
    assert r.status_code == 200
    data = r.json()
    assert data["gateway"] == "ok"
    assert data["userService"] == "ok"
    assert data["status"] == "healthy"
