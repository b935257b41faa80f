"""Gateway (BFF) routes — the public /api surface.

Learn: These handlers do no session work of their own. Bodies are
validated with the same schemas the user service uses (so garbage is a
422 at the edge, not a round trip), then forwarded. Whatever the user
service answers, status and body, is what the client gets.

Which routes need a token is decided by the policy table before any
handler runs; handlers that need the caller just depend on
current_identity.
"""

import uuid

import httpx
from fastapi import APIRouter, Depends, Request, Response

from taskhub import __version__
from taskhub.auth.identity import TrustedIdentity
from taskhub.auth.schemas import (
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    StatusUpdate,
)
from taskhub.errors import AuthError
from taskhub.gateway.clients import UserServiceClient
from taskhub.gateway.edge import current_identity

router = APIRouter(prefix="/api")

_PASSTHROUGH_HEADERS = ("content-type", "www-authenticate")


def get_user_service(request: Request) -> UserServiceClient:
    return request.app.state.user_service


def _relay(upstream: httpx.Response) -> Response:
    """Turn the user service's response into ours, unchanged."""
    headers = {
        name: upstream.headers[name]
        for name in _PASSTHROUGH_HEADERS
        if name in upstream.headers
    }
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers=headers,
    )


def _wire(body) -> dict:
    return body.model_dump(by_alias=True, exclude_none=True)


# ─── Health ──────────────────────────────────────────────


@router.get("/health")
async def health_check(users: UserServiceClient = Depends(get_user_service)):
    checks = {"gateway": "ok", "version": __version__}
    try:
        upstream = await users.health()
        checks["userService"] = "ok" if upstream.status_code == 200 else "error"
    except AuthError as e:
        checks["userService"] = f"error: {e.message}"
    status = "healthy" if checks["userService"] == "ok" else "degraded"
    return {"status": status, **checks}


# ─── Auth ────────────────────────────────────────────────


@router.post("/auth/register")
async def register(
    body: RegisterRequest, users: UserServiceClient = Depends(get_user_service)
):
    return _relay(await users.register(_wire(body)))


@router.post("/auth/login")
async def login(body: LoginRequest, users: UserServiceClient = Depends(get_user_service)):
    return _relay(await users.login(_wire(body)))


@router.post("/auth/refresh")
async def refresh(
    body: RefreshRequest, users: UserServiceClient = Depends(get_user_service)
):
    return _relay(await users.refresh(_wire(body)))


@router.post("/auth/logout")
async def logout(
    body: LogoutRequest,
    identity: TrustedIdentity = Depends(current_identity),
    users: UserServiceClient = Depends(get_user_service),
):
    return _relay(await users.logout(_wire(body), identity))


@router.get("/auth/me")
async def me(
    identity: TrustedIdentity = Depends(current_identity),
    users: UserServiceClient = Depends(get_user_service),
):
    return _relay(await users.me(identity))


# ─── Admin ───────────────────────────────────────────────


@router.patch("/users/{account_id}/status")
async def update_status(
    account_id: uuid.UUID,
    body: StatusUpdate,
    identity: TrustedIdentity = Depends(current_identity),
    users: UserServiceClient = Depends(get_user_service),
):
    return _relay(await users.set_status(account_id, _wire(body), identity))


@router.delete("/roles/{name}")
async def delete_role(
    name: str,
    identity: TrustedIdentity = Depends(current_identity),
    users: UserServiceClient = Depends(get_user_service),
):
    return _relay(await users.delete_role(name, identity))
