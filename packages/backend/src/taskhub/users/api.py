"""User-service auth API — the internal side of /auth.

Learn: These routes sit behind the gateway. register / login / refresh
are open (no identity yet); logout and me require the propagation
envelope, and the admin routes additionally require the ADMIN role from
it. No route here ever decodes a JWT.

- POST   /auth/register       → 201 {account, accessToken, refreshToken}
- POST   /auth/login          → 200 {account, accessToken, refreshToken}
- POST   /auth/refresh        → 200 {accessToken, refreshToken}
- POST   /auth/logout         → 200 {message}           (envelope)
- GET    /auth/me             → 200 {account}           (envelope)
- PATCH  /users/{id}/status   → 200 account             (envelope, ADMIN)
- DELETE /roles/{name}        → 204                     (envelope, ADMIN)
- GET    /health              → 200 {status, database, redis}
"""

import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub import __version__
from taskhub.auth.accounts import ROLE_ADMIN, AccountService, RoleService
from taskhub.auth.identity import TrustedIdentity, get_trusted_identity, require_roles
from taskhub.auth.schemas import (
    AccountRead,
    AuthResponse,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    StatusUpdate,
    TokenPair,
)
from taskhub.auth.sessions import SessionIssuer, account_summary
from taskhub.cache import redis as redis_cache
from taskhub.config import settings
from taskhub.db.engine import get_db

router = APIRouter()


def _issuer(request: Request, db: AsyncSession = Depends(get_db)) -> SessionIssuer:
    return SessionIssuer(
        db,
        request.app.state.codec,
        refresh_lifetime=timedelta(days=settings.refresh_token_expire_days),
        bcrypt_rounds=settings.bcrypt_rounds,
    )


# ─── Open routes ─────────────────────────────────────────


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
async def register(body: RegisterRequest, issuer: SessionIssuer = Depends(_issuer)):
    """Create a MEMBER account and return its first token pair."""
    result = await issuer.register(body.email, body.password, body.display_name)
    return AuthResponse(
        account=result.account,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )


@router.post("/auth/login", response_model=AuthResponse)
async def login(body: LoginRequest, issuer: SessionIssuer = Depends(_issuer)):
    result = await issuer.login(body.email, body.password)
    return AuthResponse(
        account=result.account,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )


@router.post("/auth/refresh", response_model=TokenPair)
async def refresh(body: RefreshRequest, issuer: SessionIssuer = Depends(_issuer)):
    """Rotate: the presented refresh token is spent, a new pair comes back."""
    pair = await issuer.refresh(body.refresh_token)
    return TokenPair(access_token=pair.access_token, refresh_token=pair.refresh_token)


# ─── Envelope-protected routes ──────────────────────────


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    body: LogoutRequest,
    identity: TrustedIdentity = Depends(get_trusted_identity),
    issuer: SessionIssuer = Depends(_issuer),
):
    await issuer.logout(body.refresh_token)
    return MessageResponse(message="Logged out successfully")


@router.get("/auth/me", response_model=AccountRead)
async def me(
    identity: TrustedIdentity = Depends(get_trusted_identity),
    issuer: SessionIssuer = Depends(_issuer),
):
    return await issuer.whoami(identity.account_id)


# ─── Admin routes ────────────────────────────────────────


@router.patch("/users/{account_id}/status", response_model=AccountRead)
async def update_status(
    account_id: uuid.UUID,
    body: StatusUpdate,
    identity: TrustedIdentity = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    """Enable / disable an account. Disabling signs it out everywhere."""
    account = await AccountService(db).set_active(account_id, body.is_active)
    return account_summary(account)


@router.delete("/roles/{name}", status_code=204)
async def delete_role(
    name: str,
    identity: TrustedIdentity = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    await RoleService(db).delete(name)
    return Response(status_code=204)


# ─── Health ──────────────────────────────────────────────


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Check the service and its database. Redis is optional, reported only."""
    checks = {"server": "ok", "version": __version__}
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"
    checks["redis"] = "ok" if await redis_cache.ping() else "unavailable"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": status, **checks}
