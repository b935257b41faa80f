"""User service application factory.

Learn: The user service is the only process with database access. It
signs access tokens (SessionIssuer) but never verifies them. Callers are
identified by the envelope the gateway attaches.

Startup seeds the ADMIN and MEMBER roles (idempotent), so a fresh
database can take registrations immediately.

Run: uvicorn taskhub.users.main:app --port 3002
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from taskhub import __version__
from taskhub.auth.accounts import RoleService
from taskhub.auth.tokens import TokenCodec, codec_from_settings
from taskhub.cache.redis import close_redis, init_redis
from taskhub.config import settings
from taskhub.errors import AuthError, auth_error_handler
from taskhub.users.api import router

logger = structlog.get_logger()

USER_SERVICE_AUTH_PATHS = ("/auth/login", "/auth/register", "/auth/refresh")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: seed roles, connect Redis. Shutdown: close both pools."""
    logger.info(
        "users.starting",
        version=__version__,
        environment=settings.environment,
    )

    from taskhub.db.engine import async_session_factory, engine

    async with async_session_factory() as db:
        await RoleService(db).seed_defaults()

    try:
        await init_redis()
        logger.info("users.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("users.redis_unavailable", error=str(e))

    yield

    logger.info("users.shutdown")
    await close_redis()
    await engine.dispose()


def create_app(codec: Optional[TokenCodec] = None) -> FastAPI:
    """Build and return the user service application."""
    app = FastAPI(
        title="TaskHub User Service",
        description="Accounts, roles and token issuance (internal)",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.codec = codec or codec_from_settings(settings)

    app.add_exception_handler(AuthError, auth_error_handler)

    from taskhub.middleware.rate_limit import RateLimitMiddleware
    from taskhub.middleware.request_id import RequestIdMiddleware
    from taskhub.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
        auth_paths=USER_SERVICE_AUTH_PATHS,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(router)
    return app


# Default app instance (used by uvicorn: taskhub.users.main:app)
app = create_app()
