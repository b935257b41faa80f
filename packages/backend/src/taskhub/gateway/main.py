"""Gateway application factory.

Learn: App factory pattern, create_app() returns a configured FastAPI
instance. The gateway owns no database; its state is a TokenCodec (to
verify access tokens) and a UserServiceClient (to forward to the user
service). Both can be injected, which is how tests wire the gateway to
an in-process user service.

Run: uvicorn taskhub.gateway.main:app --port 3000
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskhub import __version__
from taskhub.auth.tokens import TokenCodec, codec_from_settings
from taskhub.cache.redis import close_redis, init_redis
from taskhub.config import settings
from taskhub.errors import AuthError, auth_error_handler
from taskhub.gateway.clients import UserServiceClient
from taskhub.gateway.edge import EdgeAuthenticator, EdgeAuthMiddleware
from taskhub.gateway.routes import router

logger = structlog.get_logger()

GATEWAY_AUTH_PATHS = ("/api/auth/login", "/api/auth/register", "/api/auth/refresh")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "gateway.starting",
        version=__version__,
        environment=settings.environment,
        user_service=settings.user_service_url,
    )

    try:
        await init_redis()
        logger.info("gateway.redis_connected", url=settings.redis_url)
    except Exception as e:
        # Redis is optional; only rate limiting depends on it
        logger.warning("gateway.redis_unavailable", error=str(e))

    yield

    logger.info("gateway.shutdown")
    await close_redis()
    await app.state.user_service.aclose()


def create_app(
    codec: Optional[TokenCodec] = None,
    user_service: Optional[UserServiceClient] = None,
) -> FastAPI:
    """Build and return the gateway application."""
    app = FastAPI(
        title="TaskHub Gateway",
        description="Public API edge: verifies access tokens, forwards to internal services",
        version=__version__,
        lifespan=lifespan,
    )

    codec = codec or codec_from_settings(settings)
    app.state.codec = codec
    app.state.user_service = user_service or UserServiceClient(
        settings.user_service_url,
        timeout=settings.user_service_timeout_seconds,
    )

    app.add_exception_handler(AuthError, auth_error_handler)

    # ── Middleware stack ──────────────────────────────────────
    # Starlette runs middleware in reverse order of registration.
    # Request flow: CORS → RequestId → Security → RateLimit → EdgeAuth → handler

    from taskhub.middleware.rate_limit import RateLimitMiddleware
    from taskhub.middleware.request_id import RequestIdMiddleware
    from taskhub.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(EdgeAuthMiddleware, authenticator=EdgeAuthenticator(codec))
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
        auth_paths=GATEWAY_AUTH_PATHS,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


# Default app instance (used by uvicorn: taskhub.gateway.main:app)
app = create_app()
