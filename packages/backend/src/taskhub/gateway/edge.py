"""Edge authenticator — verifies access tokens at the trust boundary.

Learn: For every request the gateway:
1. Looks the route up in the policy table (gateway/policy.py)
2. Public → passes it through untouched, no header is even read
3. Otherwise extracts the bearer token and verifies it with TokenCodec
4. RoleGated → checks the token's roles against the rule (403 if none)
5. Attaches a TrustedIdentity to request.state.identity

Every verification failure (no header, wrong scheme, bad signature,
expired, malformed claims) is the same 401. The reason is logged, never
returned, so a caller can't probe which check failed.
"""

from typing import Iterable, Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from taskhub.auth.identity import TrustedIdentity
from taskhub.auth.tokens import TokenCodec, TokenError
from taskhub.errors import AuthError, Forbidden, Unauthorized, auth_error_response
from taskhub.gateway.policy import ROUTE_POLICIES, Public, RoleGated, RouteRule, resolve

logger = structlog.get_logger()


def extract_bearer(authorization: Optional[str]) -> str:
    """Pull the token out of `Authorization: Bearer <token>`."""
    if not authorization:
        raise Unauthorized()
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized()
    return token


class EdgeAuthenticator:
    """Route policy + token verification, independent of any web framework."""

    def __init__(self, codec: TokenCodec, rules: Iterable[RouteRule] = ROUTE_POLICIES):
        self.codec = codec
        self.rules = tuple(rules)

    def authenticate(
        self, method: str, path: str, authorization: Optional[str]
    ) -> Optional[TrustedIdentity]:
        """Return the caller's identity, or None for a public route.

        Raises Unauthorized (401) or Forbidden (403).
        """
        policy = resolve(method, path, self.rules)
        if isinstance(policy, Public):
            return None

        try:
            token = extract_bearer(authorization)
        except Unauthorized:
            logger.info("edge.unauthorized", path=path, reason="missing bearer token")
            raise

        try:
            claims = self.codec.decode(token)
        except TokenError as e:
            logger.info("edge.unauthorized", path=path, reason=str(e))
            raise Unauthorized()

        identity = TrustedIdentity(subject_id=claims.subject_id, roles=claims.roles)

        if isinstance(policy, RoleGated) and not identity.has_any_role(policy.roles):
            logger.info(
                "edge.forbidden",
                path=path,
                subject_id=identity.subject_id,
                required=list(policy.roles),
            )
            raise Forbidden(f"Required roles: {', '.join(policy.roles)}")

        return identity


class EdgeAuthMiddleware(BaseHTTPMiddleware):
    """Runs EdgeAuthenticator before any gateway route handler."""

    def __init__(self, app, authenticator: EdgeAuthenticator):
        super().__init__(app)
        self.authenticator = authenticator

    async def dispatch(self, request: Request, call_next) -> Response:
        # CORS preflight never carries credentials
        if request.method == "OPTIONS":
            return await call_next(request)

        try:
            identity = self.authenticator.authenticate(
                request.method,
                request.url.path,
                request.headers.get("Authorization"),
            )
        except AuthError as exc:
            return auth_error_response(exc)

        request.state.identity = identity
        return await call_next(request)


def current_identity(request: Request) -> TrustedIdentity:
    """Route dependency: the identity EdgeAuthMiddleware attached."""
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise Unauthorized()
    return identity
