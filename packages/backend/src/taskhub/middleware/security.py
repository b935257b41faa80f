"""Security headers middleware.

Learn: Every response, including 401s produced by the edge, gets the
baseline headers below. Responses from the auth routes additionally get
`Cache-Control: no-store` and `Pragma: no-cache`, since their bodies carry
token pairs and account data that no proxy or browser cache may keep.
HSTS is only sent over HTTPS.
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

BASELINE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Baseline headers everywhere, no-store on credential routes."""

    def __init__(self, app, no_store_prefixes: tuple[str, ...] = ("/api/auth", "/auth")):
        super().__init__(app)
        self.no_store_prefixes = no_store_prefixes

    def _is_credential_route(self, path: str) -> bool:
        return any(
            path == prefix or path.startswith(prefix + "/")
            for prefix in self.no_store_prefixes
        )

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers.update(BASELINE_HEADERS)
        if self._is_credential_route(request.url.path):
            response.headers.update(NO_STORE_HEADERS)
        if request.url.scheme == "https":
            response.headers["Strict-Transport-Security"] = HSTS_VALUE
        return response
