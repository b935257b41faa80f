"""Request ID middleware — one ID per request, across both services.

Learn: The gateway mints (or accepts) an X-Request-ID, binds it to
structlog's contextvars so every log line carries it, and forwards it on
the internal call. The user service runs the same middleware, picks the
forwarded header up, and its logs line up with the gateway's.

An incoming ID is only reused if it looks like one (short, no spaces or
control characters); anything else is replaced with a fresh UUID so a
client can't write arbitrary text into the logs.
"""

import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def request_id_from(value: str | None) -> str:
    if value and _VALID_REQUEST_ID.match(value):
        return value
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request_id_from(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
