"""Authentication error taxonomy.

Learn: Every failure the auth subsystem can report is a subclass of
AuthError carrying an HTTP status and a stable machine-readable code.
Services raise these; the app factories register one handler that turns
them into `{"detail": ..., "code": ...}` responses. None of them are
retried on the server. They are terminal for the request.
"""

from fastapi import Request
from fastapi.responses import JSONResponse


class AuthError(Exception):
    """Base class for all auth-subsystem failures."""

    status_code: int = 400
    code: str = "AUTH_ERROR"
    message: str = "Authentication error"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    # Same error for unknown email and wrong password (no account enumeration)
    status_code = 401
    code = "AUTH_INVALID_CREDENTIALS"
    message = "Invalid email or password"


class AccountDisabled(AuthError):
    status_code = 403
    code = "AUTH_ACCOUNT_DISABLED"
    message = "Account is disabled"


class EmailAlreadyExists(AuthError):
    status_code = 409
    code = "AUTH_EMAIL_ALREADY_EXISTS"

    def __init__(self, email: str):
        super().__init__(f"Email '{email}' is already registered")


class InvalidRefreshToken(AuthError):
    status_code = 401
    code = "AUTH_INVALID_REFRESH_TOKEN"
    message = "Invalid or expired refresh token"


class AccountNotFound(AuthError):
    status_code = 404
    code = "AUTH_ACCOUNT_NOT_FOUND"

    def __init__(self, account_id):
        super().__init__(f"Account {account_id} not found")


class Unauthorized(AuthError):
    status_code = 401
    code = "AUTH_UNAUTHORIZED"
    message = "Invalid or missing authentication token"


class Forbidden(AuthError):
    status_code = 403
    code = "AUTH_FORBIDDEN"
    message = "Insufficient permissions"


class RoleNotFound(AuthError):
    status_code = 404
    code = "ROLE_NOT_FOUND"

    def __init__(self, name: str):
        super().__init__(f"Role '{name}' not found")


class RoleInUse(AuthError):
    status_code = 409
    code = "ROLE_IN_USE"

    def __init__(self, name: str, assigned: int):
        super().__init__(
            f"Role '{name}' is assigned to {assigned} account(s) and cannot be deleted"
        )


# ─── Gateway → user service ──────────────────────────────


class UpstreamUnavailable(AuthError):
    status_code = 503
    code = "UPSTREAM_UNAVAILABLE"
    message = "User service is unavailable"


class UpstreamTimeout(AuthError):
    status_code = 504
    code = "UPSTREAM_TIMEOUT"
    message = "User service timed out"


def error_body(code: str, message: str) -> dict:
    return {"detail": message, "code": code}


def auth_error_response(exc: AuthError) -> JSONResponse:
    headers = None
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message),
        headers=headers,
    )


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """FastAPI exception handler — registered by both app factories."""
    return auth_error_response(exc)
