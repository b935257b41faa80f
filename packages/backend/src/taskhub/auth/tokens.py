"""Access-token codec — signs and verifies JWT access tokens.

Learn: Access tokens are short-lived (15 min default) and self-verifying:
holding one with a valid signature and an unexpired `exp` is enough proof
of identity. They are never looked up in storage, so verification is a
pure function of (token, secret, clock) and safe to call from any task.

The codec is constructed with its secret. There is no global signing
key. The clock is injectable so expiry can be checked against any instant.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from taskhub.db.models import utcnow

ACCESS_TOKEN_TYPE = "access"

Clock = Callable[[], datetime]


class TokenError(Exception):
    """Raised when token verification fails (bad signature, expired, malformed)."""


@dataclass(frozen=True)
class AccessClaims:
    """The verified claim set of an access token."""

    subject_id: str
    email: str
    roles: tuple[str, ...]
    issued_at: datetime
    expires_at: datetime


class TokenCodec:
    """Encode / decode / sign / verify access tokens."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        lifetime: timedelta = timedelta(minutes=15),
        issuer: Optional[str] = None,
        clock: Clock = utcnow,
    ):
        if not secret:
            raise ValueError("TokenCodec requires a non-empty signing secret")
        self._secret = secret
        self._algorithm = algorithm
        self._issuer = issuer
        self.lifetime = lifetime
        self._clock = clock

    def encode(
        self,
        subject_id: str,
        email: str,
        roles: list[str],
        issued_at: Optional[datetime] = None,
    ) -> str:
        """Sign a new access token for the given identity."""
        iat = issued_at or self._clock()
        # Fractional NumericDates keep exp at exactly iat + lifetime
        payload = {
            "sub": str(subject_id),
            "email": email,
            "roles": list(roles),
            "type": ACCESS_TOKEN_TYPE,
            "iat": iat.timestamp(),
            "exp": (iat + self.lifetime).timestamp(),
        }
        if self._issuer:
            payload["iss"] = self._issuer
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode(self, token: str, now: Optional[datetime] = None) -> AccessClaims:
        """Verify signature and expiry, return the claims.

        Expired means `now >= exp`. Raises TokenError on any failure; callers
        at the edge collapse every TokenError into one Unauthorized.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                options={
                    "require": ["sub", "exp", "iat"],
                    # Expiry is checked below against the injected clock
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            raise TokenError(f"Invalid token: {e}")

        if payload.get("type") != ACCESS_TOKEN_TYPE:
            raise TokenError("Not an access token")

        try:
            expires_at = datetime.fromtimestamp(float(payload["exp"]), tz=timezone.utc)
            issued_at = datetime.fromtimestamp(float(payload["iat"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            raise TokenError("Invalid token: malformed timestamps")

        if (now or self._clock()) >= expires_at:
            raise TokenError("Token has expired")

        roles = payload.get("roles") or []
        if not isinstance(roles, list) or not all(isinstance(r, str) for r in roles):
            raise TokenError("Invalid token: malformed roles claim")

        return AccessClaims(
            subject_id=str(payload["sub"]),
            email=str(payload.get("email", "")),
            roles=tuple(roles),
            issued_at=issued_at,
            expires_at=expires_at,
        )


def codec_from_settings(settings) -> TokenCodec:
    """Build the process-wide codec from Settings (called once per app)."""
    return TokenCodec(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        lifetime=timedelta(minutes=settings.access_token_expire_minutes),
        issuer=settings.jwt_issuer,
    )
