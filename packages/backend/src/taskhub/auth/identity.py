"""Trusted identity — the propagation envelope between gateway and services.

Learn: The gateway is the only place that verifies access tokens. Once it
has, it forwards the verified identity to internal services as two
headers:
- X-User-Id:    subject id (account UUID)
- X-User-Roles: comma-separated role names

Internal services take these headers as ground truth. They do NOT check a
signature. Verification cost is paid once, at the edge, and internal
services are only reachable through it. What they must never do is treat
a request without the envelope as "anonymous but allowed": a missing or
malformed X-User-Id is an Unauthorized, full stop.
"""

import uuid
from dataclasses import dataclass, field
from typing import Mapping, Optional

from fastapi import Depends, Header

from taskhub.errors import Forbidden, Unauthorized

USER_ID_HEADER = "X-User-Id"
USER_ROLES_HEADER = "X-User-Roles"


@dataclass(frozen=True)
class TrustedIdentity:
    """A verified (subject, roles) pair."""

    subject_id: str
    roles: tuple[str, ...] = field(default_factory=tuple)

    def has_any_role(self, required: tuple[str, ...] | list[str]) -> bool:
        return any(role in self.roles for role in required)

    @property
    def account_id(self) -> uuid.UUID:
        return uuid.UUID(self.subject_id)

    def to_headers(self) -> dict[str, str]:
        """Build the envelope for an internal call."""
        return {
            USER_ID_HEADER: self.subject_id,
            USER_ROLES_HEADER: ",".join(self.roles),
        }


def parse_roles(value: Optional[str]) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(role.strip() for role in value.split(",") if role.strip())


def identity_from_headers(headers: Mapping[str, str]) -> TrustedIdentity:
    """Read the envelope. Raises Unauthorized if it is missing or malformed."""
    subject_id = (headers.get(USER_ID_HEADER) or "").strip()
    if not subject_id:
        raise Unauthorized(f"{USER_ID_HEADER} header is required")
    try:
        uuid.UUID(subject_id)
    except ValueError:
        raise Unauthorized(f"{USER_ID_HEADER} header is malformed")
    return TrustedIdentity(
        subject_id=subject_id,
        roles=parse_roles(headers.get(USER_ROLES_HEADER)),
    )


# ─── FastAPI dependencies (internal services) ─────────────


async def get_trusted_identity(
    x_user_id: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None),
) -> TrustedIdentity:
    """Identity of the caller, as forwarded by the gateway (401 if absent)."""
    headers = {}
    if x_user_id is not None:
        headers[USER_ID_HEADER] = x_user_id
    if x_user_roles is not None:
        headers[USER_ROLES_HEADER] = x_user_roles
    return identity_from_headers(headers)


def require_roles(*roles: str):
    """Dependency factory: caller must hold at least one of `roles` (403)."""

    async def _check(
        identity: TrustedIdentity = Depends(get_trusted_identity),
    ) -> TrustedIdentity:
        if not identity.has_any_role(roles):
            raise Forbidden(f"Required roles: {', '.join(roles)}")
        return identity

    return _check
