"""Route policy table — which gateway routes need which credentials.

Learn: Policy is data, not code. Every route the gateway serves is listed
here with one of three policies:
- Public:     no token looked at (register, login, refresh, health)
- Protected:  a valid access token is required
- RoleGated:  a valid access token AND at least one of the listed roles

Anything not in the table is Protected. Adding a route and forgetting to
list it therefore fails closed, never open.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Union

from taskhub.auth.accounts import ROLE_ADMIN


@dataclass(frozen=True)
class Public:
    pass


@dataclass(frozen=True)
class Protected:
    pass


@dataclass(frozen=True)
class RoleGated:
    roles: tuple[str, ...]


RoutePolicy = Union[Public, Protected, RoleGated]

_PARAM = re.compile(r"\{[^/{}]+\}")


@dataclass(frozen=True)
class RouteRule:
    method: str
    template: str
    policy: RoutePolicy

    def __post_init__(self):
        # "/api/users/{id}/status" → ^/api/users/[^/]+/status$
        parts = _PARAM.split(self.template)
        pattern = "[^/]+".join(re.escape(p) for p in parts)
        object.__setattr__(self, "_regex", re.compile(f"^{pattern}$"))

    def matches(self, method: str, path: str) -> bool:
        return method.upper() == self.method and bool(self._regex.match(path))


ROUTE_POLICIES: tuple[RouteRule, ...] = (
    RouteRule("GET", "/api/health", Public()),
    RouteRule("POST", "/api/auth/register", Public()),
    RouteRule("POST", "/api/auth/login", Public()),
    RouteRule("POST", "/api/auth/refresh", Public()),
    RouteRule("POST", "/api/auth/logout", Protected()),
    RouteRule("GET", "/api/auth/me", Protected()),
    RouteRule("PATCH", "/api/users/{id}/status", RoleGated((ROLE_ADMIN,))),
    RouteRule("DELETE", "/api/roles/{name}", RoleGated((ROLE_ADMIN,))),
)

DEFAULT_POLICY: RoutePolicy = Protected()


def normalize_path(path: str) -> str:
    if len(path) > 1 and path.endswith("/"):
        return path.rstrip("/") or "/"
    return path


def resolve(
    method: str,
    path: str,
    rules: Iterable[RouteRule] = ROUTE_POLICIES,
) -> RoutePolicy:
    """First matching rule wins; unmatched routes are Protected."""
    path = normalize_path(path)
    for rule in rules:
        if rule.matches(method, path):
            return rule.policy
    return DEFAULT_POLICY
